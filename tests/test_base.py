import pytest

from riskguard.detectors.base import Detector, SensitiveWordDetector
from riskguard.model import CheckContext, RiskType


class FakeChecker:
    def __init__(self, words):
        self.words = list(words)
        self.calls = []

    def contains_word(self, content):
        self.calls.append(content)
        for word in self.words:
            if word in content:
                return word
        return None


def test_detector_is_abstract():
    with pytest.raises(TypeError):
        Detector()


def test_sensitive_word_found():
    detector = SensitiveWordDetector(FakeChecker(["敏感词1"]))
    risks = detector.detect(CheckContext("这段内容包含敏感词1，应该被检测到。"))
    assert len(risks) == 1
    risk = risks[0]
    assert risk.risk_type is RiskType.SENSITIVE_WORD
    assert risk.score == 80.0
    assert risk.description == "内容包含敏感词: 敏感词1"
    assert risk.details == {"word": "敏感词1"}


def test_clean_content_has_no_risk():
    detector = SensitiveWordDetector(FakeChecker(["敏感词1"]))
    assert detector.detect(CheckContext("这是一段正常的内容，不包含任何敏感词。")) == []


def test_empty_content_skips_checker():
    checker = FakeChecker(["x"])
    assert SensitiveWordDetector(checker).detect(CheckContext("")) == []
    assert checker.calls == []