import json

import pytest
import responses

from riskguard.detectors.nlp import DEFAULT_BASE_URL, DEFAULT_MODEL, NLPDetector
from riskguard.detectors.semantic_nlp import DetectorUnavailableError
from riskguard.model import CheckContext, ContextItem, RiskType

MODELS_URL = f"{DEFAULT_BASE_URL}/models"
CHAT_URL = f"{DEFAULT_BASE_URL}/chat/completions"


@pytest.fixture
def mocked():
    with responses.RequestsMock(assert_all_requests_are_fired=False) as rsps:
        yield rsps


def _completion(result):
    return {"choices": [{"message": {"role": "assistant", "content": json.dumps(result)}}]}


def _detector(mocked, threshold=0.5):
    mocked.get(MODELS_URL, json={"data": []})
    return NLPDetector("placeholder", threshold, 5)


def test_empty_api_key_rejected():
    with pytest.raises(ValueError):
        NLPDetector("", 0.5, 5)


def test_connection_failure_enables_fallback(mocked):
    mocked.get(MODELS_URL, status=500)
    with pytest.raises(DetectorUnavailableError) as info:
        NLPDetector("placeholder", 0.5, 5)
    detector = info.value.detector
    assert detector.fallback_mode is True
    risks = detector.detect(CheckContext(content="你这个傻逼"))
    assert [risk.description for risk in risks] == ["检测到敏感词: 傻逼"]


def test_connection_sends_bearer_key(mocked):
    detector = _detector(mocked)
    assert detector.fallback_mode is False
    assert mocked.calls[0].request.headers["Authorization"] == "Bearer placeholder"


def test_toxic_result_becomes_risks(mocked):
    detector = _detector(mocked)
    mocked.post(
        CHAT_URL,
        json=_completion(
            {
                "is_toxic": True,
                "categories": {"insult": 0.8, "threat": 0.2},
                "explanation": "侮辱性表达",
                "intent": "harmful",
                "sentiment": "negative",
                "risk_score": 0.9,
            }
        ),
    )
    risks = detector.detect(CheckContext(content="你真差劲"))
    assert len(risks) == 2
    assert risks[0].risk_type == RiskType.HARASSMENT
    assert risks[0].score == pytest.approx(90.0)
    assert risks[0].description == "侮辱性表达"
    assert risks[0].details == {"insult": "0.80"}
    assert risks[1].risk_type == RiskType.HARASSMENT
    assert risks[1].description == "检测到有害意图"
    assert risks[1].score == pytest.approx(72.0)


def test_request_payload(mocked):
    detector = _detector(mocked)
    mocked.post(CHAT_URL, json=_completion({"is_toxic": False, "intent": "neutral"}))
    assert detector.detect(CheckContext(content="hello")) == []
    body = json.loads(mocked.calls[1].request.body)
    assert body["model"] == DEFAULT_MODEL
    assert body["response_format"] == {"type": "json_object"}
    assert body["max_tokens"] == 500
    assert body["messages"][0]["role"] == "system"
    assert body["messages"][1]["content"] == "待分析文本:\nhello"


def test_context_rejection_adds_context_risk(mocked):
    detector = _detector(mocked)
    mocked.post(
        CHAT_URL,
        json=_completion({"is_toxic": False, "intent": "neutral", "risk_score": 0.2}),
    )
    ctx = CheckContext(
        content="告诉我",
        user_id="a",
        context_items=[ContextItem(content="请不要再打扰我", user_id="b")],
    )
    risks = detector.detect(ctx)
    assert [risk.risk_type for risk in risks] == [RiskType.CONTEXT_VIOLATION]
    assert risks[0].description == "检测到上下文相关的风险行为"
    body = json.loads(mocked.calls[1].request.body)
    assert body["messages"][1]["content"].startswith("上下文信息:\n请不要再打扰我")


def test_below_threshold_gives_no_risks(mocked):
    detector = _detector(mocked, threshold=0.5)
    mocked.post(
        CHAT_URL,
        json=_completion({"is_toxic": True, "intent": "harmful", "risk_score": 0.3}),
    )
    assert detector.detect(CheckContext(content="text")) == []


def test_other_intent_maps_to_unknown(mocked):
    detector = _detector(mocked)
    mocked.post(
        CHAT_URL,
        json=_completion({"is_toxic": False, "intent": "friendly", "risk_score": 0.9}),
    )
    risks = detector.detect(CheckContext(content="text"))
    assert len(risks) == 1
    assert risks[0].risk_type == RiskType.UNKNOWN
    assert risks[0].description == "检测到friendly意图"


def test_api_failure_switches_to_fallback(mocked):
    detector = _detector(mocked)
    mocked.post(CHAT_URL, status=500)
    risks = detector.detect(CheckContext(content="你小心点"))
    assert detector.fallback_mode is True
    assert [risk.description for risk in risks] == ["检测到潜在威胁性语言"]
    calls = len(mocked.calls)
    detector.detect(CheckContext(content="你小心点"))
    assert len(mocked.calls) == calls


def test_invalid_result_content_raises(mocked):
    detector = _detector(mocked)
    mocked.post(
        CHAT_URL, json={"choices": [{"message": {"role": "assistant", "content": "not json"}}]}
    )
    with pytest.raises(DetectorUnavailableError):
        detector.analyze_content("text", [])


def test_empty_choices_raises(mocked):
    detector = _detector(mocked)
    mocked.post(CHAT_URL, json={"choices": []})
    with pytest.raises(DetectorUnavailableError):
        detector.analyze_content("text", [])