import json
import time

import pytest
import redis

from riskguard.config import Config
from riskguard.content_check import (
    ContentCheckError,
    ContentCheckService,
    EmptyContentError,
    InvalidRequestError,
    create_content_check_service,
    generate_suggestion,
)
from riskguard.detectors.base import Detector, SensitiveWordDetector
from riskguard.model import (
    CheckRequest,
    ContextItem,
    ResultType,
    RiskItem,
    RiskType,
    hash_string,
)
from riskguard.rule_engine import RuleEngine
from riskguard.sensitive_words import SensitiveWords


class FixedDetector(Detector):
    def __init__(self, *risks):
        self.risks = list(risks)
        self.calls = 0

    def detect(self, ctx):
        self.calls += 1
        return [RiskItem(r.risk_type, r.score, r.description, dict(r.details)) for r in self.risks]


class BrokenDetector(Detector):
    def detect(self, ctx):
        raise RuntimeError("boom")


class DictCache:
    def __init__(self):
        self.store = {}
        self.ttls = {}

    def get(self, name):
        return self.store.get(name)

    def set(self, name, value, ex=None):
        self.store[name] = value.encode("utf-8") if isinstance(value, str) else value
        self.ttls[name] = ex


def _rules_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": [], "actions": {}, "categories": {}}), encoding="utf-8")
    return str(path)


def _service(tmp_path, detectors, cache=None, threshold=100, batch=10, ttl=60, words=None):
    cfg = Config()
    cfg.content_check.risk_score_threshold = threshold
    cfg.content_check.batch_check_max_size = batch
    cfg.content_check.cache_ttl = ttl
    return ContentCheckService(
        cfg,
        rule_engine=RuleEngine(_rules_file(tmp_path)),
        detectors=detectors,
        sensitive_words=words,
        cache=cache,
    )


def _risk(score, description="风险"):
    return RiskItem(RiskType.HARASSMENT, score, description)


def test_empty_content_is_rejected(tmp_path):
    service = _service(tmp_path, {})
    with pytest.raises(EmptyContentError):
        service.check_content("")
    with pytest.raises(EmptyContentError):
        service.check_content_with_context("", context_items=[])


@pytest.mark.parametrize(
    "score, expected",
    [
        (100.0, ResultType.REJECT),
        (80.0, ResultType.REVIEW),
        (55.0, ResultType.WARNING),
        (10.0, ResultType.PASS),
    ],
)
def test_result_follows_threshold(tmp_path, score, expected):
    service = _service(tmp_path, {"d": FixedDetector(_risk(score))})
    result = service.check_content("text", "alice")
    assert result.result is expected
    assert result.risk_score == score
    assert result.suggestion == generate_suggestion(expected, result.risks)


def test_suggestions():
    risks = [_risk(100.0, "含有侮辱")]
    assert generate_suggestion(ResultType.REJECT, risks) == "内容包含违规信息，原因：含有侮辱"
    assert generate_suggestion(ResultType.REJECT, []) == "内容未通过审核，请修改后重试"
    assert generate_suggestion(ResultType.REVIEW, []) == "内容需要人工审核，请等待审核结果"
    assert generate_suggestion(ResultType.WARNING, []) == "内容存在风险，建议修改"
    assert generate_suggestion(ResultType.PASS, []) == "内容审核通过"


def test_no_risks_passes(tmp_path):
    result = _service(tmp_path, {}).check_content("hello")
    assert result.result is ResultType.PASS
    assert result.risks == []
    assert result.extra == {"total_score": "0.00"}


def test_risk_score_is_maximum_and_total_is_sum(tmp_path):
    service = _service(tmp_path, {"a": FixedDetector(_risk(30.0)), "b": FixedDetector(_risk(20.0))})
    result = service.check_content("text")
    assert result.risk_score == 30.0
    assert result.extra == {"total_score": "50.00"}
    assert [risk.score for risk in result.risks] == [30.0, 20.0]


def test_failing_detector_is_skipped(tmp_path):
    service = _service(tmp_path, {"bad": BrokenDetector(), "good": FixedDetector(_risk(80.0))})
    result = service.check_content("text")
    assert len(result.risks) == 1
    assert result.result is ResultType.REVIEW


def test_request_ids(tmp_path):
    service = _service(tmp_path, {})
    plain = service.check_content("hello", "alice")
    ctx = service.check_content_with_context("hello", "alice", context_items=[ContextItem("hi")])
    assert plain.request_id.startswith("req_") and plain.request_id.endswith("_alice")
    assert ctx.request_id.startswith("req_ctx_") and ctx.request_id.endswith("_alice")


def test_cache_hit_skips_detectors(tmp_path):
    cache = DictCache()
    detector = FixedDetector(_risk(60.0))
    service = _service(tmp_path, {"d": detector}, cache=cache, ttl=60)
    first = service.check_content("cached text", "u1")
    second = service.check_content("cached text", "u2")
    key = "content_check:" + hash_string("cached text")
    assert detector.calls == 1
    assert key in cache.store
    assert cache.ttls[key] == 60
    assert second.cost_time == 0
    assert second.result == first.result
    assert second.risks == first.risks
    assert second.request_id.endswith("_u2")


def test_rejected_results_are_not_cached(tmp_path):
    cache = DictCache()
    detector = FixedDetector(_risk(100.0))
    service = _service(tmp_path, {"d": detector}, cache=cache)
    service.check_content("bad text")
    service.check_content("bad text")
    assert cache.store == {}
    assert detector.calls == 2


def test_context_check_does_not_use_cache(tmp_path):
    cache = DictCache()
    service = _service(tmp_path, {"d": FixedDetector(_risk(10.0))}, cache=cache)
    result = service.check_content_with_context("text", context_items=[ContextItem("earlier")])
    assert cache.store == {}
    assert result.result is ResultType.PASS


def test_batch_keeps_order_and_marks_failures(tmp_path):
    service = _service(tmp_path, {})
    batch = service.batch_check_content(
        [CheckRequest("a", user_id="u0"), CheckRequest(""), CheckRequest("c", user_id="u2")], "b1"
    )
    assert batch.batch_id == "b1"
    assert len(batch.results) == 3
    assert batch.results[0].request_id.endswith("_u0")
    assert batch.results[2].request_id.endswith("_u2")
    failed = batch.results[1]
    assert failed.request_id == "batch_b1_idx_1"
    assert failed.extra == {"error": "处理失败"}
    assert failed.result is ResultType.PASS


def test_batch_empty_is_invalid(tmp_path):
    with pytest.raises(InvalidRequestError):
        _service(tmp_path, {}).batch_check_content([], "b")


def test_batch_is_truncated_to_max_size(tmp_path):
    service = _service(tmp_path, {}, batch=2)
    batch = service.batch_check_content([CheckRequest(str(i)) for i in range(3)], "b")
    assert len(batch.results) == 2


def test_stream_yields_results_and_raises_on_empty(tmp_path):
    service = _service(tmp_path, {"d": FixedDetector(_risk(80.0))})
    results = list(service.stream_check_content([CheckRequest("x", user_id="u")]))
    assert [r.result for r in results] == [ResultType.REVIEW]
    stream = service.stream_check_content([CheckRequest("ok"), CheckRequest("")])
    assert next(stream).result is ResultType.REVIEW
    with pytest.raises(EmptyContentError):
        next(stream)


def test_sensitive_word_detection_end_to_end(tmp_path):
    words = SensitiveWords(file_paths=[])
    words.set_word_list(["敏感词1"])
    service = _service(tmp_path, {"sensitive": SensitiveWordDetector(words)}, words=words)
    result = service.check_content("这段内容包含敏感词1，应该被检测到。")
    assert result.risks[0].risk_type == RiskType.SENSITIVE_WORD
    assert result.risks[0].details == {"word": "敏感词1"}
    assert result.result is ResultType.REVIEW


def test_update_interval_must_be_positive(tmp_path):
    service = _service(tmp_path, {}, words=SensitiveWords(file_paths=[]))
    with pytest.raises(ValueError):
        service.start_sensitive_word_updates(0)


def test_background_updates_reload_words(tmp_path):
    path = tmp_path / "words.txt"
    path.write_text("old\n", encoding="utf-8")
    words = SensitiveWords(file_paths=[str(path)])
    with _service(tmp_path, {}, words=words) as service:
        path.write_text("new\n", encoding="utf-8")
        service.start_sensitive_word_updates(0.05)
        deadline = time.monotonic() + 5
        while words.all_words() != ["new"] and time.monotonic() < deadline:
            time.sleep(0.02)
    assert words.all_words() == ["new"]


def test_factory_builds_default_detectors(tmp_path, monkeypatch, mocker):
    monkeypatch.chdir(tmp_path)
    redis_cls = mocker.patch("riskguard.content_check.redis.Redis")
    redis_cls.return_value.ping.side_effect = redis.ConnectionError("down")
    cfg = Config()
    cfg.rule_engine.default_rules_path = _rules_file(tmp_path)
    service = create_content_check_service(cfg)
    try:
        assert set(service.detectors) == {"sensitive", "spam", "harassment", "semantic"}
        assert service.cache is redis_cls.return_value
    finally:
        service.close()


def test_factory_fails_without_rules(tmp_path, monkeypatch, mocker):
    monkeypatch.chdir(tmp_path)
    mocker.patch("riskguard.content_check.redis.Redis")
    cfg = Config()
    cfg.rule_engine.default_rules_path = str(tmp_path / "missing.json")
    with pytest.raises(ContentCheckError, match="failed to initialize rule engine"):
        create_content_check_service(cfg)