import json

import pytest

from riskguard.model import CheckContext, ContextItem, ResultType, RiskItem, RiskType
from riskguard.rule_engine import (
    Rule,
    RuleAction,
    RuleEngine,
    RuleEngineError,
    RuleEngineResult,
    action_result_type,
    risk_type_from_category,
)

RULE_DATA = {
    "rules": [
        {
            "id": "sensitive_words",
            "name": "敏感词",
            "description": "包含敏感词",
            "enabled": True,
            "priority": 100,
            "action": "block",
            "score": 90,
            "config": {"category": "sensitive"},
        },
        {
            "id": "spam_detection",
            "name": "垃圾信息",
            "description": "垃圾信息",
            "enabled": True,
            "priority": 80,
            "action": "review",
            "score": 70.5,
        },
        {
            "id": "context_analysis",
            "name": "上下文",
            "enabled": True,
            "priority": 60,
            "action": "mark",
            "score": 60,
        },
        {
            "id": "user_reputation",
            "name": "信誉",
            "enabled": False,
            "priority": 10,
            "action": "review",
            "score": 50,
        },
    ],
    "actions": {"block": {"name": "阻止", "description": "直接拒绝"}},
    "categories": {"sensitive": "敏感词"},
}


@pytest.fixture
def rule_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps(RULE_DATA, ensure_ascii=False), encoding="utf-8")
    return path


@pytest.fixture
def engine(rule_file):
    return RuleEngine(str(rule_file))


def test_rules_are_keyed_by_id(engine):
    rules = engine.rule_set.rules
    assert set(rules) == {r["id"] for r in RULE_DATA["rules"]}
    spam = rules["spam_detection"]
    assert spam.score == 70.5
    assert spam.action == "review"
    assert rules["sensitive_words"].config == {"category": "sensitive"}
    assert rules["user_reputation"].enabled is False


def test_actions_and_categories(engine):
    assert engine.rule_set.actions == {"block": RuleAction(name="阻止", description="直接拒绝")}
    assert engine.rule_set.categories == {"sensitive": "敏感词"}


def test_missing_fields_take_defaults(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": [{"id": "x"}]}), encoding="utf-8")
    rules = RuleEngine(str(path)).rule_set.rules
    assert rules == {"x": Rule(id="x")}


def test_null_rules_give_empty_set(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text('{"rules": null}', encoding="utf-8")
    assert RuleEngine(str(path)).rule_set.rules == {}


def test_missing_file(tmp_path):
    with pytest.raises(RuleEngineError, match="failed to read rule file"):
        RuleEngine(str(tmp_path / "absent.json"))


def test_invalid_json(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(RuleEngineError, match="failed to unmarshal rule data"):
        RuleEngine(str(path))


def test_wrong_field_type(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": [{"id": "x", "priority": "high"}]}), encoding="utf-8")
    with pytest.raises(RuleEngineError, match="failed to unmarshal rule data"):
        RuleEngine(str(path))


def test_reload_picks_up_changes(engine, rule_file):
    rule_file.write_text(json.dumps({"rules": [{"id": "only"}]}), encoding="utf-8")
    engine.load_rules()
    assert list(engine.rule_set.rules) == ["only"]


@pytest.mark.parametrize(
    "ctx, existing",
    [
        (CheckContext(content="hello"), []),
        (CheckContext(content="hello"), [RiskItem(RiskType.SPAM, 60.0, "spam")]),
        (
            CheckContext(content="hello", context_items=[ContextItem(content="hi", user_id="b")]),
            [RiskItem(RiskType.SENSITIVE_WORD, 80.0, "word")],
        ),
    ],
)
def test_builtin_rules_defer_to_detectors(engine, ctx, existing):
    result = engine.evaluate(ctx, existing)
    assert result == RuleEngineResult(
        result=ResultType.PASS, score=0.0, risks=[], suggestion="", has_explicit_result=False
    )


def test_evaluate_leaves_existing_risks_untouched(engine):
    existing = [RiskItem(RiskType.HARASSMENT, 70.0, "h", {"keyword": "k"})]
    engine.evaluate(CheckContext(content="x"), existing)
    assert existing == [RiskItem(RiskType.HARASSMENT, 70.0, "h", {"keyword": "k"})]


@pytest.mark.parametrize(
    "action, expected",
    [
        ("block", ResultType.REJECT),
        ("review", ResultType.REVIEW),
        ("mark", ResultType.WARNING),
        ("allow", ResultType.PASS),
        ("", ResultType.PASS),
    ],
)
def test_action_result_type(action, expected):
    assert action_result_type(action) is expected


@pytest.mark.parametrize(
    "category, expected",
    [
        ("sensitive", RiskType.SENSITIVE_WORD),
        ("spam", RiskType.SPAM),
        ("harassment", RiskType.HARASSMENT),
        ("hate_speech", RiskType.HATE_SPEECH),
        ("violence", RiskType.VIOLENCE),
        ("adult", RiskType.ADULT),
        ("other", RiskType.UNKNOWN),
    ],
)
def test_risk_type_from_category(category, expected):
    assert risk_type_from_category(category) is expected