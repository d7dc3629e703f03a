"""Rule engine that evaluates configured rules on top of detector findings."""

import json
import logging
import threading
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from riskguard.model import CheckContext, ResultType, RiskItem, RiskType


class RuleEngineError(Exception):
    """Raised when rules cannot be loaded or evaluated."""


@dataclass
class Rule:
    """One configured rule."""

    id: str = ""
    name: str = ""
    description: str = ""
    enabled: bool = False
    priority: int = 0
    action: str = ""
    score: float = 0.0
    config: dict[str, Any] = field(default_factory=dict)


@dataclass
class RuleAction:
    """A named action a rule may take."""

    name: str = ""
    description: str = ""


@dataclass
class RuleSet:
    """All rules, actions and categories of a rule file."""

    rules: dict[str, Rule] = field(default_factory=dict)
    actions: dict[str, RuleAction] = field(default_factory=dict)
    categories: dict[str, str] = field(default_factory=dict)


@dataclass
class RuleEngineResult:
    """Outcome of evaluating the rule set against one check."""

    result: ResultType = ResultType.PASS
    score: float = 0.0
    risks: list[RiskItem] = field(default_factory=list)
    suggestion: str = ""
    has_explicit_result: bool = False


_ACTION_RESULTS = {
    "block": ResultType.REJECT,
    "review": ResultType.REVIEW,
    "mark": ResultType.WARNING,
}

_CATEGORY_RISK_TYPES = {
    "sensitive": RiskType.SENSITIVE_WORD,
    "spam": RiskType.SPAM,
    "harassment": RiskType.HARASSMENT,
    "hate_speech": RiskType.HATE_SPEECH,
    "violence": RiskType.VIOLENCE,
    "adult": RiskType.ADULT,
}


def action_result_type(action: str) -> ResultType:
    """Map a rule action name to the result it produces."""
    return _ACTION_RESULTS.get(action, ResultType.PASS)


def risk_type_from_category(category: str) -> RiskType:
    """Map a rule category name to a risk type."""
    return _CATEGORY_RISK_TYPES.get(category, RiskType.UNKNOWN)


def _unmarshal_error(message: str) -> RuleEngineError:
    return RuleEngineError(f"failed to unmarshal rule data: {message}")


def _field(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise _unmarshal_error(f"field {key!r} has unexpected value {value!r}")
    return kind(value)


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise _unmarshal_error(f"{what} must be an object")
    return value


def _parse_rule(data: Any) -> Rule:
    if not isinstance(data, Mapping):
        raise _unmarshal_error("each rule must be an object")
    return Rule(
        id=_field(data, "id", str, ""),
        name=_field(data, "name", str, ""),
        description=_field(data, "description", str, ""),
        enabled=_field(data, "enabled", bool, False),
        priority=_field(data, "priority", int, 0),
        action=_field(data, "action", str, ""),
        score=_field(data, "score", float, 0.0),
        config=dict(_mapping(data.get("config"), "rule config")),
    )


def _parse_rules(raw: Any) -> Iterable[Rule]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise _unmarshal_error("rules must be a list")
    return [_parse_rule(item) for item in raw]


def _parse_rule_set(data: Any) -> RuleSet:
    data = _mapping(data, "rule file")
    actions = {
        key: RuleAction(
            name=_field(_mapping(value, "action"), "name", str, ""),
            description=_field(_mapping(value, "action"), "description", str, ""),
        )
        for key, value in _mapping(data.get("actions"), "actions").items()
    }
    categories = {}
    for key, value in _mapping(data.get("categories"), "categories").items():
        if not isinstance(value, str):
            raise _unmarshal_error(f"category {key!r} must be a string")
        categories[key] = value
    rules = {rule.id: rule for rule in _parse_rules(data.get("rules"))}
    return RuleSet(rules=rules, actions=actions, categories=categories)


class RuleEngine:
    """Loads rules from a JSON file and evaluates them for each check."""

    def __init__(self, rule_file: str, logger: Optional[logging.Logger] = None) -> None:
        self.rule_file = rule_file
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._rule_set: Optional[RuleSet] = None
        self.load_rules()

    @property
    def rule_set(self) -> Optional[RuleSet]:
        """The currently loaded rules."""
        return self._rule_set

    def load_rules(self) -> None:
        """(Re)load the rule file, replacing the current rule set."""
        try:
            with open(self.rule_file, encoding="utf-8") as handle:
                text = handle.read()
        except OSError as exc:
            raise RuleEngineError(f"failed to read rule file: {exc}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise _unmarshal_error(str(exc)) from exc
        rule_set = _parse_rule_set(data)
        with self._lock:
            self._rule_set = rule_set
        self._logger.info("Loaded %d rules from %s", len(rule_set.rules), self.rule_file)

    def evaluate(
        self, ctx: CheckContext, existing_risks: Iterable[RiskItem]
    ) -> RuleEngineResult:
        """Evaluate enabled rules by descending priority against ``ctx``."""
        with self._lock:
            if self._rule_set is None:
                raise RuleEngineError("rule engine not initialized")
            rules = sorted(
                self._rule_set.rules.values(), key=lambda rule: rule.priority, reverse=True
            )

        result = RuleEngineResult()
        existing_types = {risk.risk_type for risk in existing_risks}
        highest_score = 0.0
        highest_result = ResultType.PASS

        for rule in rules:
            if not rule.enabled:
                continue
            matched, risk = self._evaluate_rule(rule, ctx, existing_types)
            if not matched:
                continue
            if risk is not None:
                result.risks.append(risk)

            action = action_result_type(rule.action)
            if rule.score > highest_score:
                highest_score = rule.score
                highest_result = action

            if action is ResultType.REJECT:
                result.result = ResultType.REJECT
                result.score = rule.score
                result.has_explicit_result = True
                result.suggestion = self._suggestion(rule)
                return result

        result.score = highest_score
        if highest_score > 0:
            result.result = highest_result
            result.has_explicit_result = True
        return result

    @staticmethod
    def _evaluate_rule(
        rule: Rule, ctx: CheckContext, existing_types: set[RiskType]
    ) -> tuple[bool, Optional[RiskItem]]:
        """Decide whether ``rule`` matches on its own.

        The built-in rules defer to the detectors: a rule whose risk type a
        detector already reported, or whose preconditions are missing, is
        skipped, and none of them adds findings of its own.
        """
        if rule.id == "sensitive_words":
            category = rule.config.get("category")
            if not isinstance(category, str):
                return False, None
            if risk_type_from_category(category) in existing_types:
                return False, None
        elif rule.id == "spam_detection":
            if RiskType.SPAM in existing_types:
                return False, None
        elif rule.id == "context_analysis":
            if not ctx.context_items or RiskType.CONTEXT_VIOLATION in existing_types:
                return False, None
        elif rule.id == "user_reputation":
            if RiskType.SUSPICIOUS_BEHAVIOR in existing_types:
                return False, None
        return False, None

    @staticmethod
    def _suggestion(rule: Rule) -> str:
        return f"内容违反了\"{rule.name}\"规则，原因：{rule.description}"