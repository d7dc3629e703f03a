"""Core data types shared by detectors, the rule engine and the service."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Mapping


class ResultType(IntEnum):
    """Outcome of a content check."""

    PASS = 0
    REVIEW = 1
    REJECT = 2
    WARNING = 3


class RiskType(IntEnum):
    """Kind of risk found in a piece of content."""

    UNKNOWN = 0
    SENSITIVE_WORD = 1
    SPAM = 2
    HARASSMENT = 3
    HATE_SPEECH = 4
    VIOLENCE = 5
    ADULT = 6
    CONTEXT_VIOLATION = 7
    SUSPICIOUS_BEHAVIOR = 8


@dataclass
class ContextItem:
    """One earlier message of a conversation."""

    content: str
    user_id: str = ""
    timestamp: int = 0
    content_id: str = ""


@dataclass
class CheckContext:
    """Everything a detector may look at for one check."""

    content: str
    user_id: str = ""
    scene: str = ""
    context_items: list[ContextItem] = field(default_factory=list)
    extra_data: dict[str, str] = field(default_factory=dict)


@dataclass
class CheckRequest:
    """A single item of a batch or stream check."""

    content: str
    user_id: str = ""
    scene: str = ""
    request_id: str = ""
    extra_data: dict[str, str] = field(default_factory=dict)


@dataclass
class RiskItem:
    """A risk reported by a detector or by the rule engine."""

    risk_type: RiskType
    score: float
    description: str
    details: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": int(self.risk_type),
            "score": self.score,
            "description": self.description,
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> RiskItem:
        return cls(
            risk_type=RiskType(int(data.get("type", RiskType.UNKNOWN))),
            score=float(data.get("score", 0.0)),
            description=str(data.get("description", "")),
            details=dict(data.get("details") or {}),
        )


@dataclass
class CheckResult:
    """The verdict for one piece of content."""

    result: ResultType = ResultType.PASS
    risk_score: float = 0.0
    risks: list[RiskItem] = field(default_factory=list)
    request_id: str = ""
    suggestion: str = ""
    cost_time: int = 0
    extra: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "result": int(self.result),
            "risk_score": self.risk_score,
            "risks": [risk.to_dict() for risk in self.risks],
            "request_id": self.request_id,
            "suggestion": self.suggestion,
            "cost_time": self.cost_time,
            "extra": dict(self.extra),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CheckResult:
        return cls(
            result=ResultType(int(data.get("result", ResultType.PASS))),
            risk_score=float(data.get("risk_score", 0.0)),
            risks=[RiskItem.from_dict(item) for item in data.get("risks") or []],
            request_id=str(data.get("request_id", "")),
            suggestion=str(data.get("suggestion", "")),
            cost_time=int(data.get("cost_time", 0)),
            extra=dict(data.get("extra") or {}),
        )


@dataclass
class BatchCheckResult:
    """Results of a batch check, in the order of the submitted items."""

    batch_id: str
    results: list[CheckResult] = field(default_factory=list)
    total_cost_time: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "results": [result.to_dict() for result in self.results],
            "total_cost_time": self.total_cost_time,
        }


def hash_string(s: str) -> str:
    """Return the hex MD5 digest of the UTF-8 encoding of ``s``."""
    return hashlib.md5(s.encode("utf-8")).hexdigest()


def new_context_item(content: str, user_id: str, content_id: str) -> ContextItem:
    """Create a context item stamped with the current Unix time."""
    return ContextItem(
        content=content,
        user_id=user_id,
        timestamp=int(time.time()),
        content_id=content_id,
    )


def new_risk_item(risk_type: RiskType, score: float, description: str) -> RiskItem:
    """Create a risk item with empty details."""
    return RiskItem(risk_type=risk_type, score=score, description=description)