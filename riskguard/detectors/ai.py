"""Detector that delegates content analysis to a remote AI service."""

import json
from collections.abc import Mapping
from typing import Any, Optional

import requests

from riskguard.detectors.base import Detector
from riskguard.model import CheckContext, ContextItem, RiskItem, RiskType


class AIServiceError(Exception):
    """Raised when the AI service cannot be reached or answers with an error."""


_RISK_TYPES = {
    "sensitive_word": RiskType.SENSITIVE_WORD,
    "spam": RiskType.SPAM,
    "harassment": RiskType.HARASSMENT,
    "hate_speech": RiskType.HATE_SPEECH,
    "violence": RiskType.VIOLENCE,
    "adult": RiskType.ADULT,
    "context_violation": RiskType.CONTEXT_VIOLATION,
    "suspicious_behavior": RiskType.SUSPICIOUS_BEHAVIOR,
}


def map_risk_type(name: str) -> RiskType:
    """Map a risk type name used by the AI service to a :class:`RiskType`."""
    return _RISK_TYPES.get(name, RiskType.UNKNOWN)


def _context_entry(item: ContextItem) -> dict[str, Any]:
    entry: dict[str, Any] = {"content": item.content}
    if item.user_id:
        entry["user_id"] = item.user_id
    if item.timestamp:
        entry["timestamp"] = item.timestamp
    return entry


def _decode_error(message: str) -> AIServiceError:
    return AIServiceError(f"failed to decode AI response: {message}")


def _to_risk(data: Any) -> RiskItem:
    if not isinstance(data, Mapping):
        raise _decode_error("risk item is not an object")
    score = data.get("score") or 0.0
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise _decode_error(f"invalid risk score {score!r}")
    details = data.get("details") or {}
    if not isinstance(details, Mapping):
        raise _decode_error("risk details are not an object")
    return RiskItem(
        risk_type=map_risk_type(str(data.get("type") or "")),
        score=float(score),
        description=str(data.get("description") or ""),
        details={str(key): str(value) for key, value in details.items()},
    )


class AIDetector(Detector):
    """Sends the content and its context to an AI service and reports its risks."""

    def __init__(self, url: str, api_key: str = "", timeout: Optional[float] = None) -> None:
        if not url:
            raise ValueError("AI service URL cannot be empty")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout if timeout else None

    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        if not ctx.content:
            return []

        body: dict[str, Any] = {"content": ctx.content}
        if ctx.user_id:
            body["user_id"] = ctx.user_id
        if ctx.context_items:
            body["context"] = [_context_entry(item) for item in ctx.context_items]
        if ctx.extra_data:
            body["extra_params"] = dict(ctx.extra_data)

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        try:
            response = requests.post(
                self.url,
                data=json.dumps(body, ensure_ascii=False).encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AIServiceError(f"failed to send AI request: {exc}") from exc

        if response.status_code != 200:
            raise AIServiceError(
                f"AI service returned non-OK status: {response.status_code}"
            )

        try:
            payload = json.loads(response.content)
        except ValueError as exc:
            raise _decode_error(str(exc)) from exc
        if not isinstance(payload, Mapping):
            raise _decode_error("response is not an object")

        if not payload.get("success"):
            error = payload.get("error")
            if error:
                raise AIServiceError(f"AI service error: {error}")
            raise AIServiceError("AI service failed without specific error")

        risks = payload.get("risks") or []
        if not isinstance(risks, list):
            raise _decode_error("risks is not a list")
        return [_to_risk(item) for item in risks]