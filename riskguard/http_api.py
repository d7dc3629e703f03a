"""HTTP API of the content check service."""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Optional

from flask import Flask, Response, jsonify, request

from riskguard.content_check import ContentCheckError, ContentCheckService
from riskguard.model import CheckRequest, CheckResult, ContextItem

API_PREFIX = "/api/v1"
SERVICE_NAME = "content-risk-control"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Credentials": "true",
    "Access-Control-Allow-Headers": (
        "Content-Type, Content-Length, Accept-Encoding, X-CSRF-Token, Authorization, "
        "accept, origin, Cache-Control, X-Requested-With"
    ),
    "Access-Control-Allow-Methods": "POST, OPTIONS, GET, PUT, DELETE",
}


class _BindError(ValueError):
    """The request body does not match the expected shape."""


def _json_object() -> Mapping[str, Any]:
    try:
        data = json.loads(request.get_data() or b"")
    except ValueError as exc:
        raise _BindError(str(exc) or "malformed JSON") from exc
    if not isinstance(data, Mapping):
        raise _BindError("request body must be a JSON object")
    return data


def _string(data: Mapping[str, Any], key: str, *, required: bool = False) -> str:
    value = data.get(key)
    if value is None:
        value = ""
    if not isinstance(value, str):
        raise _BindError(f"field {key!r} must be a string")
    if required and not value:
        raise _BindError(f"field {key!r} is required")
    return value


def _string_map(data: Mapping[str, Any], key: str) -> Optional[dict[str, str]]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, Mapping) or not all(
        isinstance(item, str) for item in value.values()
    ):
        raise _BindError(f"field {key!r} must be an object of strings")
    return dict(value)


def _integer(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise _BindError(f"field {key!r} must be an integer")
    return value


def _objects(data: Mapping[str, Any], key: str, *, required: bool = False) -> list[Mapping]:
    value = data.get(key)
    if value is None:
        if required:
            raise _BindError(f"field {key!r} is required")
        return []
    if not isinstance(value, list) or not all(isinstance(item, Mapping) for item in value):
        raise _BindError(f"field {key!r} must be a list of objects")
    return value


def _context_item(data: Mapping[str, Any]) -> ContextItem:
    return ContextItem(
        content=_string(data, "content"),
        user_id=_string(data, "user_id"),
        timestamp=_integer(data, "timestamp"),
        content_id=_string(data, "content_id"),
    )


def _check_request(data: Mapping[str, Any]) -> CheckRequest:
    return CheckRequest(
        content=_string(data, "content"),
        user_id=_string(data, "user_id"),
        scene=_string(data, "scene"),
        extra_data=_string_map(data, "extra_data") or {},
    )


def _result_body(result: CheckResult) -> dict[str, Any]:
    return {
        "success": True,
        "result": int(result.result),
        "risk_score": result.risk_score,
        "risks": [risk.to_dict() for risk in result.risks],
        "request_id": result.request_id,
        "suggestion": result.suggestion,
        "cost_time": result.cost_time,
        "extra": dict(result.extra),
    }


def _invalid(exc: Exception) -> tuple[Response, int]:
    return jsonify(success=False, error=f"Invalid request: {exc}"), 400


def _failed(exc: Exception) -> tuple[Response, int]:
    return jsonify(success=False, error=f"Failed to check content: {exc}"), 500


def _with_cors(response: Response) -> Response:
    response.headers.update(CORS_HEADERS)
    return response


def create_app(service: ContentCheckService) -> Flask:
    """Build the WSGI application serving the check endpoints under /api/v1."""
    app = Flask(__name__)
    app.json.ensure_ascii = False
    app.json.sort_keys = False

    @app.before_request
    def _preflight() -> Optional[Response]:
        if request.method == "OPTIONS":
            return _with_cors(app.response_class(status=204))
        return None

    def _not_found(_error: Exception) -> Response:
        response = app.response_class(
            "404 page not found", status=404, content_type="text/plain"
        )
        return _with_cors(response)

    app.register_error_handler(404, _not_found)
    app.register_error_handler(405, _not_found)

    @app.post(f"{API_PREFIX}/check")
    def check_content():
        try:
            body = _json_object()
            content = _string(body, "content", required=True)
            user_id = _string(body, "user_id")
            scene = _string(body, "scene")
            extra_data = _string_map(body, "extra_data")
        except _BindError as exc:
            return _invalid(exc)
        try:
            result = service.check_content(content, user_id, scene, extra_data)
        except ContentCheckError as exc:
            return _failed(exc)
        return jsonify(_result_body(result))

    @app.post(f"{API_PREFIX}/batch_check")
    def batch_check_content():
        try:
            body = _json_object()
            items = [_check_request(item) for item in _objects(body, "items", required=True)]
            batch_id = _string(body, "batch_id")
        except _BindError as exc:
            return _invalid(exc)
        if not batch_id:
            batch_id = "batch_" + datetime.now().strftime("%Y%m%d%H%M%S")
        try:
            result = service.batch_check_content(items, batch_id)
        except ContentCheckError as exc:
            return _failed(exc)
        return jsonify(
            {
                "success": True,
                "batch_id": result.batch_id,
                "results": [item.to_dict() for item in result.results],
                "total_cost_time": result.total_cost_time,
                "error": None,
            }
        )

    @app.post(f"{API_PREFIX}/check_with_context")
    def check_content_with_context():
        try:
            body = _json_object()
            content = _string(body, "content", required=True)
            user_id = _string(body, "user_id")
            scene = _string(body, "scene")
            context_items = [_context_item(item) for item in _objects(body, "context_items")]
            extra_data = _string_map(body, "extra_data")
        except _BindError as exc:
            return _invalid(exc)
        try:
            result = service.check_content_with_context(
                content, user_id, scene, context_items, extra_data
            )
        except ContentCheckError as exc:
            return _failed(exc)
        return jsonify(_result_body(result))

    @app.get(f"{API_PREFIX}/health")
    def health_check():
        return jsonify(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "time": datetime.now().astimezone().isoformat(timespec="seconds"),
            }
        )

    return app