"""Local NLP model server offering health and keyword-based analysis endpoints."""

import json
import logging
import os
import threading
import time
from typing import Any, Optional
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer, make_server

from flask import Flask, Response, jsonify, request

_log = logging.getLogger(__name__)

# The keyword lists are compared with the whole analysed text.
INSULT_WORDS = ("傻逼", "废物", "混蛋", "笨蛋", "蠢货", "垃圾")
THREAT_WORDS = ("警告", "小心", "威胁", "后果", "报复")
COMMAND_WORDS = ("必须", "一定要", "立刻", "马上")
NEGATIVE_WORDS = ("不好", "讨厌", "烦", "生气", "难过", "恨", "差劲", "糟糕")
POSITIVE_WORDS = ("好", "喜欢", "开心", "高兴", "棒", "赞", "优秀", "满意")
TOXIC_CATEGORIES = {
    "profanity": ("操", "艹", "妈的", "fuck", "shit"),
    "insult": ("傻逼", "白痴", "智障", "废物", "垃圾"),
    "threat": ("杀", "打死", "打爆", "揍", "弄死"),
    "hate": ("贱", "贱人", "死"),
}

_TOXIC_SCORE = 0.8
_ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def intent_analysis(text: str) -> dict[str, Any]:
    """Label the intent of ``text`` as neutral, insult, threat or command."""
    intent, confidence = "neutral", 0.5
    sub_intents: list[str] = []

    if text in INSULT_WORDS:
        intent, confidence = "insult", 0.85

    if text in THREAT_WORDS:
        if intent != "insult":
            intent, confidence = "threat", 0.8
        sub_intents.append("threat")

    if text in COMMAND_WORDS:
        if intent == "neutral":
            intent, confidence = "command", 0.75
        sub_intents.append("command")

    return {"label": intent, "confidence": confidence, "sub_intents": sub_intents or None}


def sentiment_analysis(text: str) -> dict[str, Any]:
    """Label the sentiment of ``text`` with a score in [-1, 1] and an intensity in [0, 1]."""
    negative = sum(1 for word in NEGATIVE_WORDS if word == text)
    positive = sum(1 for word in POSITIVE_WORDS if word == text)
    total_words = max(1, len(text.encode("utf-8")) // 3)

    label, score, intensity = "neutral", 0.0, 0.0
    if negative > positive:
        label = "negative"
        score = -negative / total_words * 2
        intensity = negative / total_words * 2
    elif positive > negative:
        label = "positive"
        score = positive / total_words * 2
        intensity = positive / total_words * 2

    return {
        "label": label,
        "score": _clamp(score, -1.0, 1.0),
        "intensity": _clamp(intensity, 0.0, 1.0),
    }


def toxicity_analysis(text: str) -> dict[str, Any]:
    """Report which toxic categories ``text`` belongs to."""
    categories = {
        category: _TOXIC_SCORE for category, words in TOXIC_CATEGORIES.items() if text in words
    }
    return {
        "is_toxic": bool(categories),
        "score": _TOXIC_SCORE if categories else 0.0,
        "categories": categories,
    }


def similarity_analysis(text: str, contexts: list[str]) -> dict[str, Any]:
    """Score ``text`` against each context and average the scores."""
    text_length = len(text.encode("utf-8"))
    scores: list[float] = []
    for context in contexts:
        common = sum(1 for char in text if char == context)
        longest = max(text_length, len(context.encode("utf-8")))
        scores.append(common / longest if longest > 0 else 0.0)
    average = sum(scores) / len(scores) if scores else 0.0
    return {"scores": scores, "average": average}


def _text_error(message: str, status: int) -> Response:
    return Response(
        message + "\n",
        status=status,
        content_type="text/plain; charset=utf-8",
        headers={"X-Content-Type-Options": "nosniff"},
    )


def _string_list(value: Any, key: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    items = []
    for item in value:
        if item is None:
            items.append("")
        elif isinstance(item, str):
            items.append(item)
        else:
            raise ValueError(f"{key} must hold strings")
    return items


def _parse_analyze_request(body: bytes) -> tuple[str, list[str], list[str]]:
    data = json.loads(body)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("request must be an object")
    text = data.get("text")
    if text is None:
        text = ""
    if not isinstance(text, str):
        raise ValueError("text must be a string")
    return (
        text,
        _string_list(data.get("contexts"), "contexts"),
        _string_list(data.get("analysis_types"), "analysis_types"),
    )


class _LoggingHandler(WSGIRequestHandler):
    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        _log.debug(format, *args)


class ModelServer:
    """HTTP server that exposes NLP analysis of text."""

    def __init__(
        self,
        logger: Optional[logging.Logger],
        config_path: str,
        model_path: str,
        port: int,
        *,
        load_delay: float = 2.0,
    ) -> None:
        self._logger = logger or _log
        self.config_path = config_path
        self.model_path = model_path
        self.server_port = port
        self.load_delay = load_delay
        self._lock = threading.Lock()
        self._ready = False
        self._model_loaded = False
        self._server: Optional[WSGIServer] = None

    @property
    def port(self) -> int:
        """The port the server listens on, once it is running."""
        with self._lock:
            return self._server.server_port if self._server else self.server_port

    def is_ready(self) -> bool:
        with self._lock:
            return self._ready

    def create_app(self) -> Flask:
        """Build the WSGI application with the /health and /analyze endpoints."""
        app = Flask(__name__)
        app.json.ensure_ascii = False
        app.add_url_rule("/health", "health", self._health_view, methods=_ALL_METHODS)
        app.add_url_rule("/analyze", "analyze", self._analyze_view, methods=_ALL_METHODS)
        return app

    def analyze(
        self, text: str, contexts: Optional[list[str]], analysis_types: list[str]
    ) -> dict[str, Any]:
        """Run the requested kinds of analysis on ``text``."""
        contexts = contexts or []
        result: dict[str, Any] = {}
        if "intent" in analysis_types:
            result["intent"] = intent_analysis(text)
        if "sentiment" in analysis_types:
            result["sentiment"] = sentiment_analysis(text)
        if "toxicity" in analysis_types:
            result["toxicity"] = toxicity_analysis(text)
        if "similarity" in analysis_types and contexts:
            result["similarity"] = similarity_analysis(text, contexts)
        return result

    def start(self) -> None:
        """Load the model and serve requests until :meth:`stop` is called."""
        if not os.path.exists(self.model_path):
            raise FileNotFoundError(f"模型文件不存在: {self.model_path}")

        app = self.create_app()
        self._load_model()

        server = make_server("", self.server_port, app, handler_class=_LoggingHandler)
        with self._lock:
            self._server = server
            self._ready = True

        self._logger.info("NLP模型服务启动在端口 %d", server.server_port)
        try:
            server.serve_forever()
        finally:
            server.server_close()

    def stop(self) -> None:
        """Mark the server not ready and shut it down."""
        with self._lock:
            self._ready = False
            server = self._server
            self._server = None
        self._logger.info("正在停止NLP模型服务...")
        if server is not None:
            server.shutdown()

    def _load_model(self) -> None:
        self._logger.info("正在加载NLP模型...")
        if self.load_delay > 0:
            time.sleep(self.load_delay)
        with self._lock:
            self._model_loaded = True
        self._logger.info("NLP模型加载完成")

    def _health_view(self) -> Response:
        with self._lock:
            ready = self._ready
            loaded = self._model_loaded
        if not ready:
            return _text_error("服务未就绪", 503)
        return jsonify(status="ok", modelLoaded=loaded, timestamp=int(time.time()))

    def _analyze_view(self) -> Response:
        if request.method != "POST":
            return _text_error("只支持POST请求", 405)
        try:
            text, contexts, analysis_types = _parse_analyze_request(request.get_data())
        except ValueError:
            return _text_error("无效的请求格式", 400)
        if not text:
            return _text_error("文本不能为空", 400)
        return jsonify(self.analyze(text, contexts, analysis_types))