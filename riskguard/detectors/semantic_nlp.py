"""Semantic detector backed by a locally deployed chat model, with a keyword fallback."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

from riskguard.detectors.base import Detector
from riskguard.model import CheckContext, RiskItem, RiskType, new_risk_item

DEFAULT_ENDPOINT = "http://localhost:11434/api/chat"
MODEL_NAME = "llama3"
CATEGORIES = (
    "insult",
    "threat",
    "harassment",
    "hate_speech",
    "self_harm",
    "sexual",
    "violence",
)

SYSTEM_PROMPT = """你是一个内容安全分析专家，你需要分析用户输入的文本是否包含不安全内容，如侮辱、骚扰、威胁、仇恨言论等。
请分析用户提供的文本，并返回JSON格式的分析结果，包括：
- 是否有害（is_toxic）: true或false
- 分类（categories）: 可能的类别包括"insult", "threat", "harassment", "hate_speech", "self_harm", "sexual", "violence"，为每个相关类别提供0-1之间的分数
- 解释（explanation）: 简要解释判断理由
- 意图（intent）: "harmful", "neutral", "friendly"中的一个
- 情感（sentiment）: "negative", "neutral", "positive"中的一个
- 风险分数（risk_score）: 0-1之间的总体风险分数

必须严格按照JSON格式输出，不要输出任何其他内容！"""

_CONNECT_TIMEOUT = 5.0
_REQUEST_TIMEOUT = 30.0

_HARMFUL_WORDS = (
    "傻逼", "混蛋", "垃圾", "白痴", "废物", "贱人",
    "去死", "杀了你", "打死你", "灭了你", "弄死你",
)
_THREAT_WORDS = ("小心", "当心", "威胁", "后果", "找你", "报复")
_REJECTION_WORDS = (
    "不要", "别", "停止", "别再", "不想", "拒绝",
    "别来", "讨厌", "烦人", "骚扰", "别发",
)


class DetectorUnavailableError(Exception):
    """Raised when the model service cannot be used.

    ``detector`` holds a detector that still works in fallback mode, if any.
    """

    def __init__(self, message: str, detector: Optional["SemanticNLPDetector"] = None) -> None:
        super().__init__(message)
        self.detector = detector


def _typed(data: Mapping[str, Any], key: str, kind: type, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    if kind is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"field {key!r} must be a number")
        return float(value)
    if not isinstance(value, kind):
        raise ValueError(f"field {key!r} must be of type {kind.__name__}")
    return value


@dataclass
class SemanticAnalysisResult:
    """The model's verdict on one text."""

    is_toxic: bool = False
    categories: dict[str, float] = field(default_factory=dict)
    explanation: str = ""
    intent: str = ""
    sentiment: str = ""
    risk: float = 0.0

    @classmethod
    def from_dict(cls, data: Any) -> "SemanticAnalysisResult":
        """Build a result from decoded JSON; raises ValueError on a malformed value."""
        if not isinstance(data, Mapping):
            raise ValueError("analysis result must be a JSON object")
        raw_categories = data.get("categories") or {}
        if not isinstance(raw_categories, Mapping):
            raise ValueError("field 'categories' must be an object")
        categories = {
            str(name): _typed(raw_categories, name, float, 0.0) for name in raw_categories
        }
        return cls(
            is_toxic=_typed(data, "is_toxic", bool, False),
            categories=categories,
            explanation=_typed(data, "explanation", str, ""),
            intent=_typed(data, "intent", str, ""),
            sentiment=_typed(data, "sentiment", str, ""),
            risk=_typed(data, "risk_score", float, 0.0),
        )


def contains_rejection(text: str) -> bool:
    """Whether ``text`` expresses refusal or annoyance."""
    return any(word in text for word in _REJECTION_WORDS)


def fallback_detect(ctx: CheckContext) -> list[RiskItem]:
    """Keyword-based detection used when the model service is unavailable."""
    content = ctx.content
    risks: list[RiskItem] = []

    harmful = next((word for word in _HARMFUL_WORDS if word in content), None)
    if harmful is not None:
        risks.append(new_risk_item(RiskType.HARASSMENT, 80.0, f"检测到敏感词: {harmful}"))

    if any(word in content for word in _THREAT_WORDS):
        risks.append(new_risk_item(RiskType.HARASSMENT, 75.0, "检测到潜在威胁性语言"))

    if any(
        item.user_id != ctx.user_id and contains_rejection(item.content)
        for item in ctx.context_items
    ):
        risks.append(
            new_risk_item(RiskType.CONTEXT_VIOLATION, 70.0, "检测到可能在对方拒绝后继续发送消息")
        )

    return risks


def extract_json(content: str) -> str:
    """Return the body of a ```json fenced block, or ``content`` unchanged."""
    if "```json" in content:
        parts = content.split("```json")
        if len(parts) > 1:
            return parts[1].split("```")[0].strip()
    return content


class SemanticNLPDetector(Detector):
    """Asks a local chat model to judge content; falls back to keywords on failure."""

    def __init__(self, api_endpoint: str, threshold: float, context_size: int) -> None:
        self.api_endpoint = api_endpoint or DEFAULT_ENDPOINT
        self.threshold = threshold
        self.context_size = context_size
        self.categories = list(CATEGORIES)
        self.fallback_mode = False
        try:
            self.test_connection()
        except DetectorUnavailableError as exc:
            self.fallback_mode = True
            raise DetectorUnavailableError(
                f"本地NLP模型服务连接测试失败，启用降级模式: {exc}", detector=self
            ) from exc

    @property
    def tags_endpoint(self) -> str:
        return self.api_endpoint.replace("/api/chat", "/api/tags", 1)

    def test_connection(self) -> None:
        """Check that the model service answers; raises DetectorUnavailableError if not."""
        try:
            response = requests.get(self.tags_endpoint, timeout=_CONNECT_TIMEOUT)
        except requests.RequestException as exc:
            raise DetectorUnavailableError(f"连接本地模型服务失败: {exc}") from exc
        if response.status_code != 200:
            raise DetectorUnavailableError(f"模型服务返回非200状态码: {response.status_code}")

    def analyze_content(self, content: str, contexts: list[str]) -> SemanticAnalysisResult:
        """Ask the model to analyse ``content`` in the light of ``contexts``."""
        if contexts:
            user_input = f"上下文信息:\n{chr(10).join(contexts)}\n\n待分析文本:\n{content}"
        else:
            user_input = f"待分析文本:\n{content}"

        request = {
            "model": MODEL_NAME,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_input},
            ],
            "options": {"temperature": 0.1, "max_tokens": 2048},
        }

        try:
            response = requests.post(self.api_endpoint, json=request, timeout=_REQUEST_TIMEOUT)
        except requests.RequestException as exc:
            raise DetectorUnavailableError(f"调用本地模型API失败: {exc}") from exc

        if response.status_code != 200:
            raise DetectorUnavailableError(
                f"API返回错误状态码 {response.status_code}: {response.text}"
            )

        try:
            chat = json.loads(response.content)
        except ValueError as exc:
            raise DetectorUnavailableError(f"解析模型响应失败: {exc}") from exc
        if not isinstance(chat, Mapping):
            raise DetectorUnavailableError("解析模型响应失败: response is not an object")

        if chat.get("error"):
            raise DetectorUnavailableError(f"模型返回错误: {chat['error']}")

        message = chat.get("message") or {}
        text = message.get("content", "") if isinstance(message, Mapping) else ""
        text = extract_json(str(text or ""))

        try:
            return SemanticAnalysisResult.from_dict(json.loads(text))
        except (ValueError, TypeError) as exc:
            raise DetectorUnavailableError(f"解析分析结果失败: {exc}, 原始内容: {text}") from exc

    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        if self.fallback_mode:
            return fallback_detect(ctx)

        contexts = [item.content for item in ctx.context_items]
        try:
            result = self.analyze_content(ctx.content, contexts)
        except DetectorUnavailableError:
            self.fallback_mode = True
            return fallback_detect(ctx)

        risks: list[RiskItem] = []
        if result.is_toxic and result.risk > self.threshold:
            risk = new_risk_item(RiskType.HARASSMENT, result.risk * 100, result.explanation)
            risk.details = {
                name: f"{score:.2f}"
                for name, score in result.categories.items()
                if score > self.threshold
            }
            risks.append(risk)

        if result.intent and result.intent != "neutral" and result.risk > self.threshold:
            harmful = result.intent == "harmful"
            risks.append(
                new_risk_item(
                    RiskType.HARASSMENT if harmful else RiskType.UNKNOWN,
                    result.risk * 80,
                    f"检测到{'有害' if harmful else result.intent}意图",
                )
            )

        if contexts and any(contains_rejection(text) for text in contexts):
            risks.append(
                new_risk_item(
                    RiskType.CONTEXT_VIOLATION, result.risk * 90, "检测到上下文相关的风险行为"
                )
            )

        return risks