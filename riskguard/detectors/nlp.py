"""Detector that asks an OpenAI-compatible chat completion API to judge content."""

import json
from collections.abc import Mapping
from typing import Any

import requests

from riskguard.detectors.base import Detector
from riskguard.detectors.semantic_nlp import (
    DetectorUnavailableError,
    SemanticAnalysisResult,
    contains_rejection,
    fallback_detect,
)
from riskguard.model import CheckContext, RiskItem, RiskType, new_risk_item

DEFAULT_BASE_URL = "http://localhost:8000/v1"
DEFAULT_MODEL = "gpt-3.5-turbo"
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
- 风险分数（risk_score）: 0-1之间的总体风险分数"""

_CONNECT_TIMEOUT = 5.0
_REQUEST_TIMEOUT = 30.0
_TEMPERATURE = 0.1
_MAX_TOKENS = 500


class NLPDetector(Detector):
    """Asks a hosted chat model to judge content; falls back to keywords on failure."""

    def __init__(
        self,
        api_key: str,
        threshold: float,
        context_size: int,
        *,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
    ) -> None:
        if not api_key:
            raise ValueError("OpenAI API密钥不能为空")
        self.api_key = api_key
        self.threshold = threshold
        self.context_size = context_size
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.categories = list(CATEGORIES)
        self.fallback_mode = False
        try:
            self.test_connection()
        except DetectorUnavailableError as exc:
            self.fallback_mode = True
            raise DetectorUnavailableError(
                f"OpenAI API连接测试失败，启用降级模式: {exc}", detector=self
            ) from exc

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def test_connection(self) -> None:
        """List the available models; raises DetectorUnavailableError on failure."""
        try:
            response = requests.get(
                f"{self.base_url}/models", headers=self._headers, timeout=_CONNECT_TIMEOUT
            )
        except requests.RequestException as exc:
            raise DetectorUnavailableError(f"OpenAI API连接失败: {exc}") from exc
        if response.status_code != 200:
            raise DetectorUnavailableError(
                f"OpenAI API连接失败: status {response.status_code}"
            )

    def analyze_content(
        self, content: str, context_items: list[str]
    ) -> SemanticAnalysisResult:
        """Ask the model to analyse ``content`` in the light of ``context_items``."""
        if context_items:
            joined = "\n".join(context_items)
            user_input = f"上下文信息:\n{joined}\n\n待分析文本:\n{content}"
        else:
            user_input = f"待分析文本:\n{content}"

        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_input},
            ],
            "temperature": _TEMPERATURE,
            "max_tokens": _MAX_TOKENS,
            "response_format": {"type": "json_object"},
        }

        try:
            response = requests.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers,
                timeout=_REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise DetectorUnavailableError(f"OpenAI API调用失败: {exc}") from exc

        if response.status_code != 200:
            raise DetectorUnavailableError(
                f"OpenAI API调用失败: status {response.status_code}: {response.text}"
            )

        try:
            body = response.json()
            message = body["choices"][0]["message"]
            if not isinstance(message, Mapping):
                raise TypeError("message is not an object")
            text = message.get("content") or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise DetectorUnavailableError(f"OpenAI API调用失败: invalid response: {exc}") from exc

        try:
            return SemanticAnalysisResult.from_dict(json.loads(str(text)))
        except (ValueError, TypeError) as exc:
            raise DetectorUnavailableError(f"解析OpenAI响应失败: {exc}") from exc

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