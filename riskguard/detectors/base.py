"""Detector interface and the sensitive-word detector."""

from abc import ABC, abstractmethod
from typing import Optional, Protocol, runtime_checkable

from riskguard.model import CheckContext, RiskItem, RiskType


class Detector(ABC):
    """Something that inspects a check context and reports risks."""

    @abstractmethod
    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        """Return the risks found in ``ctx``; an empty list when there are none."""


@runtime_checkable
class SensitiveWordChecker(Protocol):
    """A source of sensitive words that can be searched for in text."""

    def contains_word(self, content: str) -> Optional[str]:
        """Return a sensitive word found in ``content``, or None."""
        ...


class SensitiveWordDetector(Detector):
    """Reports content that contains a word known to the checker."""

    def __init__(self, sensitive_words: SensitiveWordChecker) -> None:
        self._sensitive_words = sensitive_words

    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        if not ctx.content:
            return []
        word = self._sensitive_words.contains_word(ctx.content)
        if word is None:
            return []
        return [
            RiskItem(
                risk_type=RiskType.SENSITIVE_WORD,
                score=80.0,
                description=f"内容包含敏感词: {word}",
                details={"word": word},
            )
        ]