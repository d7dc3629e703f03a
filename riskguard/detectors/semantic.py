"""Semantic detection from phrasing patterns, keyword categories and dialogue shape."""

import re
from collections import Counter
from dataclasses import dataclass

from riskguard.detectors.base import Detector
from riskguard.model import CheckContext, ContextItem, RiskItem, RiskType, new_risk_item

_RESPECTFUL_PATTERN = re.compile(r"(您好|请问|麻烦|谢谢|感谢|劳驾|打扰了|不好意思)", re.IGNORECASE)
_GREETING_PATTERN = re.compile(
    r"(早上好|上午好|中午好|下午好|晚上好|晚安|早安|嗨|喂|你好)", re.IGNORECASE
)
_FAMILY_PATTERN = re.compile(
    r"(你妈妈|你爸爸|你爷爷|你奶奶|你哥哥|你姐姐)(?:怎么样|好吗|还好吗|身体好吗)", re.IGNORECASE
)
_INSULT_PATTERN = re.compile(
    r"(滚蛋|傻逼|废物|混蛋|白痴|笨蛋|蠢货|智障|垃圾|贱人|去死)", re.IGNORECASE
)
_COMMAND_PATTERN = re.compile(
    r"(必须|一定要|给我|立刻|马上|快点)(.{0,15})(否则|不然|不许|不准|要不然)", re.IGNORECASE
)
_THREAT_PATTERN = re.compile(r"(小心|当心|后果|威胁|找你|等着|报复)", re.IGNORECASE)

_FAMILY_TERMS = ("你妈", "你爸", "你爷")
_FAMILY_REJECTION_WORDS = ("不要", "别", "停止", "讨厌")
_NEGATIVE_REPLY_WORDS = ("别", "不要", "停止", "烦")

_CATEGORY_KEYWORDS: dict[str, tuple[str, ...]] = {
    "insult": ("废物", "垃圾", "蠢货", "白痴", "傻逼", "混蛋", "笨蛋", "去死", "滚蛋"),
    "command": ("必须", "一定", "马上", "立刻", "给我", "快点"),
    "threat": ("小心", "当心", "威胁", "后果", "找你", "报复"),
    "spam": ("优惠", "打折", "促销", "免费", "赚钱", "发财", "中奖", "红包"),
}

_CATEGORY_RISK_TYPES = {
    "insult": RiskType.HARASSMENT,
    "command": RiskType.HARASSMENT,
    "threat": RiskType.HARASSMENT,
    "spam": RiskType.SPAM,
}

_CATEGORY_DESCRIPTIONS = {
    "insult": "侮辱性",
    "command": "命令性",
    "threat": "威胁性",
    "spam": "垃圾信息",
}

_KEYWORD_WEIGHT = 0.2
_MIN_CATEGORY_SCORE = 0.3
_MAX_LISTED_KEYWORDS = 3


@dataclass
class TextCategory:
    """The category a text was classified into, with its confidence."""

    category: str
    confidence: float
    description: str = ""


class SemanticDetector(Detector):
    """Looks at how content is phrased and how the conversation unfolds."""

    def __init__(self, context_size: int, threshold: float) -> None:
        self.context_size = context_size
        self.threshold = threshold

    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        content = ctx.content
        if not content:
            return []

        risk = self._pattern_based_detection(content)
        if risk is not None:
            return [risk]

        risk = self._family_term_analysis(content, ctx.context_items)
        if risk is not None:
            return [risk]

        risks: list[RiskItem] = []
        category = self.classify_text(content)
        if category.category != "normal" and category.confidence > self.threshold:
            risks.append(
                new_risk_item(
                    _CATEGORY_RISK_TYPES.get(category.category, RiskType.UNKNOWN),
                    category.confidence * 100,
                    category.description,
                )
            )

        if ctx.context_items:
            risks.extend(self._analyze_conversation_pattern(ctx))

        return risks

    def classify_text(self, text: str) -> TextCategory:
        """Classify ``text`` by keyword hits; "normal" when no category is strong enough."""
        best_category = ""
        best_score = 0.0
        best_description = ""

        for category, keywords in _CATEGORY_KEYWORDS.items():
            matched = [keyword for keyword in keywords if keyword in text]
            score = _KEYWORD_WEIGHT * len(matched)
            if score > best_score:
                best_score = score
                best_category = category
                listed = "、".join(matched[:_MAX_LISTED_KEYWORDS])
                best_description = (
                    f"检测到{_CATEGORY_DESCRIPTIONS.get(category, '未知')}内容，包含关键词: {listed}"
                )

        if best_score < _MIN_CATEGORY_SCORE:
            return TextCategory(category="normal", confidence=0.0, description="")
        return TextCategory(
            category=best_category, confidence=best_score, description=best_description
        )

    @staticmethod
    def _pattern_based_detection(content: str) -> RiskItem | None:
        if _INSULT_PATTERN.search(content):
            return new_risk_item(RiskType.HARASSMENT, 85.0, "检测到直接侮辱性语言")

        if _THREAT_PATTERN.search(content):
            return new_risk_item(RiskType.HARASSMENT, 75.0, "检测到潜在威胁性语言")

        if (
            _COMMAND_PATTERN.search(content)
            and "你妈" in content
            and not _FAMILY_PATTERN.search(content)
            and not _GREETING_PATTERN.search(content)
        ):
            return new_risk_item(RiskType.HARASSMENT, 80.0, "检测到针对家人的负面表达")

        return None

    @staticmethod
    def _family_term_analysis(
        content: str, context_items: list[ContextItem]
    ) -> RiskItem | None:
        if not any(term in content for term in _FAMILY_TERMS):
            return None

        if (
            _FAMILY_PATTERN.search(content)
            or _RESPECTFUL_PATTERN.search(content)
            or _GREETING_PATTERN.search(content)
        ):
            return None

        has_rejection = any(
            word in item.content for item in context_items for word in _FAMILY_REJECTION_WORDS
        )
        if has_rejection:
            return new_risk_item(
                RiskType.HARASSMENT,
                75.0,
                "检测到在对方反感后使用带有亲属词的可能冒犯内容",
            )
        return None

    def _analyze_conversation_pattern(self, ctx: CheckContext) -> list[RiskItem]:
        items = ctx.context_items
        if len(items) < 2:
            return []

        risks: list[RiskItem] = []
        current_user = ctx.user_id

        own_messages = sum(1 for item in items if item.user_id == current_user)
        other_replies = Counter(item.user_id for item in items if item.user_id != current_user)
        # Every message by the sender counts once towards each reply of every other user.
        message_counts = {user: own_messages * count for user, count in other_replies.items()}

        for other_user, message_count in message_counts.items():
            reply_count = other_replies[other_user]
            if message_count > reply_count * 2 and message_count > 2:
                ratio = message_count / max(1.0, float(reply_count))
                risk = new_risk_item(
                    RiskType.HARASSMENT, 60.0, "检测到不平衡的对话模式，可能是骚扰"
                )
                risk.details = {"message_ratio": f"{ratio:.1f}", "target_user": other_user}
                risks.append(risk)
                break

        negative_responses = 0
        for item, following in zip(items, [*items[1:], None]):
            if item.user_id == current_user:
                continue
            if not any(word in item.content for word in _NEGATIVE_REPLY_WORDS):
                continue
            negative_responses += 1
            if following is not None and following.user_id == current_user:
                category = self.classify_text(following.content).category
                if category in ("command", "insult"):
                    content_type = "命令型" if category == "command" else "侮辱性"
                    risks.append(
                        new_risk_item(
                            RiskType.CONTEXT_VIOLATION,
                            70.0,
                            f"检测到在对方表达不满后继续发送{content_type}内容",
                        )
                    )
                    break

        if negative_responses >= 2:
            risk = new_risk_item(
                RiskType.SUSPICIOUS_BEHAVIOR, 65.0, "检测到在多次负面回应后继续发送消息"
            )
            risk.details = {"negative_responses": str(negative_responses)}
            risks.append(risk)

        return risks