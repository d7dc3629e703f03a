"""Harassment detection by keywords and conversation patterns."""

from collections import Counter
from typing import Optional

from riskguard.detectors.base import Detector
from riskguard.model import CheckContext, RiskItem, RiskType

HARASSMENT_KEYWORDS = (
    "骚扰", "威胁", "欺凌", "攻击", "人身攻击", "侮辱", "歧视",
    "性骚扰", "跟踪", "恐吓", "霸凌", "黑料", "隐私", "私人信息",
)

REPEAT_MESSAGE_THRESHOLD = 3


class HarassmentDetector(Detector):
    """Flags harassing keywords, repeated messages and targeted messaging."""

    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        if not ctx.content:
            return []
        risks: list[RiskItem] = []
        content = ctx.content.lower()

        keyword = next((word for word in HARASSMENT_KEYWORDS if word in content), None)
        if keyword is not None:
            risks.append(
                RiskItem(RiskType.HARASSMENT, 70.0, "内容包含骚扰相关关键词", {"keyword": keyword})
            )

        if ctx.context_items:
            repeat_count = self._count_same_user_messages(ctx)
            if repeat_count >= REPEAT_MESSAGE_THRESHOLD:
                risks.append(
                    RiskItem(
                        RiskType.HARASSMENT,
                        65.0,
                        "检测到重复发送消息的骚扰模式",
                        {"repeat_count": str(repeat_count)},
                    )
                )

            target = self._targeted_user(ctx)
            if target is not None:
                risks.append(
                    RiskItem(
                        RiskType.HARASSMENT,
                        60.0,
                        "检测到针对特定用户的频繁消息",
                        {"target_user": target},
                    )
                )

        return risks

    @staticmethod
    def _count_same_user_messages(ctx: CheckContext) -> int:
        """Messages by the sender in the context, plus the current one."""
        if not ctx.context_items:
            return 0
        return sum(1 for item in ctx.context_items if item.user_id == ctx.user_id) + 1

    @staticmethod
    def _targeted_user(ctx: CheckContext) -> Optional[str]:
        """Return another user who appears at least twice in the context."""
        if len(ctx.context_items) < 2:
            return None
        counts = Counter(
            item.user_id for item in ctx.context_items if item.user_id != ctx.user_id
        )
        return next((user for user, count in counts.items() if count >= 2), None)