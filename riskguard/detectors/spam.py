"""Spam detection by links, phone numbers, money amounts and keywords."""

import re

from riskguard.detectors.base import Detector
from riskguard.model import CheckContext, RiskItem, RiskType

_URL_PATTERN = re.compile(r"https?://[^\t\n\f\r ]+")
_PHONE_PATTERN = re.compile(
    r"\d{3}[-.\s]??\d{3}[-.\s]??\d{4}|\(\d{3}\)\s*\d{3}[-.\s]??\d{4}|\d{3}[-.\s]??\d{4}",
    re.IGNORECASE | re.ASCII,
)
_MONEY_PATTERN = re.compile(r"[$¥€£](\d+)", re.IGNORECASE | re.ASCII)
_SPAM_KEYWORDS = (
    "退款", "贷款", "免费", "优惠", "促销", "中奖", "赚钱", "兼职", "发财", "暴富", "官方认证",
)
_SPAM_KEYWORDS_PATTERN = re.compile(
    r"(click here|buy now|free|discount|offer|promotion|win|earn|money|cheap)",
    re.IGNORECASE,
)


class SpamDetector(Detector):
    """Flags advertising and other unsolicited content."""

    def detect(self, ctx: CheckContext) -> list[RiskItem]:
        content = ctx.content
        if not content:
            return []
        content_lower = content.lower()
        risks: list[RiskItem] = []

        url_count = len(_URL_PATTERN.findall(content))
        if url_count > 0 and url_count > len(content.encode("utf-8")) / 100:
            risks.append(
                RiskItem(RiskType.SPAM, 60.0, "内容包含过多URL链接", {"url_count": str(url_count)})
            )

        phone_count = sum(1 for _ in _PHONE_PATTERN.finditer(content))
        if phone_count:
            risks.append(
                RiskItem(RiskType.SPAM, 50.0, "内容包含电话号码", {"phone_count": str(phone_count)})
            )

        money_count = sum(1 for _ in _MONEY_PATTERN.finditer(content))
        if money_count:
            risks.append(
                RiskItem(
                    RiskType.SPAM, 40.0, "内容包含金钱相关信息", {"money_count": str(money_count)}
                )
            )

        keyword = next((word for word in _SPAM_KEYWORDS if word in content_lower), None)
        if keyword is not None:
            risks.append(
                RiskItem(RiskType.SPAM, 65.0, "内容包含垃圾信息关键词", {"keyword": keyword})
            )

        match = _SPAM_KEYWORDS_PATTERN.search(content_lower)
        if match:
            risks.append(
                RiskItem(RiskType.SPAM, 55.0, "内容包含垃圾信息关键词", {"keyword": match.group(0)})
            )

        return risks