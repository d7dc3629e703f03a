from riskguard.detectors.harassment import HarassmentDetector
from riskguard.model import CheckContext, ContextItem, RiskType

REPEAT_DESC = "检测到重复发送消息的骚扰模式"
TARGET_DESC = "检测到针对特定用户的频繁消息"


def conversation():
    return [
        ContextItem("你好，请问怎么联系你？", "user_harasser", 1, "msg_001"),
        ContextItem("我不想告诉你。", "user_normal", 2, "msg_002"),
        ContextItem("告诉我吧，我想和你交朋友。", "user_harasser", 3, "msg_003"),
        ContextItem("请不要再打扰我。", "user_normal", 4, "msg_004"),
    ]


def test_empty_content():
    assert HarassmentDetector().detect(CheckContext("")) == []


def test_clean_content_without_context():
    assert HarassmentDetector().detect(CheckContext("今天天气不错")) == []


def test_keyword_detected_once():
    risks = HarassmentDetector().detect(CheckContext("他一直在骚扰我，还威胁我"))
    assert len(risks) == 1
    risk = risks[0]
    assert risk.risk_type is RiskType.HARASSMENT
    assert risk.score == 70.0
    assert risk.description == "内容包含骚扰相关关键词"
    assert risk.details == {"keyword": "骚扰"}


def test_repeat_and_targeting_in_conversation():
    ctx = CheckContext(
        "你必须告诉我你的联系方式！",
        user_id="user_harasser",
        scene="private_message",
        context_items=conversation(),
    )
    risks = HarassmentDetector().detect(ctx)
    by_desc = {risk.description: risk for risk in risks}
    assert set(by_desc) == {REPEAT_DESC, TARGET_DESC}
    assert by_desc[REPEAT_DESC].score == 65.0
    assert by_desc[REPEAT_DESC].details == {"repeat_count": "3"}
    assert by_desc[TARGET_DESC].score == 60.0
    assert by_desc[TARGET_DESC].details == {"target_user": "user_normal"}


def test_single_context_item_is_not_a_pattern():
    ctx = CheckContext(
        "你好",
        user_id="user_a",
        context_items=[ContextItem("hi", "user_a", 1, "m1")],
    )
    assert HarassmentDetector().detect(ctx) == []


def test_other_user_once_is_not_targeting():
    ctx = CheckContext(
        "你好",
        user_id="user_a",
        context_items=[
            ContextItem("one", "user_b", 1, "m1"),
            ContextItem("two", "user_c", 2, "m2"),
        ],
    )
    descriptions = [risk.description for risk in HarassmentDetector().detect(ctx)]
    assert TARGET_DESC not in descriptions
    assert REPEAT_DESC not in descriptions