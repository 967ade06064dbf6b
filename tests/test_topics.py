"""Topic inference and reply prompt tests."""

import pytest

from rapport.schemas import Topic
from rapport.topics import build_reply_prompt, infer_topic


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Where is the control nexus?", Topic.HINT),
        ("Should we SUGGEST something?", Topic.HINT),
        ("Why did the reset happen?", Topic.LORE),
        ("It was different before.", Topic.LORE),
        ("How is the mission going?", Topic.QUEST),
        ("Objective complete.", Topic.QUEST),
        ("Nice weather in here.", Topic.BANTER),
        ("", Topic.BANTER),
    ],
)
def test_infer_topic(text, expected):
    assert infer_topic(text) == expected


def test_hint_keywords_take_precedence():
    assert infer_topic("Do you remember the pattern?") == Topic.HINT
    assert infer_topic("Remember the mission?") == Topic.LORE


@pytest.mark.parametrize(
    "topic, expected",
    [
        (Topic.HINT, "hint about current objective from morthos"),
        (Topic.LORE, "lore question from morthos"),
        (Topic.QUEST, "quest discussion from morthos"),
        (Topic.BANTER, "message from morthos"),
        (None, "message from morthos"),
    ],
)
def test_build_reply_prompt(topic, expected):
    assert build_reply_prompt("morthos", topic) == expected
