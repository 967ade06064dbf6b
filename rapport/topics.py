"""Keyword topic inference and reply prompts for inter-agent chatter."""

from typing import Dict, Optional, Sequence, Tuple

from .schemas import Topic


# Checked in order; the first topic with a matching keyword wins.
TOPIC_KEYWORDS: Tuple[Tuple[Topic, Sequence[str]], ...] = (
    (Topic.HINT, ("control nexus", "where", "pattern", "sequence", "suggest", "hint")),
    (Topic.LORE, ("why", "history", "remember", "originally", "before")),
    (Topic.QUEST, ("mission", "task", "objective", "progress", "complete")),
)

PROMPT_TEMPLATES: Dict[Topic, str] = {
    Topic.HINT: "hint about current objective from {sender}",
    Topic.LORE: "lore question from {sender}",
    Topic.QUEST: "quest discussion from {sender}",
}


def infer_topic(text: str) -> Topic:
    """Guess a topic from message text. Defaults to banter."""
    lowered = text.lower()
    for topic, keywords in TOPIC_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return topic
    return Topic.BANTER


def build_reply_prompt(sender_id: str, topic: Optional[Topic]) -> str:
    template = PROMPT_TEMPLATES.get(topic, "message from {sender}")
    return template.format(sender=sender_id)
