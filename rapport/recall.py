"""
Recall engine: relevance-scored memory retrieval over the event ledger.

Given an agent, the current situation and a set of triggers, recall finds
events involving the agent that either match a trigger or happened in the
same location, scores them, and returns the top few annotated with an
emotional framing and dialogue/behaviour hints.

Scoring is a weighted sum, capped at 1.0:

    0.4 * intensity
  + 0.3 if the event happened where the agent is now
  + max(0, 0.3 - 0.01 * days since the event)     (linear recency decay)
  + weight of every matching trigger (0.2 unless the trigger says otherwise)

Memories scoring below ``recall_threshold`` are dropped. The annotation
tables are illustrative content; games can swap them through RecallConfig
without touching the scoring.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .ledger import EventLedger, utc_now
from .logging_utils import Color, colored, debug_enabled, log_deterministic
from .schemas import (
    EmotionalImpact,
    InteractionEvent,
    InteractionType,
    MemoryTrigger,
    RecalledMemory,
    SituationContext,
    TriggerKind,
)


DEFAULT_EMOTIONAL_IMPACT: Dict[InteractionType, EmotionalImpact] = {
    InteractionType.COOPERATION: EmotionalImpact.POSITIVE,
    InteractionType.RESCUE: EmotionalImpact.POSITIVE,
    InteractionType.MUTUAL_SUPPORT: EmotionalImpact.POSITIVE,
    InteractionType.SACRIFICE: EmotionalImpact.POSITIVE,
    InteractionType.BETRAYAL: EmotionalImpact.NEGATIVE,
    InteractionType.CONFLICT: EmotionalImpact.NEGATIVE,
    InteractionType.RECONCILIATION: EmotionalImpact.MIXED,
    InteractionType.SHARED_SECRET: EmotionalImpact.NEUTRAL,
}

# "{location}" is filled from the event context.
DEFAULT_DIALOGUE_TEMPLATES: Dict[InteractionType, List[str]] = {
    InteractionType.COOPERATION: [
        "Remember when we worked together in the {location}?",
        "You've proven trustworthy before.",
    ],
    InteractionType.BETRAYAL: [
        "Last time I trusted you, it didn't end well.",
        "I haven't forgotten what happened in the {location}.",
    ],
    InteractionType.RESCUE: [
        "You saved me before. I owe you.",
        "I remember your courage when I needed help.",
    ],
    InteractionType.RECONCILIATION: [
        "We've had our differences, but we worked through them.",
        "Perhaps we can find common ground again.",
    ],
}

DEFAULT_BEHAVIOR_CHANGES: Dict[InteractionType, str] = {
    InteractionType.COOPERATION: "increase_cooperation_chance",
    InteractionType.RESCUE: "increase_cooperation_chance",
    InteractionType.BETRAYAL: "increase_suspicion",
    InteractionType.MUTUAL_SUPPORT: "offer_help_first",
    InteractionType.CONFLICT: "be_more_cautious",
    InteractionType.RECONCILIATION: "attempt_diplomatic_approach",
}
DEFAULT_BEHAVIOR_FALLBACK = "maintain_current_stance"


@dataclass
class RecallConfig:
    """Recall weights, limits and annotation tables."""

    recall_threshold: float = 0.3
    max_results: int = 5
    intensity_weight: float = 0.4
    location_weight: float = 0.3
    recency_max_bonus: float = 0.3
    recency_decay_per_day: float = 0.01
    default_trigger_weight: float = 0.2
    emotional_impact: Dict[InteractionType, EmotionalImpact] = field(
        default_factory=lambda: dict(DEFAULT_EMOTIONAL_IMPACT)
    )
    dialogue_templates: Dict[InteractionType, List[str]] = field(
        default_factory=lambda: {key: list(value) for key, value in DEFAULT_DIALOGUE_TEMPLATES.items()}
    )
    behavior_changes: Dict[InteractionType, str] = field(
        default_factory=lambda: dict(DEFAULT_BEHAVIOR_CHANGES)
    )
    behavior_fallback: str = DEFAULT_BEHAVIOR_FALLBACK


def event_matches_trigger(event: InteractionEvent, trigger: MemoryTrigger) -> bool:
    """Return True when an event satisfies a recall trigger."""

    context = event.context
    value = trigger.value

    if trigger.kind == TriggerKind.LOCATION:
        return context.location == value
    if trigger.kind == TriggerKind.NPC_PRESENT:
        return value in context.others_present
    if trigger.kind == TriggerKind.PLAYER_ACTION:
        needle = value.lower()
        return any(needle in action.lower() for action in context.player_actions)
    if trigger.kind == TriggerKind.KEYWORD:
        return value.lower() in event.description.lower()
    if trigger.kind == TriggerKind.EMOTIONAL_STATE:
        return context.emotional_state == value
    return False


class RecallEngine:
    """Scores ledger events against a situation and returns the best matches."""

    def __init__(
        self,
        ledger: EventLedger,
        config: Optional[RecallConfig] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.ledger = ledger
        self.config = config or RecallConfig()
        # Share the ledger's clock unless told otherwise so recency lines up
        # with recorded timestamps.
        self.clock = clock or getattr(ledger, "clock", utc_now)

    def recall(
        self,
        agent_id: str,
        current_context: Optional[SituationContext] = None,
        triggers: Optional[Sequence[MemoryTrigger]] = None,
    ) -> List[RecalledMemory]:
        """Return up to ``max_results`` memories for an agent, best first.

        Unknown agents and empty ledgers yield an empty list.
        """

        context = current_context or SituationContext()
        trigger_list = list(triggers or [])
        now = self.clock()

        memories: List[RecalledMemory] = []
        for event in self._candidate_events(agent_id, context, trigger_list):
            matched = [trigger for trigger in trigger_list if event_matches_trigger(event, trigger)]
            score = self.score(event, context, matched, now=now)
            if score < self.config.recall_threshold:
                continue
            memories.append(self._annotate(event, score, matched))

        memories.sort(key=lambda memory: memory.relevance_score, reverse=True)
        results = memories[: self.config.max_results]

        if debug_enabled("DEBUG_RECALL"):
            print(colored(f"\n  [DEBUG_RECALL] {agent_id} - {len(results)} memories:", Color.CYAN))
            for i, memory in enumerate(results, 1):
                print(
                    colored(
                        f"    {i}. [{memory.source_event.type.value}, "
                        f"score {memory.relevance_score:.2f}] {memory.trigger_reason}",
                        Color.CYAN,
                    )
                )
        elif results:
            log_deterministic(f"[Recall] {agent_id}: {len(results)} memories recalled")

        return results

    def score(
        self,
        event: InteractionEvent,
        context: SituationContext,
        matched_triggers: Iterable[MemoryTrigger],
        *,
        now: Optional[datetime] = None,
    ) -> float:
        cfg = self.config
        score = event.intensity * cfg.intensity_weight

        if context.location is not None and context.location == event.context.location:
            score += cfg.location_weight

        days = self._days_since(event, now)
        score += max(0.0, cfg.recency_max_bonus - days * cfg.recency_decay_per_day)

        for trigger in matched_triggers:
            score += trigger.weight if trigger.weight is not None else cfg.default_trigger_weight

        return min(1.0, score)

    def _days_since(self, event: InteractionEvent, now: Optional[datetime]) -> float:
        elapsed = (now or self.clock()) - event.timestamp
        return max(0.0, elapsed.total_seconds() / 86400.0)

    def _candidate_events(
        self,
        agent_id: str,
        context: SituationContext,
        triggers: List[MemoryTrigger],
    ) -> List[InteractionEvent]:
        candidates = []
        for event in self.ledger.events_for(agent_id):
            if any(event_matches_trigger(event, trigger) for trigger in triggers):
                candidates.append(event)
            elif context.location is not None and event.context.location == context.location:
                candidates.append(event)
        return candidates

    def _annotate(
        self,
        event: InteractionEvent,
        score: float,
        matched: List[MemoryTrigger],
    ) -> RecalledMemory:
        cfg = self.config
        if matched:
            reason = f"{matched[0].kind.value}: {matched[0].value}"
        else:
            reason = "context similarity"

        location = event.context.location.replace("-", " ")
        dialogue = [
            line.replace("{location}", location)
            for line in cfg.dialogue_templates.get(event.type, [])
        ]

        return RecalledMemory(
            source_event=event,
            relevance_score=score,
            trigger_reason=reason,
            emotional_impact=cfg.emotional_impact.get(event.type, EmotionalImpact.NEUTRAL),
            suggested_dialogue=dialogue,
            suggested_behavior_change=cfg.behavior_changes.get(event.type, cfg.behavior_fallback),
        )
