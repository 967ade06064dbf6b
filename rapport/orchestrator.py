"""
Encounter orchestrator.

Turns the relationship between two agents into a short scripted scene:

1. Look up the pair's relationship in the ledger
2. Recall memories for both agents and merge them (dedupe by event id)
3. Classify the scene with a fixed priority cascade
4. Build dialogue, trust impact and outcomes for that archetype
5. Append to the history log

Generation never touches the ledger or the game flags. apply_outcomes()
commits an encounter explicitly: the requested shared-secret memory is
recorded and flag changes are forwarded to the flag store. Trust outcomes
are informational; the recorded event is the only trust mutation, so trust
always equals the clamped sum of per-event deltas.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4

from .flags import GameFlagStore
from .ledger import EventLedger
from .logging_utils import log_deterministic, log_error, log_success
from .recall import RecallEngine
from .schemas import (
    DialogueLine,
    EmotionalImpact,
    Encounter,
    EncounterOutcome,
    EncounterType,
    InteractionContext,
    InteractionType,
    MemoryRecordRequest,
    MemoryTrigger,
    OutcomeType,
    RecalledMemory,
    RelationshipRecord,
    SituationContext,
    Trajectory,
    TriggerKind,
)


NARRATOR = "system"

DEFAULT_TRUST_IMPACTS: Dict[EncounterType, float] = {
    EncounterType.FIRST_MEETING: 0.1,
    EncounterType.REUNION: 0.2,
    EncounterType.CONFRONTATION: -0.1,
    EncounterType.TRUSTED_PARTNERSHIP: 0.3,
    EncounterType.MUTUAL_RECOGNITION: 0.25,
    EncounterType.WARY_ALLIANCE: 0.05,
    EncounterType.RECONCILIATION: 0.4,
}

HOSTILE_TYPES = (InteractionType.BETRAYAL, InteractionType.CONFLICT)
COOPERATIVE_TYPES = (
    InteractionType.COOPERATION,
    InteractionType.MUTUAL_SUPPORT,
    InteractionType.RESCUE,
)


def _default_triggers() -> List[MemoryTrigger]:
    return [
        MemoryTrigger(kind=TriggerKind.KEYWORD, value="terminal", weight=0.3),
        MemoryTrigger(kind=TriggerKind.KEYWORD, value="data", weight=0.3),
    ]


@dataclass
class OrchestratorConfig:
    """Encounter tunables. Trigger weights feed the recall engine."""

    memory_recall_threshold: float = 0.4
    max_dialogue_lines: int = 6
    trust_impacts: Dict[EncounterType, float] = field(
        default_factory=lambda: dict(DEFAULT_TRUST_IMPACTS)
    )
    location_trigger_weight: float = 0.5
    player_action_trigger_weight: float = 0.4
    observer_trigger_weight: float = 0.2
    default_triggers: List[MemoryTrigger] = field(default_factory=_default_triggers)
    # agent id -> name used in dialogue; ids are title-cased when missing
    display_names: Dict[str, str] = field(default_factory=dict)


def determine_encounter_type(
    relationship: Optional[RelationshipRecord],
    memories: Sequence[RecalledMemory],
) -> EncounterType:
    """Classify an encounter. Rules are checked in order; first match wins."""

    if relationship is None:
        return EncounterType.FIRST_MEETING

    trust = relationship.overall_trust_level

    if trust > 0.7:
        return EncounterType.TRUSTED_PARTNERSHIP

    if trust > 0.3 and relationship.relationship_trajectory == Trajectory.IMPROVING:
        return EncounterType.MUTUAL_RECOGNITION

    if relationship.recent_interaction_type in HOSTILE_TYPES:
        reconciled = any(
            memory.source_event.type == InteractionType.RECONCILIATION for memory in memories
        )
        return EncounterType.WARY_ALLIANCE if reconciled else EncounterType.CONFRONTATION

    if -0.5 < trust < 0:
        return EncounterType.WARY_ALLIANCE

    if trust <= -0.5:
        return EncounterType.CONFRONTATION

    if trust > 0 and memories:
        return EncounterType.REUNION

    return EncounterType.FIRST_MEETING


def _literal(text: str) -> str:
    """Escape braces so free text survives the scene formatter."""
    return text.replace("{", "{{").replace("}", "}}")


class _Scene:
    """Dialogue under construction for one encounter."""

    def __init__(self, agent_a: str, agent_b: str, names: Tuple[str, str], location: str):
        self.speakers = {"a": agent_a, "b": agent_b}
        self.values = {"a": names[0], "b": names[1], "location": location}
        self.lines: List[DialogueLine] = []

    def say(
        self,
        role: str,
        text: str,
        tone: EmotionalImpact = EmotionalImpact.NEUTRAL,
        memory: Optional[RecalledMemory] = None,
    ) -> None:
        speaker = NARRATOR if role == NARRATOR else self.speakers[role]
        self.lines.append(
            DialogueLine(
                speaker=speaker,
                text=text.format(**self.values),
                emotional_tone=tone,
                references=memory.source_event.id if memory else None,
            )
        )


class EncounterOrchestrator:
    """Generates relationship-aware encounters between pairs of agents."""

    def __init__(
        self,
        ledger: EventLedger,
        recall: Optional[RecallEngine] = None,
        flag_store: Optional[GameFlagStore] = None,
        config: Optional[OrchestratorConfig] = None,
    ) -> None:
        """Initialize with injected collaborators.

        Args:
            ledger: Event ledger holding relationship records
            recall: Recall engine (defaults to one over the same ledger)
            flag_store: Optional game-flag store; without one, flag changes
                are logged and skipped when outcomes are applied
            config: Optional OrchestratorConfig
        """
        self.ledger = ledger
        self.recall = recall or RecallEngine(ledger)
        self.flag_store = flag_store
        self.config = config or OrchestratorConfig()
        self._history: List[Encounter] = []

        self._builders: Dict[
            EncounterType, Callable[[_Scene, List[RecalledMemory], SituationContext], None]
        ] = {
            EncounterType.FIRST_MEETING: self._first_meeting,
            EncounterType.REUNION: self._reunion,
            EncounterType.CONFRONTATION: self._confrontation,
            EncounterType.RECONCILIATION: self._reconciliation,
            EncounterType.MUTUAL_RECOGNITION: self._mutual_recognition,
            EncounterType.WARY_ALLIANCE: self._wary_alliance,
            EncounterType.TRUSTED_PARTNERSHIP: self._trusted_partnership,
        }

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate_encounter(
        self,
        agent_a: str,
        agent_b: str,
        context: Optional[SituationContext] = None,
        *,
        preferred_type: Optional[EncounterType] = None,
    ) -> Encounter:
        """Generate (but do not apply) an encounter between two agents.

        Args:
            agent_a: Agent who opens the scene
            agent_b: Other participant
            context: What is going on right now
            preferred_type: Force an archetype instead of running the cascade,
                e.g. reconciliation after a scripted apology

        Returns:
            Encounter with dialogue, outcomes and trust impact
        """
        context = context or SituationContext()
        relationship = self.ledger.get_relationship(agent_a, agent_b)
        memories = self._gather_memories(agent_a, agent_b, context)

        if preferred_type is not None:
            encounter_type = EncounterType(preferred_type)
        else:
            encounter_type = determine_encounter_type(relationship, memories)

        trust_impact = self.config.trust_impacts.get(encounter_type, 0.0)
        scene = _Scene(
            agent_a,
            agent_b,
            (self.display_name(agent_a), self.display_name(agent_b)),
            self._location_label(context.location),
        )
        self._builders[encounter_type](scene, memories, context)

        encounter = Encounter(
            id=uuid4(),
            type=encounter_type,
            participants=(agent_a, agent_b),
            location=context.location,
            trigger_conditions=self._trigger_conditions(context),
            required_memories=memories,
            participant_relationship=relationship.model_copy(deep=True) if relationship else None,
            dialogue=scene.lines[: max(self.config.max_dialogue_lines, 0)],
            outcomes=self._outcomes(encounter_type, agent_a, agent_b, trust_impact, context),
            trust_impact=trust_impact,
            created_at=self.ledger.clock(),
        )

        self._history.append(encounter)
        log_deterministic(
            f"[Encounter] {agent_a} + {agent_b}: {encounter_type.value} "
            f"({len(memories)} memories, trust impact {trust_impact:+.2f})"
        )
        return encounter

    def display_name(self, agent_id: str) -> str:
        return self.config.display_names.get(agent_id, agent_id.replace("-", " ").title())

    def _gather_memories(
        self, agent_a: str, agent_b: str, context: SituationContext
    ) -> List[RecalledMemory]:
        cfg = self.config
        triggers: List[MemoryTrigger] = []
        if context.location:
            triggers.append(
                MemoryTrigger(
                    kind=TriggerKind.LOCATION,
                    value=context.location,
                    weight=cfg.location_trigger_weight,
                )
            )
        triggers.extend(cfg.default_triggers)
        if context.player_present:
            triggers.extend(
                MemoryTrigger(
                    kind=TriggerKind.PLAYER_ACTION,
                    value=action,
                    weight=cfg.player_action_trigger_weight,
                )
                for action in context.player_actions
            )
        triggers.extend(
            MemoryTrigger(
                kind=TriggerKind.NPC_PRESENT,
                value=observer,
                weight=cfg.observer_trigger_weight,
            )
            for observer in context.observers
        )

        merged: Dict[str, RecalledMemory] = {}
        for agent_id in (agent_a, agent_b):
            for memory in self.recall.recall(agent_id, context, triggers):
                key = str(memory.source_event.id)
                if key not in merged:
                    merged[key] = memory

        relevant = [
            memory
            for memory in merged.values()
            if memory.relevance_score >= cfg.memory_recall_threshold
        ]
        relevant.sort(key=lambda memory: memory.relevance_score, reverse=True)
        return relevant

    @staticmethod
    def _location_label(location: Optional[str]) -> str:
        if not location:
            return "here"
        return "the " + location.replace("-", " ").title()

    @staticmethod
    def _trigger_conditions(context: SituationContext) -> List[str]:
        conditions = ["both-agents-present"]
        if context.player_present:
            conditions.append("player-present")
        conditions.extend(f"{system}-active" for system in context.active_systems)
        if context.security_level == "high":
            conditions.append("high-security")
        return conditions

    # ------------------------------------------------------------------
    # Archetype scripts
    # ------------------------------------------------------------------

    def _first_meeting(self, scene: _Scene, memories, context: SituationContext) -> None:
        scene.say("a", "{b}? I didn't expect to find you here in {location}.")
        scene.say("b", "{a}. I could say the same.")
        if context.player_present:
            scene.say(
                "a",
                "With our friend here, perhaps we can uncover what's been happening.",
                EmotionalImpact.POSITIVE,
            )
        else:
            scene.say("b", "We should be careful. We don't know who else is watching.")
        self._situational_line(scene, context)

    def _reunion(self, scene: _Scene, memories, context: SituationContext) -> None:
        top = memories[0] if memories else None
        scene.say("b", "{a}! It's good to see you again.", EmotionalImpact.POSITIVE)
        scene.say(
            "a",
            "Likewise, {b}. I've been thinking about our last collaboration.",
            EmotionalImpact.POSITIVE,
            top,
        )
        if top is not None:
            self._memory_lines(scene, top)
        scene.say(
            "b", "Perhaps we can work together again here in {location}.", EmotionalImpact.POSITIVE
        )

    def _confrontation(self, scene: _Scene, memories, context: SituationContext) -> None:
        betrayal = next(
            (m for m in memories if m.source_event.type == InteractionType.BETRAYAL), None
        )
        scene.say("a", "{b}. I wasn't sure I'd see you again after what happened.", EmotionalImpact.NEGATIVE)
        scene.say(
            "b",
            "{a}. I suppose we need to address the past before we can move forward.",
            EmotionalImpact.MIXED,
        )
        if betrayal is not None:
            where = self._location_label(betrayal.source_event.context.location)
            scene.say(
                "a",
                f"I haven't forgotten what happened in {_literal(where)}.",
                EmotionalImpact.NEGATIVE,
                betrayal,
            )
            scene.say("b", "I had my reasons. But perhaps this isn't the time or place.", EmotionalImpact.MIXED)
        if context.player_present:
            scene.say(
                NARRATOR,
                "The tension in the room is palpable. {a} and {b} seem wary of each other.",
            )

    def _trusted_partnership(self, scene: _Scene, memories, context: SituationContext) -> None:
        scene.say("b", "{a}, my friend. Ready to tackle another challenge together?", EmotionalImpact.POSITIVE)
        scene.say(
            "a",
            "Always, {b}. Between the two of us we make a formidable team.",
            EmotionalImpact.POSITIVE,
        )
        shared = next((m for m in memories if m.source_event.type in COOPERATIVE_TYPES), None)
        if shared is not None:
            scene.say(
                "b",
                "We've overcome so much together. I trust your judgment completely.",
                EmotionalImpact.POSITIVE,
                shared,
            )
        self._situational_line(scene, context)

    def _mutual_recognition(self, scene: _Scene, memories, context: SituationContext) -> None:
        scene.say("a", "{b}, it's been a while. I remember our work together fondly.", EmotionalImpact.POSITIVE)
        scene.say("b", "As do I, {a}. You proved to be a reliable ally.", EmotionalImpact.POSITIVE)
        fond = next((m for m in memories if m.emotional_impact == EmotionalImpact.POSITIVE), None)
        if fond is not None:
            description = fond.source_event.description.rstrip(".")
            scene.say(
                "b",
                "I particularly remember " + _literal(description[:1].lower() + description[1:]) + ".",
                EmotionalImpact.POSITIVE,
                fond,
            )
        scene.say("a", "Perhaps we can build on that foundation here.", EmotionalImpact.POSITIVE)

    def _wary_alliance(self, scene: _Scene, memories, context: SituationContext) -> None:
        scene.say("b", "{a}. I suppose circumstances bring us together again.")
        scene.say("a", "Indeed. Our past has been... complicated.", EmotionalImpact.MIXED)
        grievance = next((m for m in memories if m.source_event.type in HOSTILE_TYPES), None)
        if grievance is not None:
            scene.say(
                "b",
                "I know we've had our differences, but perhaps we can set them aside for now.",
                EmotionalImpact.MIXED,
                grievance,
            )
        scene.say("a", "A temporary truce, then. For mutual benefit.")
        if context.player_present:
            scene.say("b", "With a witness present, I suppose we should maintain civility.")

    def _reconciliation(self, scene: _Scene, memories, context: SituationContext) -> None:
        scene.say("a", "{b}, I've been thinking about our past conflicts.", EmotionalImpact.MIXED)
        scene.say(
            "b",
            "As have I, {a}. Perhaps it's time we addressed them directly.",
            EmotionalImpact.MIXED,
        )
        scene.say(
            "a",
            "I may have been too quick to judge. Your actions, while unexpected, had merit.",
            EmotionalImpact.POSITIVE,
        )
        scene.say(
            "b",
            "And I could have been more transparent about my intentions. Shall we try again?",
            EmotionalImpact.POSITIVE,
        )

    @staticmethod
    def _memory_lines(scene: _Scene, memory: RecalledMemory) -> None:
        for role, text in zip(("a", "b"), memory.suggested_dialogue[:2]):
            scene.say(role, _literal(text), memory.emotional_impact, memory)

    @staticmethod
    def _situational_line(scene: _Scene, context: SituationContext) -> None:
        if context.active_systems:
            system = context.active_systems[0].replace("-", " ")
            scene.say("a", f"The {_literal(system)} is active. Shall we see what secrets it holds?")
        elif context.security_level == "high":
            scene.say("b", "Security is tight in here. We should keep our voices down.")
        elif context.observers:
            scene.say(NARRATOR, "Others in the room pretend not to listen.")

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _outcomes(
        self,
        encounter_type: EncounterType,
        agent_a: str,
        agent_b: str,
        trust_impact: float,
        context: SituationContext,
    ) -> List[EncounterOutcome]:
        name_a, name_b = self.display_name(agent_a), self.display_name(agent_b)
        where = self._location_label(context.location)
        outcomes: List[EncounterOutcome] = []

        if trust_impact > 0:
            outcomes.append(
                EncounterOutcome(
                    type=OutcomeType.TRUST_INCREASED,
                    description=f"Trust between {name_a} and {name_b} increased by {trust_impact:.2f}",
                )
            )
        elif trust_impact < 0:
            outcomes.append(
                EncounterOutcome(
                    type=OutcomeType.TRUST_DECREASED,
                    description=f"Trust between {name_a} and {name_b} decreased by {abs(trust_impact):.2f}",
                )
            )

        outcomes.append(
            EncounterOutcome(
                type=OutcomeType.NEW_MEMORY,
                description=f"Encounter of type {encounter_type.value} in {where}",
                memory_to_record=MemoryRecordRequest(
                    type=InteractionType.SHARED_SECRET,
                    intensity=min(0.8, 0.5 + abs(trust_impact)),
                    description=(
                        f"{name_a} and {name_b} had a "
                        f"{encounter_type.value.replace('-', ' ')} in {where}"
                    ),
                ),
            )
        )

        prefix = f"{agent_a}-{agent_b}"
        if encounter_type == EncounterType.TRUSTED_PARTNERSHIP:
            outcomes.append(
                EncounterOutcome(
                    type=OutcomeType.ALLIANCE_FORMED,
                    description=f"Strong alliance confirmed between {name_a} and {name_b}",
                    flag_changes={f"{prefix}-alliance": "strong"},
                )
            )
        elif encounter_type == EncounterType.CONFRONTATION:
            outcomes.append(
                EncounterOutcome(
                    type=OutcomeType.FLAG_SET,
                    description=f"Tension flag set between {name_a} and {name_b}",
                    flag_changes={f"{prefix}-tension": True},
                )
            )
        elif encounter_type == EncounterType.RECONCILIATION:
            outcomes.append(
                EncounterOutcome(
                    type=OutcomeType.ALLIANCE_FORMED,
                    description=f"Reconciliation achieved between {name_a} and {name_b}",
                    flag_changes={f"{prefix}-reconciled": True},
                )
            )

        return outcomes

    def apply_outcomes(self, encounter: Encounter, context: Optional[SituationContext] = None) -> None:
        """Commit an encounter's outcomes.

        Records requested memories into the ledger and forwards flag changes
        to the flag store. A missing or failing flag store skips that
        mutation only; the remaining outcomes are still applied.
        """
        agent_a, agent_b = encounter.participants
        context = context or SituationContext(location=encounter.location)

        for outcome in encounter.outcomes:
            if outcome.memory_to_record is not None:
                request = outcome.memory_to_record
                self.ledger.record_event(
                    request.type,
                    agent_a,
                    agent_b,
                    InteractionContext(
                        location=encounter.location or "unknown",
                        game_phase=context.game_phase,
                        others_present=list(context.observers),
                        player_actions=list(context.player_actions),
                    ),
                    request.intensity,
                    request.description,
                )

            if outcome.flag_changes:
                self._apply_flags(outcome)

            log_deterministic(f"[Encounter] Applied outcome: {outcome.description}")

        log_success(f"[Encounter] {encounter.type.value} applied for {agent_a} + {agent_b}")

    def _apply_flags(self, outcome: EncounterOutcome) -> None:
        if self.flag_store is None:
            log_error(
                f"[Encounter] Could not apply flag changes {sorted(outcome.flag_changes)}: "
                "no flag store configured"
            )
            return
        try:
            self.flag_store.update(outcome.flag_changes)
        except Exception as exc:
            log_error(f"[Encounter] Skipped flag changes {sorted(outcome.flag_changes)}: {exc}")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def get_history(self) -> List[Encounter]:
        return list(self._history)

    def clear_history(self) -> None:
        self._history.clear()
