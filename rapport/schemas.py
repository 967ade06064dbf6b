"""
Pydantic schemas for the Rapport relationship system.

All data structures shared between the ledger, recall engine, encounter
orchestrator and conversation bus are defined here.

Design Philosophy:
- Closed vocabularies (interaction types, encounter archetypes, topics) are
  str enums, so lookup tables keyed by them can be checked for completeness
  and JSON snapshots stay human-readable.
- Events are immutable once recorded; relationship records are the mutable,
  derived aggregate.
- Everything round-trips through ``model_dump(mode="json")`` /
  ``model_validate`` so persistence backends never need custom encoders.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Vocabularies
# ============================================================================


class InteractionType(str, Enum):
    """Kinds of interaction the ledger can record between two agents."""

    COOPERATION = "cooperation"
    BETRAYAL = "betrayal"
    RESCUE = "rescue"
    SACRIFICE = "sacrifice"
    SHARED_SECRET = "shared-secret"
    MUTUAL_SUPPORT = "mutual-support"
    CONFLICT = "conflict"
    RECONCILIATION = "reconciliation"


class Trajectory(str, Enum):
    """Direction a relationship has been heading over recent events."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class EmotionalImpact(str, Enum):
    """Emotional colouring of a memory or a line of dialogue."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    MIXED = "mixed"
    NEUTRAL = "neutral"


class TriggerKind(str, Enum):
    """Conditions under which an event can be pulled back into recall."""

    LOCATION = "location"
    NPC_PRESENT = "npc-present"
    PLAYER_ACTION = "player-action"
    KEYWORD = "keyword"
    EMOTIONAL_STATE = "emotional-state"


class EncounterType(str, Enum):
    """Narrative archetypes the orchestrator can produce."""

    FIRST_MEETING = "first-meeting"
    REUNION = "reunion"
    CONFRONTATION = "confrontation"
    RECONCILIATION = "reconciliation"
    MUTUAL_RECOGNITION = "mutual-recognition"
    WARY_ALLIANCE = "wary-alliance"
    TRUSTED_PARTNERSHIP = "trusted-partnership"


class OutcomeType(str, Enum):
    """Effects an encounter can have once applied."""

    ALLIANCE_FORMED = "alliance-formed"
    ALLIANCE_BROKEN = "alliance-broken"
    TRUST_INCREASED = "trust-increased"
    TRUST_DECREASED = "trust-decreased"
    NEW_MEMORY = "new-memory"
    FLAG_SET = "flag-set"


class Topic(str, Enum):
    """Coarse conversation topics used to pick reply templates."""

    HINT = "hint"
    LORE = "lore"
    QUEST = "quest"
    BANTER = "banter"


class SpeakerKind(str, Enum):
    AGENT = "agent"
    PLAYER = "player"


class Priority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


# ============================================================================
# Ledger Schemas
# ============================================================================


class InteractionContext(BaseModel):
    """Snapshot of the situation an interaction happened in.

    Stored verbatim on every event so recall can later match on where it
    happened, who else was watching, and what the player was doing.
    """

    location: str = Field(..., description="Room or area identifier")
    game_phase: str = Field("exploration", description="Game-phase tag at the time")
    # Third parties in the room; npc-present triggers match against this list
    others_present: List[str] = Field(
        default_factory=list, description="Other agents present during the event"
    )
    # Free-text player commands; player-action triggers substring-match these
    player_actions: List[str] = Field(
        default_factory=list, description="Recent player actions"
    )
    time_of_day: Optional[str] = Field(None, description="Optional time-of-day tag")
    emotional_state: Optional[str] = Field(
        None, description="Optional mood tag (positive, negative, neutral, ...)"
    )


class InteractionEvent(BaseModel):
    """A single recorded interaction between two agents.

    Created only by EventLedger.record_event() and never mutated afterwards.
    agent_a/agent_b keep the order the caller used, but the relationship they
    feed is keyed by the unordered pair.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(..., description="Unique event identifier")
    run_id: UUID = Field(..., description="Run (playthrough) the event belongs to")
    timestamp: datetime = Field(..., description="When the event was recorded")
    type: InteractionType = Field(..., description="Kind of interaction")
    agent_a: str = Field(..., description="First agent involved")
    agent_b: str = Field(..., description="Second agent involved (often the player)")
    context: InteractionContext = Field(..., description="Situation snapshot")
    # Clamped by the ledger before construction; validation guards imported snapshots
    intensity: float = Field(..., ge=0.0, le=1.0, description="Significance in [0, 1]")
    description: str = Field(..., description="Human-readable summary")
    consequences: List[str] = Field(default_factory=list, description="What it led to")

    def involves(self, agent_id: str) -> bool:
        return agent_id in (self.agent_a, self.agent_b)


def pair_key(agent_a: str, agent_b: str) -> str:
    """Order-insensitive key for an agent pair."""
    first, second = sorted((agent_a, agent_b))
    return f"{first}:{second}"


class RelationshipRecord(BaseModel):
    """Aggregated relationship between an unordered pair of agents.

    Derived from the event stream: trust is the clamped running sum of
    per-event deltas, counters only grow, and significant events survive
    run resets while current_run_events do not.
    """

    agent_a: str = Field(..., description="Agent that first appeared in the pair")
    agent_b: str = Field(..., description="Other agent in the pair")
    overall_trust_level: float = Field(0.0, ge=-1.0, le=1.0, description="Net trust in [-1, 1]")
    cooperation_count: int = Field(0, ge=0)
    betrayal_count: int = Field(0, ge=0)
    recent_interaction_type: Optional[InteractionType] = None
    last_interaction_timestamp: Optional[datetime] = None
    relationship_trajectory: Trajectory = Trajectory.STABLE
    significant_events: List[InteractionEvent] = Field(
        default_factory=list, description="High-intensity events kept across runs"
    )
    current_run_events: List[InteractionEvent] = Field(
        default_factory=list, description="Events recorded since the last run reset"
    )

    @property
    def pair_key(self) -> str:
        return pair_key(self.agent_a, self.agent_b)

    def involves(self, agent_id: str) -> bool:
        return agent_id in (self.agent_a, self.agent_b)


class LedgerSnapshot(BaseModel):
    """Serializable blob handed to persistence backends."""

    version: str = Field("1.0", description="Snapshot format version")
    run_id: UUID = Field(..., description="Run id active when the snapshot was taken")
    events: List[InteractionEvent] = Field(default_factory=list)
    relationships: List[RelationshipRecord] = Field(default_factory=list)


# ============================================================================
# Recall Schemas
# ============================================================================


class MemoryTrigger(BaseModel):
    """A condition that can pull an event back into recall."""

    kind: TriggerKind
    value: str
    # Score added when the trigger matches; None means the engine default (0.2)
    weight: Optional[float] = Field(None, ge=0.0, description="Relevance bonus on match")


class SituationContext(BaseModel):
    """What is going on right now, as reported by the game.

    Recall only looks at ``location``; the orchestrator reads the rest to
    pick situational dialogue lines and trigger conditions.
    """

    location: Optional[str] = Field(None, description="Current room or area")
    game_phase: str = Field("exploration", description="Current game-phase tag")
    player_present: bool = Field(False, description="Whether the player is watching")
    player_actions: List[str] = Field(default_factory=list)
    observers: List[str] = Field(
        default_factory=list, description="Third-party agents present"
    )
    # Monitored subsystems that are currently on, e.g. ["terminal"]
    active_systems: List[str] = Field(default_factory=list)
    security_level: Optional[str] = Field(None, description="low, medium or high")
    time_of_day: Optional[str] = None
    emotional_state: Optional[str] = None


class RecalledMemory(BaseModel):
    """An event surfaced by recall, annotated for dialogue use. Never persisted."""

    source_event: InteractionEvent
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    trigger_reason: str
    emotional_impact: EmotionalImpact
    suggested_dialogue: List[str] = Field(default_factory=list)
    suggested_behavior_change: Optional[str] = None


# ============================================================================
# Encounter Schemas
# ============================================================================


class DialogueLine(BaseModel):
    speaker: str = Field(..., description="Agent id, or 'system' for narration")
    text: str
    emotional_tone: EmotionalImpact = EmotionalImpact.NEUTRAL
    references: Optional[UUID] = Field(
        None, description="Id of the recalled event this line refers to"
    )


class MemoryRecordRequest(BaseModel):
    """Ledger write requested by an encounter outcome."""

    type: InteractionType
    intensity: float = Field(..., ge=0.0, le=1.0)
    description: str


class EncounterOutcome(BaseModel):
    type: OutcomeType
    description: str
    # Forwarded to the game-flag store by apply_outcomes()
    flag_changes: Dict[str, Any] = Field(default_factory=dict)
    memory_to_record: Optional[MemoryRecordRequest] = None


class Encounter(BaseModel):
    """A generated dialogue exchange plus the effects it would have.

    Generation is side-effect free apart from the orchestrator's history
    log; EncounterOrchestrator.apply_outcomes() commits the effects.
    """

    id: UUID
    type: EncounterType
    participants: Tuple[str, str]
    location: Optional[str] = None
    trigger_conditions: List[str] = Field(default_factory=list)
    required_memories: List[RecalledMemory] = Field(default_factory=list)
    # None when the pair had never interacted (first meeting)
    participant_relationship: Optional[RelationshipRecord] = None
    dialogue: List[DialogueLine] = Field(default_factory=list)
    outcomes: List[EncounterOutcome] = Field(default_factory=list)
    trust_impact: float = 0.0
    created_at: datetime


# ============================================================================
# Conversation Schemas
# ============================================================================


class SpeakerRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: SpeakerKind = SpeakerKind.AGENT
    id: str

    @classmethod
    def agent(cls, agent_id: str) -> "SpeakerRef":
        return cls(kind=SpeakerKind.AGENT, id=agent_id)

    @classmethod
    def player(cls, player_id: str = "player") -> "SpeakerRef":
        return cls(kind=SpeakerKind.PLAYER, id=player_id)

    @property
    def is_agent(self) -> bool:
        return self.kind == SpeakerKind.AGENT


class ConversationExchange(BaseModel):
    sender: SpeakerRef
    receiver: SpeakerRef
    text: str
    timestamp: datetime
    topic: Optional[Topic] = None
    visible_to_player: bool = True


class ConversationThread(BaseModel):
    """Exchanges between one pair of speakers in one room, oldest first."""

    id: str
    room_id: str
    participants: Tuple[str, str]
    exchanges: List[ConversationExchange] = Field(default_factory=list)
    last_timestamp: Optional[datetime] = None
    priority: Priority = Priority.NORMAL
