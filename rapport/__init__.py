"""
Rapport - persistent relationships and dialogue between game agents.

Records what agents did to each other, recalls the memories that matter in
the current situation, turns relationships into scripted encounters, and
carries agent-to-agent chatter with delayed, voiced auto-replies.

No file I/O required. No database required. No LLM required.
All collaborators are injected; in-memory defaults work out of the box.
"""

__version__ = "0.1.0"

# Session wiring
from .session import RapportSession

# Core components
from .ledger import EventLedger, LedgerConfig
from .recall import RecallEngine, RecallConfig
from .orchestrator import (
    EncounterOrchestrator,
    OrchestratorConfig,
    determine_encounter_type,
)
from .conversation import (
    ConversationBus,
    ConversationMemory,
    CooldownTracker,
    ReplyGuard,
    SendOptions,
)
from .topics import infer_topic, build_reply_prompt
from .voice import Voice, stylize
from .cast import CastProfile, CastLoader, default_cast, load_cast

# Collaborator interfaces
from .flags import GameFlagStore, InMemoryFlagStore, FlagStoreUnavailableError
from .presence import PresenceProvider, StaticPresence
from .text_generation import (
    TextGenerator,
    NullTextGenerator,
    LLMTextGenerator,
    generate_with_timeout,
)
from .persistence import (
    PersistenceStrategy,
    InMemoryPersistence,
    JsonPersistence,
    PostgresPersistence,
)

# Core schemas
from .schemas import (
    InteractionType,
    Trajectory,
    EmotionalImpact,
    TriggerKind,
    EncounterType,
    OutcomeType,
    Topic,
    SpeakerKind,
    Priority,
    InteractionContext,
    InteractionEvent,
    RelationshipRecord,
    LedgerSnapshot,
    MemoryTrigger,
    SituationContext,
    RecalledMemory,
    DialogueLine,
    MemoryRecordRequest,
    EncounterOutcome,
    Encounter,
    SpeakerRef,
    ConversationExchange,
    ConversationThread,
)

__all__ = [
    # Session
    "RapportSession",
    # Components
    "EventLedger",
    "LedgerConfig",
    "RecallEngine",
    "RecallConfig",
    "EncounterOrchestrator",
    "OrchestratorConfig",
    "determine_encounter_type",
    "ConversationBus",
    "ConversationMemory",
    "CooldownTracker",
    "ReplyGuard",
    "SendOptions",
    "infer_topic",
    "build_reply_prompt",
    "Voice",
    "stylize",
    "CastProfile",
    "CastLoader",
    "default_cast",
    "load_cast",
    # Collaborators
    "GameFlagStore",
    "InMemoryFlagStore",
    "FlagStoreUnavailableError",
    "PresenceProvider",
    "StaticPresence",
    "TextGenerator",
    "NullTextGenerator",
    "LLMTextGenerator",
    "generate_with_timeout",
    "PersistenceStrategy",
    "InMemoryPersistence",
    "JsonPersistence",
    "PostgresPersistence",
    # Vocabularies
    "InteractionType",
    "Trajectory",
    "EmotionalImpact",
    "TriggerKind",
    "EncounterType",
    "OutcomeType",
    "Topic",
    "SpeakerKind",
    "Priority",
    # Ledger schemas
    "InteractionContext",
    "InteractionEvent",
    "RelationshipRecord",
    "LedgerSnapshot",
    # Recall / encounter schemas
    "MemoryTrigger",
    "SituationContext",
    "RecalledMemory",
    "DialogueLine",
    "MemoryRecordRequest",
    "EncounterOutcome",
    "Encounter",
    # Conversation schemas
    "SpeakerRef",
    "ConversationExchange",
    "ConversationThread",
]
