"""
RapportSession: one object per game session that owns every component.

Replaces process-wide singletons. Every collaborator can be injected;
anything left out gets the in-memory default, so a bare RapportSession()
works offline with template replies only.

Usage:
    session = RapportSession(presence=StaticPresence({"control-room": {"morthos", "al"}}))
    await session.initialize()
    session.ledger.record_cooperation("morthos", "al", "control-room", "Rerouted power together")
    encounter = session.trigger_encounter("morthos", "al", SituationContext(location="control-room"))
    await session.save()
    await session.close()
"""

from typing import Optional
from uuid import UUID

from .cast import CastProfile, default_cast
from .config import Config
from .conversation import ConversationBus
from .flags import GameFlagStore, InMemoryFlagStore
from .ledger import EventLedger, LedgerConfig
from .logging_utils import log_info, log_success
from .orchestrator import EncounterOrchestrator, OrchestratorConfig
from .persistence import InMemoryPersistence, PersistenceStrategy
from .presence import PresenceProvider, StaticPresence
from .recall import RecallConfig, RecallEngine
from .schemas import Encounter, EncounterType, SituationContext
from .text_generation import LLMTextGenerator, NullTextGenerator, TextGenerator


class RapportSession:
    """Wires ledger, recall, orchestrator and conversation bus together."""

    def __init__(
        self,
        *,
        ledger: Optional[EventLedger] = None,
        recall: Optional[RecallEngine] = None,
        orchestrator: Optional[EncounterOrchestrator] = None,
        bus: Optional[ConversationBus] = None,
        cast: Optional[CastProfile] = None,
        flag_store: Optional[GameFlagStore] = None,
        persistence: Optional[PersistenceStrategy] = None,
        presence: Optional[PresenceProvider] = None,
        text_generator: Optional[TextGenerator] = None,
        ledger_config: Optional[LedgerConfig] = None,
        recall_config: Optional[RecallConfig] = None,
        orchestrator_config: Optional[OrchestratorConfig] = None,
        save_key: str = "autosave",
    ) -> None:
        self.cast = cast or default_cast()
        self.flag_store = flag_store or InMemoryFlagStore()
        self.persistence = persistence or InMemoryPersistence()
        self.presence = presence or StaticPresence()
        if text_generator is None:
            text_generator = (
                LLMTextGenerator(personas=self.cast.personas)
                if Config.TEXT_GENERATION_ENABLED
                else NullTextGenerator()
            )
        self.text_generator = text_generator
        self.save_key = save_key

        self.ledger = ledger or EventLedger(ledger_config)
        self.recall = recall or RecallEngine(self.ledger, recall_config)

        if orchestrator is None:
            config = orchestrator_config or OrchestratorConfig(
                display_names=dict(self.cast.display_names)
            )
            orchestrator = EncounterOrchestrator(
                self.ledger, self.recall, self.flag_store, config
            )
        self.orchestrator = orchestrator

        self.bus = bus or ConversationBus(
            self.cast,
            self.presence,
            self.text_generator,
            clock=self.ledger.clock,
        )

    async def initialize(self) -> None:
        await self.persistence.initialize()

    async def close(self) -> None:
        await self.bus.drain()
        await self.persistence.close()

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    def preview_encounter(
        self,
        agent_a: str,
        agent_b: str,
        context: Optional[SituationContext] = None,
        *,
        preferred_type: Optional[EncounterType] = None,
    ) -> Encounter:
        """Generate an encounter without committing its outcomes."""
        return self.orchestrator.generate_encounter(
            agent_a, agent_b, context, preferred_type=preferred_type
        )

    def trigger_encounter(
        self,
        agent_a: str,
        agent_b: str,
        context: Optional[SituationContext] = None,
        *,
        preferred_type: Optional[EncounterType] = None,
    ) -> Encounter:
        """Generate an encounter and apply its outcomes."""
        encounter = self.preview_encounter(
            agent_a, agent_b, context, preferred_type=preferred_type
        )
        self.orchestrator.apply_outcomes(encounter, context)
        return encounter

    # ------------------------------------------------------------------
    # Runs and saves
    # ------------------------------------------------------------------

    def start_new_run(self) -> UUID:
        """Start a new playthrough: new run id, fresh run events, empty history."""
        run_id = self.ledger.start_new_run()
        self.orchestrator.clear_history()
        return run_id

    async def save(self, save_key: Optional[str] = None) -> None:
        key = save_key or self.save_key
        await self.persistence.save_snapshot(key, self.ledger.export_snapshot())
        log_success(f"[Session] Saved ledger to '{key}'")

    async def load(self, save_key: Optional[str] = None) -> bool:
        """Load a save into the ledger. Returns False if missing or ignored.

        Raises:
            pydantic.ValidationError: If the stored payload is malformed
        """
        key = save_key or self.save_key
        payload = await self.persistence.load_snapshot(key)
        if payload is None:
            log_info(f"[Session] No save found under '{key}'")
            return False
        return self.ledger.import_snapshot(payload)
