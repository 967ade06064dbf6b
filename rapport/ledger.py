"""
Event ledger: the alliance memory of every agent pair.

The ledger is event-sourced. Each call to record_event() appends an
immutable InteractionEvent to a flat list and folds it into the pair's
RelationshipRecord:

- cooperation/betrayal counters per a fixed type -> counter mapping
- trust += trust_update_rate * intensity * multiplier[type], clamped to [-1, 1]
- significant events (intensity >= threshold) kept across runs, newest N
- trajectory = majority vote over the last few events of the current run

Trust multipliers are asymmetric: a betrayal costs twice what a cooperation
of the same intensity earns, while reconciliation and sacrifice repair more
than plain cooperation.

Input ranges are never an error. Intensity outside [0, 1] is clamped and so
is cumulative trust.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional
from uuid import UUID, uuid4

from .logging_utils import log_deterministic, log_error, log_info
from .schemas import (
    InteractionContext,
    InteractionEvent,
    InteractionType,
    LedgerSnapshot,
    RelationshipRecord,
    Trajectory,
    pair_key,
)


SNAPSHOT_VERSION = "1.0"

DEFAULT_TRUST_MULTIPLIERS: Dict[InteractionType, float] = {
    InteractionType.COOPERATION: 1.0,
    InteractionType.RESCUE: 1.0,
    InteractionType.MUTUAL_SUPPORT: 1.0,
    InteractionType.BETRAYAL: -2.0,
    InteractionType.CONFLICT: -0.5,
    InteractionType.RECONCILIATION: 1.5,
    InteractionType.SACRIFICE: 2.0,
}

# Counter mapping. Sacrifice and shared-secret move trust but neither counter.
COOPERATION_TYPES = frozenset(
    {
        InteractionType.COOPERATION,
        InteractionType.RESCUE,
        InteractionType.MUTUAL_SUPPORT,
        InteractionType.RECONCILIATION,
    }
)
BETRAYAL_TYPES = frozenset({InteractionType.BETRAYAL, InteractionType.CONFLICT})

# Trajectory vote classification.
POSITIVE_TYPES = COOPERATION_TYPES | {InteractionType.SACRIFICE}
NEGATIVE_TYPES = BETRAYAL_TYPES


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class LedgerConfig:
    """Tunables for trust accounting. Every table can be overridden."""

    trust_update_rate: float = 0.1
    significance_threshold: float = 0.6
    max_significant_events: int = 20
    trajectory_window: int = 3
    trust_multipliers: Dict[InteractionType, float] = field(
        default_factory=lambda: dict(DEFAULT_TRUST_MULTIPLIERS)
    )
    # Used for any type missing from trust_multipliers (shared-secret by default)
    default_trust_multiplier: float = 0.5


class EventLedger:
    """Records interaction events and maintains per-pair relationship records."""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config or LedgerConfig()
        self.clock = clock
        self._events: List[InteractionEvent] = []
        self._relationships: Dict[str, RelationshipRecord] = {}
        self._run_id: UUID = uuid4()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def run_id(self) -> UUID:
        return self._run_id

    @property
    def events(self) -> List[InteractionEvent]:
        return list(self._events)

    @property
    def relationships(self) -> List[RelationshipRecord]:
        return list(self._relationships.values())

    def events_for(self, agent_id: str) -> List[InteractionEvent]:
        return [event for event in self._events if event.involves(agent_id)]

    def get_relationship(self, agent_a: str, agent_b: str) -> Optional[RelationshipRecord]:
        return self._relationships.get(pair_key(agent_a, agent_b))

    def get_agent_relationships(self, agent_id: str) -> List[RelationshipRecord]:
        return [record for record in self._relationships.values() if record.involves(agent_id)]

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_event(
        self,
        type: InteractionType | str,
        agent_a: str,
        agent_b: str,
        context: InteractionContext | Mapping[str, Any],
        intensity: float,
        description: str,
        consequences: Optional[Iterable[str]] = None,
    ) -> InteractionEvent:
        """Record an interaction and fold it into the pair's relationship."""

        # Events never change after recording, so they own their context
        if isinstance(context, InteractionContext):
            context = context.model_copy(deep=True)
        else:
            context = InteractionContext.model_validate(context)

        event = InteractionEvent(
            id=uuid4(),
            run_id=self._run_id,
            timestamp=self.clock(),
            type=InteractionType(type),
            agent_a=agent_a,
            agent_b=agent_b,
            context=context,
            intensity=clamp(float(intensity), 0.0, 1.0),
            description=description,
            consequences=list(consequences or []),
        )

        self._events.append(event)
        self._update_relationship(event)

        log_deterministic(
            f"[Ledger] Recorded {event.type.value} between {agent_a} and {agent_b} "
            f"(intensity: {event.intensity:.2f})"
        )
        return event

    def record_cooperation(
        self, agent_a: str, agent_b: str, location: str, description: str
    ) -> InteractionEvent:
        return self.record_event(
            InteractionType.COOPERATION,
            agent_a,
            agent_b,
            InteractionContext(location=location),
            0.7,
            description,
        )

    def record_betrayal(
        self, agent_a: str, agent_b: str, location: str, description: str
    ) -> InteractionEvent:
        # Betrayals are always recorded as highly significant.
        return self.record_event(
            InteractionType.BETRAYAL,
            agent_a,
            agent_b,
            InteractionContext(location=location),
            0.9,
            description,
        )

    def record_rescue(
        self, rescuer: str, rescued: str, location: str, description: str
    ) -> InteractionEvent:
        return self.record_event(
            InteractionType.RESCUE,
            rescuer,
            rescued,
            InteractionContext(location=location),
            0.8,
            description,
        )

    def trust_delta(self, event: InteractionEvent) -> float:
        """Signed trust change contributed by a single event."""

        multiplier = self.config.trust_multipliers.get(
            event.type, self.config.default_trust_multiplier
        )
        return self.config.trust_update_rate * event.intensity * multiplier

    def _update_relationship(self, event: InteractionEvent) -> None:
        key = pair_key(event.agent_a, event.agent_b)
        record = self._relationships.get(key)
        if record is None:
            record = RelationshipRecord(agent_a=event.agent_a, agent_b=event.agent_b)
            self._relationships[key] = record

        if event.type in COOPERATION_TYPES:
            record.cooperation_count += 1
        elif event.type in BETRAYAL_TYPES:
            record.betrayal_count += 1

        record.overall_trust_level = clamp(
            record.overall_trust_level + self.trust_delta(event), -1.0, 1.0
        )
        record.recent_interaction_type = event.type
        record.last_interaction_timestamp = event.timestamp
        record.current_run_events.append(event)

        if event.intensity >= self.config.significance_threshold:
            record.significant_events.append(event)
            limit = max(self.config.max_significant_events, 0)
            if len(record.significant_events) > limit:
                # Events arrive in time order, so the front holds the oldest.
                record.significant_events = record.significant_events[len(record.significant_events) - limit:]

        record.relationship_trajectory = self._trajectory(record.current_run_events)

    def _trajectory(self, run_events: List[InteractionEvent]) -> Trajectory:
        window = run_events[-self.config.trajectory_window:] if self.config.trajectory_window > 0 else []
        if len(window) < 2:
            return Trajectory.STABLE

        positive = sum(1 for event in window if event.type in POSITIVE_TYPES)
        negative = sum(1 for event in window if event.type in NEGATIVE_TYPES)

        if positive > negative:
            return Trajectory.IMPROVING
        if negative > positive:
            return Trajectory.DECLINING
        return Trajectory.STABLE

    # ------------------------------------------------------------------
    # Runs and snapshots
    # ------------------------------------------------------------------

    def start_new_run(self) -> UUID:
        """Begin a new playthrough. Significant events persist; run events reset."""

        for record in self._relationships.values():
            record.current_run_events = []
            # With no current-run events the vote has nothing to go on.
            record.relationship_trajectory = Trajectory.STABLE

        self._run_id = uuid4()
        log_info(f"[Ledger] Started new run: {self._run_id}")
        return self._run_id

    def export_snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            version=SNAPSHOT_VERSION,
            run_id=self._run_id,
            events=list(self._events),
            relationships=[record.model_copy(deep=True) for record in self._relationships.values()],
        )

    def import_snapshot(self, snapshot: LedgerSnapshot | Mapping[str, Any]) -> bool:
        """Replace ledger contents with a snapshot. Returns False if ignored.

        Raises:
            pydantic.ValidationError: If a dict payload is malformed
        """

        if not isinstance(snapshot, LedgerSnapshot):
            version = snapshot.get("version") if isinstance(snapshot, Mapping) else None
            if version != SNAPSHOT_VERSION:
                log_error(f"[Ledger] Ignoring snapshot with unsupported version {version!r}")
                return False
            snapshot = LedgerSnapshot.model_validate(snapshot)
        elif snapshot.version != SNAPSHOT_VERSION:
            log_error(f"[Ledger] Ignoring snapshot with unsupported version {snapshot.version!r}")
            return False

        self._events = list(snapshot.events)
        self._relationships = {
            record.pair_key: record.model_copy(deep=True) for record in snapshot.relationships
        }
        self._run_id = snapshot.run_id

        log_info(
            f"[Ledger] Imported {len(self._events)} events and "
            f"{len(self._relationships)} relationships"
        )
        return True
