"""
Presence / world-state provider.

The conversation bus asks who is in a room before delivering a co-located
reply, and hands a world-state snapshot to the text generator. Games plug
in their own room tracking by implementing PresenceProvider.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping, Optional, Set


class PresenceProvider(ABC):
    @abstractmethod
    def agents_in_room(self, room_id: str) -> Set[str]:
        """Return ids of agents currently in ``room_id`` (empty if unknown)."""

    @abstractmethod
    def snapshot(self) -> Dict[str, Any]:
        """Return a read-only view of world state for text generation."""


class StaticPresence(PresenceProvider):
    """Mutable room -> agents map. Each agent is in at most one room."""

    def __init__(
        self,
        rooms: Optional[Mapping[str, Iterable[str]]] = None,
        extra_state: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.rooms: Dict[str, Set[str]] = {
            room: set(agents) for room, agents in (rooms or {}).items()
        }
        self.extra_state: Dict[str, Any] = dict(extra_state or {})

    def agents_in_room(self, room_id: str) -> Set[str]:
        return set(self.rooms.get(room_id, set()))

    def room_of(self, agent_id: str) -> Optional[str]:
        for room, agents in self.rooms.items():
            if agent_id in agents:
                return room
        return None

    def move(self, agent_id: str, room_id: Optional[str]) -> None:
        """Move an agent to ``room_id``; ``None`` removes them from the map."""
        for agents in self.rooms.values():
            agents.discard(agent_id)
        if room_id is not None:
            self.rooms.setdefault(room_id, set()).add(agent_id)

    def snapshot(self) -> Dict[str, Any]:
        state = dict(self.extra_state)
        state["rooms"] = {room: sorted(agents) for room, agents in self.rooms.items()}
        return state
