"""
Game-flag store interface.

Encounter outcomes write flags such as ``"morthos-al-alliance": "strong"``
into whatever key/value store the game keeps its state in. The store is an
external collaborator: implement GameFlagStore to bridge to the game, or
use InMemoryFlagStore for tests and standalone demos.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional


class FlagStoreUnavailableError(Exception):
    """Raised by a flag store that cannot accept writes right now."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        message = (
            f"Game flag store unavailable: {reason}\n\n"
            "Remediation tips:\n"
            "  - Make sure the game state is loaded before applying encounters\n"
            "  - Pass a flag store to RapportSession/EncounterOrchestrator"
        )
        super().__init__(message)


class GameFlagStore(ABC):
    """Key/value flags owned by the game."""

    @abstractmethod
    def set_flag(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    def get_flag(self, key: str, default: Any = None) -> Any:
        pass

    def update(self, changes: Mapping[str, Any]) -> None:
        """Apply several flag changes. Stops at the first failing write."""
        for key, value in changes.items():
            self.set_flag(key, value)


class InMemoryFlagStore(GameFlagStore):
    """Dict-backed flag store."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None) -> None:
        self.flags: Dict[str, Any] = dict(initial or {})

    def set_flag(self, key: str, value: Any) -> None:
        self.flags[key] = value

    def get_flag(self, key: str, default: Any = None) -> Any:
        return self.flags.get(key, default)
