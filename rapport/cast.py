"""
Cast profiles: who speaks, how they sound, and what they say by default.

A cast bundles everything the conversation bus needs about its agents:

- voices used by stylize()
- pair response tables (speaker -> addressee -> topic -> lines)
- per-agent generic tables used when no pair table covers the topic
- co-location rules (which agents must share a room to reply, and which
  agents may talk across rooms)

Casts are data. CastLoader reads them from JSON the same way scenarios are
loaded, and default_cast() returns the built-in morthos/al/ayla trio.

Cast file structure:
```json
{
  "name": "control_room",
  "display_names": {"al": "Al"},
  "voices": {"al": {"formality": 2, "terseness": 2, "tics": ["Ahem."]}},
  "pair_responses": {"al": {"morthos": {"banter": ["Quite so, Morthos."]}}},
  "generic_responses": {"al": {"banter": ["Logical."]}},
  "co_located_only": ["morthos", "al"],
  "cross_room_speakers": ["ayla"]
}
```
"""

import json
import random
from pathlib import Path
from typing import Dict, List, Optional, Set

from pydantic import BaseModel, Field

from .config import Config
from .schemas import Topic
from .voice import DEFAULT_VOICE, Voice


FALLBACK_LINE = "..."


class CastProfile(BaseModel):
    """Voices, reply tables and co-location rules for a set of agents."""

    name: str = Field("default", description="Cast identifier")
    display_names: Dict[str, str] = Field(default_factory=dict)
    voices: Dict[str, Voice] = Field(default_factory=dict)
    pair_responses: Dict[str, Dict[str, Dict[Topic, List[str]]]] = Field(
        default_factory=dict,
        description="speaker -> addressee -> topic -> candidate lines",
    )
    generic_responses: Dict[str, Dict[Topic, List[str]]] = Field(
        default_factory=dict,
        description="speaker -> topic -> candidate lines",
    )
    co_located_only: Set[str] = Field(
        default_factory=set,
        description="Agents whose replies to each other need a shared room",
    )
    cross_room_speakers: Set[str] = Field(
        default_factory=set,
        description="Agents that may converse from anywhere",
    )
    personas: Dict[str, str] = Field(
        default_factory=dict, description="Optional system prompts for text generation"
    )
    fallback_line: str = FALLBACK_LINE

    def voice_for(self, agent_id: str) -> Voice:
        return self.voices.get(agent_id, DEFAULT_VOICE)

    def display_name(self, agent_id: str) -> str:
        return self.display_names.get(agent_id, agent_id.replace("-", " ").title())

    def requires_co_location(self, agent_a: str, agent_b: str) -> bool:
        both_bound = agent_a in self.co_located_only and agent_b in self.co_located_only
        either_free = agent_a in self.cross_room_speakers or agent_b in self.cross_room_speakers
        return both_bound and not either_free

    def template_reply(
        self,
        speaker: str,
        addressee: str,
        topic: Optional[Topic] = None,
        rng: Optional[random.Random] = None,
    ) -> str:
        """Pick a canned line for ``speaker`` answering ``addressee``.

        Lookup order: pair table for the topic, then the speaker's generic
        table for the topic, then ``fallback_line``. A missing topic means
        banter.
        """
        rng = rng or random.Random()
        topic = topic or Topic.BANTER

        lines = self.pair_responses.get(speaker, {}).get(addressee, {}).get(topic)
        if not lines:
            lines = self.generic_responses.get(speaker, {}).get(topic)
        if not lines:
            return self.fallback_line
        return rng.choice(lines)


def default_cast() -> CastProfile:
    """Built-in cast: Ayla (guide), Morthos (mechanic) and Al (archivist)."""

    return CastProfile(
        name="default",
        display_names={"ayla": "Ayla", "morthos": "Morthos", "al": "Al"},
        voices={
            "ayla": Voice(
                formality=1, terseness=1,
                tics=["…", "*nods thoughtfully*", "*smiles knowingly*"],
            ),
            "morthos": Voice(
                formality=0, terseness=1,
                tics=["*clank*", "*adjusts mechanical parts*", "*whirrs softly*"],
            ),
            "al": Voice(
                formality=2, terseness=2,
                tics=["Ahem.", "*adjusts spectacles*", "*clears throat*"],
            ),
        },
        pair_responses={
            "morthos": {
                "al": {
                    Topic.BANTER: [
                        "Did you reorganize my tools again?",
                        "Your efficiency protocols are showing, Al.",
                        "That calculation seems off by 0.3%.",
                    ],
                    Topic.HINT: [
                        "Al, the player seems stuck. Thoughts?",
                        "Should we mention the pattern sequence?",
                        "Time for a subtle nudge, perhaps?",
                    ],
                    Topic.LORE: [
                        "Remember when the reset protocols first activated?",
                        "Do you think they understand the loop nature?",
                        "The control systems weren't always this complex.",
                    ],
                },
            },
            "al": {
                "morthos": {
                    Topic.BANTER: [
                        "Correlation does not imply causation, Morthos.",
                        "Your tools are exactly where efficiency dictates.",
                        "Precision is paramount in all calculations.",
                    ],
                    Topic.HINT: [
                        "Indeed. A logical progression would be...",
                        "The pattern follows a clear sequence.",
                        "Observation suggests they need guidance.",
                    ],
                    Topic.LORE: [
                        "The historical records indicate...",
                        "Documentation shows the original parameters...",
                        "Logical analysis suggests the purpose was...",
                    ],
                },
            },
            "ayla": {
                "morthos": {
                    Topic.HINT: [
                        "Morthos, the player is circling. Suggest you hint at the pedestal pattern.",
                        "They're missing the mechanical aspect. Your expertise?",
                        "Time for an engineering perspective, don't you think?",
                    ],
                    Topic.QUEST: [
                        "The next phase requires your technical knowledge.",
                        "Your understanding of the systems could help here.",
                        "They need to see the mechanical connections.",
                    ],
                },
                "al": {
                    Topic.HINT: [
                        "Al, they need precision guidance on the sequence.",
                        "Logical analysis might clarify their confusion.",
                        "Your systematic approach could illuminate the pattern.",
                    ],
                    Topic.QUEST: [
                        "The documentation suggests a specific order.",
                        "Your records might contain the solution.",
                        "Systematic analysis is needed here.",
                    ],
                },
            },
        },
        generic_responses={
            "morthos": {
                Topic.BANTER: ["*mechanical whirring*", "Interesting observation.", "Systems nominal."],
                Topic.HINT: ["Perhaps we should guide them.", "The solution involves mechanical precision."],
                Topic.LORE: ["The old systems were different.", "Before the resets, things were simpler."],
            },
            "al": {
                Topic.BANTER: ["Ahem.", "Quite so.", "Logical."],
                Topic.HINT: ["Systematic approach required.", "The pattern should be evident."],
                Topic.LORE: ["Historical precedent suggests...", "Documentation indicates..."],
            },
            "ayla": {
                Topic.BANTER: ["Indeed.", "The choices matter.", "Patterns emerge."],
                Topic.HINT: ["Guide them gently.", "Agency is important."],
                Topic.LORE: ["The story has layers.", "Purpose unfolds with time."],
            },
        },
        co_located_only={"morthos", "al"},
        cross_room_speakers={"ayla"},
    )


class CastLoader:
    """Load and validate cast profiles from JSON files.

    Directory structure:
    - Default: {PROJECT_ROOT}/examples/casts/
    - Override via constructor: CastLoader(Path("/custom/casts"))
    - Cast files: {cast_name}.json
    """

    def __init__(self, casts_dir: Optional[Path] = None):
        self.casts_dir = casts_dir or Config.CASTS_DIR

    def load(self, cast_name: str) -> CastProfile:
        """Load a cast by name.

        Raises:
            FileNotFoundError: If the cast file does not exist
            ValueError: If the file is missing required sections
            pydantic.ValidationError: If a section has the wrong shape
            json.JSONDecodeError: If the file is not valid JSON
        """
        cast_path = self.casts_dir / f"{cast_name}.json"
        if not cast_path.exists():
            raise FileNotFoundError(f"Cast '{cast_name}' not found at {cast_path}")

        data = json.loads(cast_path.read_text(encoding="utf-8"))
        self._validate_cast(data)
        data.setdefault("name", cast_name)
        return CastProfile.model_validate(data)

    def _validate_cast(self, data: Dict) -> None:
        if not isinstance(data, dict):
            raise ValueError("Cast file must contain a JSON object")

        if "voices" not in data:
            raise ValueError("Cast missing required field: 'voices'")

        unknown = set(data.get("co_located_only", [])) - set(data["voices"])
        if unknown:
            raise ValueError(
                f"co_located_only names agents without a voice: {sorted(unknown)}"
            )


def load_cast(cast_name: str) -> CastProfile:
    """Convenience function to load a cast from the default casts directory."""
    return CastLoader().load(cast_name)
