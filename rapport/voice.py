"""
Voice styling for agent replies.

A Voice has two small integer dials plus a list of verbal tics:

- formality:  0 contracts ("cannot" -> "can't"), 2 expands contractions
- terseness:  2 trims filler phrases, 0 adds an elaborator after the first sentence

Tics fire with probability ``tic_chance``. Action tics (``*whirrs*``) go
at the end, word tics ("Ahem.") at the start.
"""

import random
import re
from typing import List, Optional

from pydantic import BaseModel, Field


class Voice(BaseModel):
    formality: int = Field(1, ge=0, le=2, description="0 casual, 1 neutral, 2 formal")
    terseness: int = Field(1, ge=0, le=2, description="0 verbose, 1 neutral, 2 terse")
    tics: List[str] = Field(default_factory=list)


DEFAULT_VOICE = Voice()
TIC_CHANCE = 0.2
ELABORATORS = ("you see", "actually", "as it happens", "indeed")

_CONTRACTIONS = (
    ("cannot", "can't"),
    ("will not", "won't"),
    ("do not", "don't"),
)
_EXPANSIONS = (
    ("can't", "cannot"),
    ("won't", "will not"),
    ("don't", "do not"),
    ("it's", "it is"),
    ("that's", "that is"),
)
_TERSE_REWRITES = (
    (re.compile(r"I think that"), "I think"),
    (re.compile(r"It seems to me that"), "Seems"),
    (re.compile(r"In my opinion,? ?"), ""),
)


def stylize(
    text: str,
    voice: Optional[Voice] = None,
    rng: Optional[random.Random] = None,
    *,
    tic_chance: float = TIC_CHANCE,
) -> str:
    """Apply a voice to a line of text. Pass a seeded ``rng`` for repeatable output."""

    voice = voice or DEFAULT_VOICE
    rng = rng or random.Random()
    styled = text

    if voice.formality == 0:
        for formal, casual in _CONTRACTIONS:
            styled = styled.replace(formal, casual)
    elif voice.formality == 2:
        for casual, formal in _EXPANSIONS:
            styled = styled.replace(casual, formal)

    if voice.terseness == 2:
        for pattern, replacement in _TERSE_REWRITES:
            styled = pattern.sub(replacement, styled)
    elif voice.terseness == 0:
        if "you see" not in styled and "actually" not in styled and ". " in styled:
            elaborator = rng.choice(ELABORATORS)
            styled = styled.replace(". ", f", {elaborator}. ", 1)

    if voice.tics and rng.random() < tic_chance:
        tic = rng.choice(voice.tics)
        styled = f"{styled} {tic}" if tic.startswith("*") else f"{tic} {styled}"

    return styled
