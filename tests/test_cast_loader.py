"""Cast profiles: template lookups and JSON loading."""

import json
import random

import pytest

from rapport.cast import FALLBACK_LINE, CastLoader, default_cast, load_cast
from rapport.schemas import Topic
from rapport.voice import DEFAULT_VOICE


def test_template_reply_prefers_pair_table():
    cast = default_cast()
    line = cast.template_reply("al", "morthos", Topic.LORE, random.Random(0))
    assert line in cast.pair_responses["al"]["morthos"][Topic.LORE]


def test_template_reply_falls_back_to_generic_table():
    cast = default_cast()
    line = cast.template_reply("morthos", "ayla", Topic.HINT, random.Random(0))
    assert line in cast.generic_responses["morthos"][Topic.HINT]


def test_template_reply_defaults_to_banter_and_fallback_line():
    cast = default_cast()
    assert cast.template_reply("al", "ayla") in cast.generic_responses["al"][Topic.BANTER]
    assert cast.template_reply("ayla", "al", Topic.QUEST) in cast.pair_responses["ayla"]["al"][Topic.QUEST]
    assert cast.template_reply("morthos", "al", Topic.QUEST) == FALLBACK_LINE
    assert cast.template_reply("ghost", "al") == FALLBACK_LINE


def test_co_location_rules():
    cast = default_cast()
    assert cast.requires_co_location("morthos", "al")
    assert cast.requires_co_location("al", "morthos")
    assert not cast.requires_co_location("ayla", "al")
    assert not cast.requires_co_location("morthos", "ghost")


def test_voice_and_display_name_defaults():
    cast = default_cast()
    assert cast.voice_for("al").formality == 2
    assert cast.voice_for("ghost") == DEFAULT_VOICE
    assert cast.display_name("al") == "Al"
    assert cast.display_name("chief-engineer") == "Chief Engineer"


def _write(tmp_path, name, payload):
    path = tmp_path / f"{name}.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_loader_reads_cast_file(tmp_path):
    _write(
        tmp_path,
        "bridge",
        {
            "voices": {"pilot": {"formality": 0, "tics": ["*salutes*"]}, "medic": {}},
            "pair_responses": {"pilot": {"medic": {"banter": ["Patch me up, doc."]}}},
            "generic_responses": {"medic": {"hint": ["Check the readouts."]}},
            "co_located_only": ["pilot", "medic"],
        },
    )

    cast = CastLoader(tmp_path).load("bridge")

    assert cast.name == "bridge"
    assert cast.voice_for("pilot").tics == ["*salutes*"]
    assert cast.template_reply("pilot", "medic") == "Patch me up, doc."
    assert cast.template_reply("medic", "pilot", Topic.HINT) == "Check the readouts."
    assert cast.requires_co_location("pilot", "medic")


def test_loader_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        CastLoader(tmp_path).load("nowhere")


@pytest.mark.parametrize(
    "payload, message",
    [
        (["not", "an", "object"], "JSON object"),
        ({"pair_responses": {}}, "'voices'"),
        ({"voices": {"pilot": {}}, "co_located_only": ["pilot", "medic"]}, "medic"),
    ],
)
def test_loader_rejects_invalid_casts(tmp_path, payload, message):
    _write(tmp_path, "broken", payload)

    with pytest.raises(ValueError, match=message):
        CastLoader(tmp_path).load("broken")


def test_bundled_control_room_cast_loads():
    cast = load_cast("control_room")

    assert cast.name == "control_room"
    assert cast.requires_co_location("morthos", "al")
    assert not cast.requires_co_location("ayla", "morthos")
    assert cast.template_reply("al", "morthos", Topic.BANTER) != FALLBACK_LINE
