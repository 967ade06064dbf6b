"""Conversation bus: threads, observations, auto-replies and guards."""

import asyncio
import random
from datetime import datetime, timezone

import pytest

from rapport.cast import CastProfile, default_cast
from rapport.conversation import (
    ConversationBus,
    ConversationMemory,
    ReplyGuard,
    SendOptions,
    thread_id,
)
from rapport.presence import PresenceProvider, StaticPresence
from rapport.schemas import Priority, SpeakerRef, Topic
from rapport.text_generation import TextGenerator


T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
PLAYER = SpeakerRef.player()


def quiet_cast() -> CastProfile:
    """Cast with no tics and no co-location rules, so replies are exact."""
    return CastProfile(
        generic_responses={
            "al": {Topic.BANTER: ["Quite so."], Topic.HINT: ["Try the lever."]},
            "morthos": {Topic.BANTER: ["Sure."]},
        }
    )


def make_bus(cast=None, presence=None, text_generator=None, **kwargs) -> ConversationBus:
    kwargs.setdefault("reply_delay_ms", (0, 0))
    kwargs.setdefault("max_reply_depth", 1)
    return ConversationBus(
        cast or default_cast(),
        presence,
        text_generator,
        rng=random.Random(7),
        clock=lambda: T0,
        **kwargs,
    )


class RecordingGenerator(TextGenerator):
    def __init__(self, reply=None, error=None, delay=0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls = []

    async def generate(self, agent_id, prompt, world_state):
        self.calls.append((agent_id, prompt, dict(world_state)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.reply


class ExplodingPresence(PresenceProvider):
    def agents_in_room(self, room_id):
        raise RuntimeError("presence offline")

    def snapshot(self):
        return {}


def test_thread_id_is_order_insensitive():
    assert thread_id("lab", "morthos", "al") == "thr:lab:al-morthos"
    assert thread_id("lab", "al", "morthos") == "thr:lab:al-morthos"


def test_send_without_event_loop_drops_reply():
    bus = make_bus(presence=StaticPresence({"lab": {"morthos", "al"}}))

    exchange = bus.send("morthos", "al", "Systems check?", "lab")

    thread = bus.get_thread("lab", "al", "morthos")
    assert thread.exchanges == [exchange]
    assert thread.participants == ("morthos", "al")
    assert thread.last_timestamp == T0
    assert bus.pending_replies == set()
    assert not bus.guard.is_held()


def test_observation_line_format_and_listeners():
    bus = make_bus(max_reply_depth=0)
    heard = []
    bus.add_observation_listener(heard.append)

    bus.send("morthos", "al", "Hello", "lab")
    bus.send(PLAYER, "al", "Hi Al", "lab")
    bus.send("al", PLAYER, "Greetings.", "lab")

    assert bus.observation_log == ["[morthos → al] Hello"]
    assert heard == ["[morthos → al] Hello"]


def test_failing_listener_does_not_break_send(capsys):
    bus = make_bus(max_reply_depth=0)

    def broken(line):
        raise ValueError("listener down")

    bus.add_observation_listener(broken)
    bus.send("morthos", "al", "Hello", "lab")

    assert bus.observation_log == ["[morthos → al] Hello"]
    assert "listener down" in capsys.readouterr().out


def test_hidden_exchanges_are_not_observed():
    bus = make_bus(max_reply_depth=0, overhear=False)

    exchange = bus.send("morthos", "al", "Psst", "lab")

    assert exchange.visible_to_player is False
    assert bus.observation_log == []

    shown = bus.send("morthos", "al", "Out loud", "lab", SendOptions(visible_to_player=True))
    assert shown.visible_to_player is True
    assert bus.observation_log == ["[morthos → al] Out loud"]


def test_whisper_is_invisible_and_low_priority():
    bus = make_bus(max_reply_depth=0)

    exchange = bus.whisper("ayla", "morthos", "Nudge them", "atrium", Topic.HINT)

    assert exchange.visible_to_player is False
    assert exchange.topic == Topic.HINT
    assert bus.get_thread("atrium", "ayla", "morthos").priority == Priority.LOW
    assert bus.observation_log == []


def test_priority_is_fixed_when_thread_is_created():
    bus = make_bus(max_reply_depth=0)

    bus.send("morthos", "al", "First", "lab", SendOptions(priority=Priority.HIGH))
    bus.send("morthos", "al", "Second", "lab", SendOptions(priority=Priority.LOW))

    assert bus.get_thread("lab", "morthos", "al").priority == Priority.HIGH


def test_thread_is_trimmed_to_newest_exchanges():
    bus = make_bus(max_exchanges=3)

    for i in range(5):
        bus.send("al", PLAYER, f"line {i}", "lab")

    thread = bus.get_thread("lab", "al", "player")
    assert [e.text for e in thread.exchanges] == ["line 2", "line 3", "line 4"]
    assert bus.is_thread_at_limit(thread)


def test_sender_memory_is_capped():
    bus = make_bus(memory=ConversationMemory(max_entries=20))

    for i in range(25):
        bus.send("al", PLAYER, f"line {i}", "lab", SendOptions(topic=Topic.LORE))

    history = bus.memory.history("al")
    assert len(history) == 20
    assert history[0].summary == "line 5"
    assert history[-1].topic == Topic.LORE
    assert bus.memory.get("al").last_spoke_to == "player"
    assert bus.memory.history("player") == []


def test_thread_management():
    bus = make_bus(max_reply_depth=0)
    bus.send("morthos", "al", "Hello", "lab")
    bus.send("morthos", "al", "Hello", "archive")

    assert len(bus.threads) == 2
    assert bus.clear_thread("archive", "al", "morthos") is True
    assert bus.clear_thread("archive", "al", "morthos") is False

    bus.clear()
    assert bus.threads == []
    assert bus.observation_log == []


@pytest.mark.asyncio
async def test_co_located_agents_get_a_reply():
    bus = make_bus(presence=StaticPresence({"lab": {"morthos", "al"}}))

    bus.send("morthos", "al", "Did you move my wrench?", "lab")
    await bus.drain()

    thread = bus.get_thread("lab", "morthos", "al")
    assert [e.sender.id for e in thread.exchanges] == ["morthos", "al"]
    assert thread.exchanges[1].receiver.id == "morthos"
    assert thread.exchanges[1].text
    assert len(bus.observation_log) == 2
    assert bus.observation_log[1].startswith("[al → morthos] ")
    assert not bus.guard.is_held()


@pytest.mark.asyncio
async def test_reply_chain_is_bounded_by_depth():
    bus = make_bus(quiet_cast(), max_reply_depth=2)

    bus.send("morthos", "al", "Hello", "lab")
    await bus.drain()

    texts = [e.text for e in bus.get_thread("lab", "al", "morthos").exchanges]
    assert texts == ["Hello", "Quite so.", "Sure."]
    assert bus.pending_replies == set()


@pytest.mark.asyncio
async def test_zero_depth_never_replies():
    bus = make_bus(quiet_cast(), max_reply_depth=0)

    bus.send("morthos", "al", "Hello", "lab")
    await bus.drain()

    assert len(bus.get_thread("lab", "al", "morthos").exchanges) == 1


@pytest.mark.asyncio
async def test_reply_dropped_when_not_co_located():
    presence = StaticPresence({"lab": {"morthos"}, "archive": {"al"}})
    bus = make_bus(presence=presence)

    bus.send("morthos", "al", "Are you there?", "lab")
    await bus.drain()

    assert len(bus.get_thread("lab", "morthos", "al").exchanges) == 1
    assert not bus.guard.is_held()


@pytest.mark.asyncio
async def test_reply_dropped_without_presence_provider():
    bus = make_bus()

    bus.send("morthos", "al", "Are you there?", "lab")
    await bus.drain()

    assert len(bus.get_thread("lab", "morthos", "al").exchanges) == 1


@pytest.mark.asyncio
async def test_cross_room_speaker_is_always_answered():
    bus = make_bus(presence=StaticPresence({"atrium": {"ayla"}, "lab": {"morthos"}}))

    bus.send("ayla", "morthos", "Where should they look?", "atrium", SendOptions(topic=Topic.HINT))
    await bus.drain()

    thread = bus.get_thread("atrium", "ayla", "morthos")
    assert len(thread.exchanges) == 2
    assert thread.exchanges[1].topic == Topic.HINT


@pytest.mark.asyncio
async def test_global_guard_drops_concurrent_replies():
    presence = StaticPresence({"lab": {"morthos", "al", "ayla"}})
    bus = make_bus(presence=presence)

    bus.send("morthos", "al", "First", "lab")
    bus.send("ayla", "al", "Second", "lab")
    assert bus.guard.is_held()
    await bus.drain()

    assert len(bus.get_thread("lab", "morthos", "al").exchanges) == 2
    assert len(bus.get_thread("lab", "ayla", "al").exchanges) == 1
    assert not bus.guard.is_held()


@pytest.mark.asyncio
async def test_pair_guard_allows_independent_pairs():
    presence = StaticPresence({"lab": {"morthos", "al", "ayla"}})
    bus = make_bus(presence=presence, guard=ReplyGuard("pair"))

    bus.send("morthos", "al", "First", "lab")
    bus.send("ayla", "al", "Second", "lab")
    bus.send("al", "morthos", "Third", "lab")
    await bus.drain()

    assert len(bus.get_thread("lab", "ayla", "al").exchanges) == 2
    # morthos/al already had a reply in flight when "Third" was sent
    assert len(bus.get_thread("lab", "morthos", "al").exchanges) == 3


def test_reply_guard_rejects_unknown_scope():
    with pytest.raises(ValueError):
        ReplyGuard("room")


def test_reply_guard_slots():
    guard = ReplyGuard("pair")
    assert guard.try_acquire("al:morthos")
    assert not guard.try_acquire("al:morthos")
    assert guard.try_acquire("al:ayla")
    guard.release("al:morthos")
    assert not guard.is_held("al:morthos")
    assert guard.is_held()
    guard.reset()
    assert not guard.is_held()


def test_stale_token_does_not_free_newer_holder():
    guard = ReplyGuard()
    first = guard.try_acquire("al:morthos")
    guard.release("al:morthos", first)
    second = guard.try_acquire("al:ayla")

    guard.release("al:morthos", first)
    assert guard.is_held()

    guard.release("al:ayla", second)
    assert not guard.is_held()


@pytest.mark.asyncio
async def test_cancelled_reply_releases_guard():
    bus = make_bus(quiet_cast())

    bus.send("morthos", "al", "hi", "lab")
    assert bus.guard.is_held()
    for task in list(bus.pending_replies):
        task.cancel()
    await bus.drain()

    assert not bus.guard.is_held()
    assert bus.pending_replies == set()

    bus.send("morthos", "al", "hello again", "lab")
    await bus.drain()

    texts = [e.text for e in bus.get_thread("lab", "morthos", "al").exchanges]
    assert texts == ["hi", "hello again", "Quite so."]


@pytest.mark.asyncio
async def test_follow_up_reply_keeps_slot_after_first_task_finishes():
    bus = make_bus(quiet_cast(), max_reply_depth=2, reply_delay_ms=(200, 200))

    bus.send("morthos", "al", "Hello", "lab")
    thread = bus.get_thread("lab", "al", "morthos")
    while len(thread.exchanges) < 2:
        await asyncio.sleep(0.01)
    # Al's task has finished; Morthos's counter-reply now holds the slot
    await asyncio.sleep(0.02)
    assert len(bus.pending_replies) == 1
    assert bus.guard.is_held()

    await bus.drain()
    assert not bus.guard.is_held()


def test_thread_cap_must_be_positive():
    with pytest.raises(ValueError, match="max_exchanges"):
        make_bus(max_exchanges=0)
    with pytest.raises(ValueError, match="max_exchanges"):
        make_bus(max_exchanges=-3)


@pytest.mark.asyncio
async def test_failing_reply_releases_guard(capsys):
    bus = make_bus(presence=ExplodingPresence())

    bus.send("morthos", "al", "Hello?", "lab")
    await bus.drain()

    assert not bus.guard.is_held()
    assert len(bus.get_thread("lab", "morthos", "al").exchanges) == 1
    assert "presence offline" in capsys.readouterr().out

    # The bus keeps working after a failed reply
    bus.presence = StaticPresence({"lab": {"morthos", "al"}})
    bus.send("morthos", "al", "Hello again?", "lab")
    await bus.drain()
    assert len(bus.get_thread("lab", "morthos", "al").exchanges) == 3


@pytest.mark.asyncio
async def test_generated_text_is_used_when_available():
    generator = RecordingGenerator(reply="  Generated line.  ")
    bus = make_bus(quiet_cast(), StaticPresence({"lab": {"al"}}, {"alarm": "off"}), generator)

    bus.send("morthos", "al", "Hello", "lab")
    await bus.drain()

    reply = bus.get_thread("lab", "al", "morthos").exchanges[-1]
    assert reply.text == "Generated line."
    agent_id, prompt, world_state = generator.calls[0]
    assert agent_id == "al"
    assert prompt == "message from morthos"
    assert world_state["room_id"] == "lab"
    assert world_state["alarm"] == "off"
    assert world_state["rooms"] == {"lab": ["al"]}


@pytest.mark.asyncio
async def test_topic_shapes_reply_prompt_and_template():
    generator = RecordingGenerator(reply=None)
    bus = make_bus(quiet_cast(), text_generator=generator)

    bus.send("morthos", "al", "Any ideas?", "lab", SendOptions(topic=Topic.HINT))
    await bus.drain()

    assert generator.calls[0][1] == "hint about current objective from morthos"
    assert bus.get_thread("lab", "al", "morthos").exchanges[-1].text == "Try the lever."


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "generator",
    [
        RecordingGenerator(error=RuntimeError("provider down")),
        RecordingGenerator(reply="   "),
        RecordingGenerator(reply="Too slow", delay=1.0),
    ],
)
async def test_generator_failures_fall_back_to_templates(generator):
    bus = make_bus(quiet_cast(), text_generator=generator, text_timeout_seconds=0.05)

    bus.send("morthos", "al", "Hello", "lab")
    await bus.drain()

    assert bus.get_thread("lab", "al", "morthos").exchanges[-1].text == "Quite so."


@pytest.mark.asyncio
async def test_unknown_replier_uses_fallback_line():
    bus = make_bus(quiet_cast())

    bus.send("al", "ghost", "Anyone?", "crypt")
    await bus.drain()

    assert bus.get_thread("crypt", "al", "ghost").exchanges[-1].text == "..."


@pytest.mark.asyncio
async def test_initiate_respects_cooldown_and_infers_topic():
    now = [1000.0]
    bus = make_bus(quiet_cast(), max_reply_depth=0)
    bus.cooldowns.clock = lambda: now[0]

    first = bus.initiate("morthos", "al", "Where is the control nexus?", "lab")
    assert first is not None
    assert first.topic == Topic.HINT

    assert bus.initiate("al", "morthos", "Anything new?", "lab") is None
    assert bus.initiate("morthos", "al", "Anything new?", "archive") is not None

    now[0] += 90
    assert bus.initiate("morthos", "al", "Anything new?", "lab") is None

    now[0] += 1
    again = bus.initiate("morthos", "al", "Anything new?", "lab")
    assert again is not None
    assert again.topic == Topic.BANTER


@pytest.mark.asyncio
async def test_initiate_cooldown_override():
    now = [0.0]
    bus = make_bus(quiet_cast(), max_reply_depth=0)
    bus.cooldowns.clock = lambda: now[0]

    bus.initiate("morthos", "al", "Hi", "lab")
    now[0] += 5
    assert bus.initiate("morthos", "al", "Hi", "lab", cooldown_seconds=3) is not None
