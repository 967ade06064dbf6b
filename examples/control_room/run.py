"""
Control Room: relationships that remember
=========================================

WHAT THIS SHOWS:
- Recording cooperation, rescue and betrayal in the event ledger
- An encounter whose archetype follows from accumulated trust
- Applying outcomes (new memory + game flags)
- Agent banter with delayed, voiced auto-replies
- Carrying significant memories into a new run
- Saving the ledger to JSON

Text generation is off unless RAPPORT_TEXT_GENERATION=true; replies then
come from the cast's template tables.

RUN:
    python -m examples.control_room.run
"""

import asyncio
import random
import tempfile

from rapport import (
    ConversationBus,
    InMemoryFlagStore,
    JsonPersistence,
    LLMTextGenerator,
    NullTextGenerator,
    RapportSession,
    SituationContext,
    StaticPresence,
    load_cast,
)
from rapport.config import Config
from rapport.logging_utils import Color, colored


def print_encounter(encounter) -> None:
    print(colored(f"\n=== {encounter.type.value} ===", Color.CYAN, bold=True))
    for line in encounter.dialogue:
        print(f"  {line.speaker:>8}: {line.text}")
    for outcome in encounter.outcomes:
        print(colored(f"  -> {outcome.type.value}: {outcome.description}", Color.GREEN))


async def main() -> None:
    Config.validate()
    print(Config.display())

    cast = load_cast("control_room")
    presence = StaticPresence({"control-room": {"morthos", "al"}, "atrium": {"ayla"}})
    flags = InMemoryFlagStore()
    save_dir = tempfile.mkdtemp(prefix="rapport_")

    text_generator = (
        LLMTextGenerator(personas=cast.personas)
        if Config.TEXT_GENERATION_ENABLED
        else NullTextGenerator()
    )
    bus = ConversationBus(
        cast,
        presence,
        text_generator,
        reply_delay_ms=(50, 150),
        rng=random.Random(7),
    )
    session = RapportSession(
        cast=cast,
        presence=presence,
        text_generator=text_generator,
        bus=bus,
        flag_store=flags,
        persistence=JsonPersistence(save_dir),
        save_key="control-room-demo",
    )
    await session.initialize()

    ledger = session.ledger
    ledger.record_cooperation("morthos", "al", "control-room", "Rerouted the terminal power grid together")
    ledger.record_rescue("al", "morthos", "maintenance-shaft", "Al pulled Morthos out of a collapsing shaft")
    ledger.record_cooperation("morthos", "al", "control-room", "Decoded the archive data as a team")

    context = SituationContext(
        location="control-room",
        player_present=True,
        player_actions=["examine terminal"],
        active_systems=["terminal"],
    )
    print_encounter(session.trigger_encounter("morthos", "al", context))
    print(colored(f"Flags: {flags.flags}", Color.CYAN))

    session.bus.initiate("morthos", "al", "Where does the pattern sequence start?", "control-room")
    await session.bus.drain()
    for line in session.bus.observation_log:
        print(f"  {line}")

    # Blocked by the banter cooldown
    session.bus.initiate("morthos", "al", "Another thought...", "control-room")

    ledger.record_betrayal("al", "morthos", "archive", "Al sealed the archive with Morthos inside")
    print_encounter(session.trigger_encounter("morthos", "al", SituationContext(location="archive")))

    await session.save()
    session.start_new_run()
    relationship = ledger.get_relationship("morthos", "al")
    print(
        colored(
            f"\nNew run: trust {relationship.overall_trust_level:+.3f}, "
            f"{len(relationship.significant_events)} significant memories kept, "
            f"{len(relationship.current_run_events)} events this run",
            Color.CYAN,
        )
    )

    await session.close()


if __name__ == "__main__":
    asyncio.run(main())
