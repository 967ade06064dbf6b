"""Banter cooldown bookkeeping."""

from rapport.conversation import CooldownTracker


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


def test_first_start_is_always_allowed():
    tracker = CooldownTracker(90, clock=FakeClock())
    assert tracker.can_start("morthos", "al", "lab")
    assert tracker.remaining("morthos", "al", "lab") == 0.0


def test_cooldown_is_strict_and_order_insensitive():
    clock = FakeClock(10.0)
    tracker = CooldownTracker(90, clock=clock)
    tracker.record_start("morthos", "al", "lab")

    clock.now = 100.0
    assert not tracker.can_start("al", "morthos", "lab")
    assert tracker.remaining("al", "morthos", "lab") == 0.0

    clock.now = 100.5
    assert tracker.can_start("al", "morthos", "lab")


def test_rooms_are_tracked_separately():
    tracker = CooldownTracker(90, clock=FakeClock())
    tracker.record_start("morthos", "al", "lab")

    assert tracker.can_start("morthos", "al", "archive")
    assert tracker.key("al", "morthos", "lab") == "banter:lab:al-morthos"


def test_pair_overrides_and_remaining():
    clock = FakeClock()
    tracker = CooldownTracker(90, {("al", "morthos"): 30}, clock=clock)
    tracker.record_start("morthos", "al", "lab")

    clock.now = 20
    assert tracker.cooldown_for("morthos", "al") == 30
    assert tracker.cooldown_for("ayla", "al") == 90
    assert tracker.remaining("morthos", "al", "lab") == 10
    assert tracker.remaining("morthos", "al", "lab", cooldown_seconds=15) == 0.0
    assert tracker.can_start("morthos", "al", "lab", cooldown_seconds=15)


def test_reset_one_pair_or_everything():
    tracker = CooldownTracker(90, clock=FakeClock())
    tracker.record_start("morthos", "al", "lab")
    tracker.record_start("ayla", "al", "lab")

    tracker.reset("al", "morthos", "lab")
    assert tracker.can_start("morthos", "al", "lab")
    assert not tracker.can_start("ayla", "al", "lab")

    tracker.reset()
    assert tracker.can_start("ayla", "al", "lab")


def test_default_comes_from_config(monkeypatch):
    from rapport.config import Config

    monkeypatch.setattr(Config, "BANTER_COOLDOWN_SECONDS", 12.0)
    assert CooldownTracker().default_seconds == 12.0
