"""
Conversation bus for agent-to-agent (and player-to-agent) chatter.

send() is synchronous bookkeeping:
1. Upsert the thread for (room, unordered pair)
2. Append the exchange and trim the thread to max_exchanges
3. Surface visible agent-to-agent lines as "[a → b] text" observations
4. Record the utterance in the sender's conversation memory
5. Schedule one delayed auto-reply when the recipient is an agent

Replies run as tasks on the running event loop. A ReplyGuard slot is taken
when the reply is scheduled and released in ``finally`` once the reply text
is composed, before it is sent back, so a raising reply can never wedge the
guard. The task's done callback releases the same slot again by token, which
covers a task cancelled before it ever ran. Each reply goes out at
``depth + 1`` and nothing is scheduled at ``max_reply_depth``, which bounds
any back-and-forth.

Reply text comes from the text generator (bounded by a timeout) and falls
back to the cast's template tables, then gets the replier's voice.
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple, Union

from .cast import CastProfile, default_cast
from .config import Config
from .ledger import utc_now
from .logging_utils import log_deterministic, log_error, log_info
from .presence import PresenceProvider
from .schemas import (
    ConversationExchange,
    ConversationThread,
    Priority,
    SpeakerRef,
    Topic,
    pair_key,
)
from .text_generation import TextGenerator, generate_with_timeout
from .topics import build_reply_prompt, infer_topic
from .voice import stylize


Speaker = Union[SpeakerRef, str]


def thread_id(room_id: str, speaker_a: str, speaker_b: str) -> str:
    first, second = sorted((speaker_a, speaker_b))
    return f"thr:{room_id}:{first}-{second}"


@dataclass
class SendOptions:
    topic: Optional[Topic] = None
    # None means "use the bus's overhear setting"
    visible_to_player: Optional[bool] = None
    # Only applied when the thread is created
    priority: Optional[Priority] = None


# ============================================================================
# Reply guard
# ============================================================================


class ReplyGuard:
    """Tracks replies in flight.

    ``"global"`` scope is a single slot: while any reply is pending, further
    replies are dropped. ``"pair"`` scope allows one pending reply per
    unordered agent pair, so unrelated conversations do not block each other.

    ``try_acquire`` hands back a token for the slot. Releasing with that token
    only frees the slot while the same token still holds it, so a stale
    release never frees a slot a later reply has taken.
    """

    SCOPES = ("global", "pair")

    def __init__(self, scope: str = "global") -> None:
        if scope not in self.SCOPES:
            raise ValueError(f"ReplyGuard scope must be one of {self.SCOPES}, got {scope!r}")
        self.scope = scope
        self._held: Dict[str, object] = {}

    def _slot(self, key: str) -> str:
        return "*" if self.scope == "global" else key

    def try_acquire(self, key: str) -> Optional[object]:
        """Take the slot for ``key``. Returns a release token, or None if taken."""
        slot = self._slot(key)
        if slot in self._held:
            return None
        token = object()
        self._held[slot] = token
        return token

    def release(self, key: str, token: Optional[object] = None) -> None:
        slot = self._slot(key)
        if token is None or self._held.get(slot) is token:
            self._held.pop(slot, None)

    def is_held(self, key: Optional[str] = None) -> bool:
        if key is None:
            return bool(self._held)
        return self._slot(key) in self._held

    def reset(self) -> None:
        self._held.clear()


# ============================================================================
# Cooldowns
# ============================================================================


class CooldownTracker:
    """Per room, per unordered pair "last conversation started" timestamps."""

    def __init__(
        self,
        default_seconds: Optional[float] = None,
        pair_overrides: Optional[Dict[Tuple[str, str], float]] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_seconds = (
            Config.BANTER_COOLDOWN_SECONDS if default_seconds is None else default_seconds
        )
        self.pair_overrides: Dict[str, float] = {
            pair_key(a, b): seconds for (a, b), seconds in (pair_overrides or {}).items()
        }
        self.clock = clock
        self._last_start: Dict[str, float] = {}

    @staticmethod
    def key(agent_a: str, agent_b: str, room_id: str) -> str:
        first, second = sorted((agent_a, agent_b))
        return f"banter:{room_id}:{first}-{second}"

    def cooldown_for(self, agent_a: str, agent_b: str) -> float:
        return self.pair_overrides.get(pair_key(agent_a, agent_b), self.default_seconds)

    def remaining(
        self,
        agent_a: str,
        agent_b: str,
        room_id: str,
        cooldown_seconds: Optional[float] = None,
    ) -> float:
        last = self._last_start.get(self.key(agent_a, agent_b, room_id))
        if last is None:
            return 0.0
        cooldown = self.cooldown_for(agent_a, agent_b) if cooldown_seconds is None else cooldown_seconds
        return max(0.0, cooldown - (self.clock() - last))

    def can_start(
        self,
        agent_a: str,
        agent_b: str,
        room_id: str,
        cooldown_seconds: Optional[float] = None,
    ) -> bool:
        last = self._last_start.get(self.key(agent_a, agent_b, room_id))
        if last is None:
            return True
        cooldown = self.cooldown_for(agent_a, agent_b) if cooldown_seconds is None else cooldown_seconds
        return self.clock() - last > cooldown

    def record_start(self, agent_a: str, agent_b: str, room_id: str) -> None:
        self._last_start[self.key(agent_a, agent_b, room_id)] = self.clock()

    def reset(
        self,
        agent_a: Optional[str] = None,
        agent_b: Optional[str] = None,
        room_id: Optional[str] = None,
    ) -> None:
        """Forget one pair's start time, or every start time when called bare."""
        if agent_a is None or agent_b is None or room_id is None:
            self._last_start.clear()
            return
        self._last_start.pop(self.key(agent_a, agent_b, room_id), None)


# ============================================================================
# Conversation memory
# ============================================================================


@dataclass
class ConversationRecord:
    with_whom: str
    topic: Topic
    timestamp: datetime
    summary: str


@dataclass
class AgentConversationLog:
    last_spoke_to: Optional[str] = None
    history: List[ConversationRecord] = field(default_factory=list)


class ConversationMemory:
    """Rolling per-agent record of what each agent said and to whom."""

    def __init__(self, max_entries: int = 20) -> None:
        self.max_entries = max_entries
        self._logs: Dict[str, AgentConversationLog] = {}

    def get(self, agent_id: str) -> AgentConversationLog:
        return self._logs.setdefault(agent_id, AgentConversationLog())

    def record(
        self,
        agent_id: str,
        with_whom: str,
        topic: Topic,
        summary: str,
        timestamp: datetime,
    ) -> None:
        log = self.get(agent_id)
        log.last_spoke_to = with_whom
        log.history.append(ConversationRecord(with_whom, topic, timestamp, summary))
        if len(log.history) > self.max_entries:
            log.history = log.history[-self.max_entries:]

    def history(self, agent_id: str) -> List[ConversationRecord]:
        return list(self._logs[agent_id].history) if agent_id in self._logs else []

    def clear(self) -> None:
        self._logs.clear()


# ============================================================================
# Bus
# ============================================================================


class ConversationBus:
    """Threads, observation log and delayed auto-replies between speakers."""

    def __init__(
        self,
        cast: Optional[CastProfile] = None,
        presence: Optional[PresenceProvider] = None,
        text_generator: Optional[TextGenerator] = None,
        *,
        guard: Optional[ReplyGuard] = None,
        cooldowns: Optional[CooldownTracker] = None,
        memory: Optional[ConversationMemory] = None,
        max_exchanges: Optional[int] = None,
        max_reply_depth: Optional[int] = None,
        reply_delay_ms: Optional[Tuple[int, int]] = None,
        text_timeout_seconds: Optional[float] = None,
        overhear: bool = True,
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the bus with injected collaborators.

        Args:
            cast: Voices, reply tables and co-location rules (default_cast())
            presence: Room occupancy; co-located replies are dropped without it
            text_generator: Optional generator tried before template replies
            guard: Reply guard (global scope by default)
            cooldowns: Cooldown tracker used by initiate()
            memory: Per-agent conversation memory
            max_exchanges: Thread length cap (Config.MAX_THREAD_EXCHANGES)
            max_reply_depth: Auto-reply chain bound (Config.MAX_REPLY_DEPTH)
            reply_delay_ms: (min, max) pause before a reply, in milliseconds
            text_timeout_seconds: Ceiling for one generation attempt
            overhear: Default visibility of exchanges to the player
            rng: Random source for delays, template picks and tics
            clock: Timestamp source for exchanges
        """
        self.cast = cast or default_cast()
        self.presence = presence
        self.text_generator = text_generator
        self.guard = guard or ReplyGuard()
        self.cooldowns = cooldowns or CooldownTracker()
        self.memory = memory or ConversationMemory()
        self.max_exchanges = (
            Config.MAX_THREAD_EXCHANGES if max_exchanges is None else max_exchanges
        )
        if self.max_exchanges < 1:
            raise ValueError(f"max_exchanges must be at least 1, got {self.max_exchanges}")
        self.max_reply_depth = (
            Config.MAX_REPLY_DEPTH if max_reply_depth is None else max_reply_depth
        )
        self.reply_delay_ms = reply_delay_ms or (
            Config.REPLY_DELAY_MIN_MS,
            Config.REPLY_DELAY_MAX_MS,
        )
        self.text_timeout_seconds = text_timeout_seconds
        self.overhear = overhear
        self.rng = rng or random.Random()
        self.clock = clock

        self._threads: Dict[str, ConversationThread] = {}
        self.observation_log: List[str] = []
        self.observation_listeners: List[Callable[[str], None]] = []
        self.pending_replies: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(
        self,
        sender: Speaker,
        recipient: Speaker,
        text: str,
        room_id: str,
        options: Optional[SendOptions] = None,
        *,
        depth: int = 0,
    ) -> ConversationExchange:
        """Append an exchange and, for agent recipients, schedule a reply.

        Plain strings are treated as agent ids.
        """
        sender = _as_speaker(sender)
        recipient = _as_speaker(recipient)
        options = options or SendOptions()

        tid = thread_id(room_id, sender.id, recipient.id)
        thread = self._threads.get(tid)
        if thread is None:
            thread = ConversationThread(
                id=tid,
                room_id=room_id,
                participants=(sender.id, recipient.id),
                priority=options.priority or Priority.NORMAL,
            )
            self._threads[tid] = thread

        exchange = ConversationExchange(
            sender=sender,
            receiver=recipient,
            text=text,
            timestamp=self.clock(),
            topic=options.topic,
            visible_to_player=(
                self.overhear if options.visible_to_player is None else options.visible_to_player
            ),
        )
        thread.exchanges.append(exchange)
        thread.last_timestamp = exchange.timestamp
        if len(thread.exchanges) > self.max_exchanges:
            thread.exchanges = thread.exchanges[-self.max_exchanges:]

        if exchange.visible_to_player and sender.is_agent and recipient.is_agent:
            self._observe(f"[{sender.id} → {recipient.id}] {text}")

        if sender.is_agent:
            self.memory.record(
                sender.id,
                recipient.id,
                options.topic or Topic.BANTER,
                text,
                exchange.timestamp,
            )

        if recipient.is_agent:
            if depth < self.max_reply_depth:
                self._schedule_reply(sender, recipient, room_id, options.topic, depth)
            else:
                log_deterministic(
                    f"[Conversation] Reply depth {depth} reached, {recipient.id} stays quiet"
                )

        return exchange

    def initiate(
        self,
        sender_id: str,
        recipient_id: str,
        text: str,
        room_id: str,
        *,
        cooldown_seconds: Optional[float] = None,
    ) -> Optional[ConversationExchange]:
        """Start agent banter unless the pair is still cooling down in this room."""
        if not self.cooldowns.can_start(sender_id, recipient_id, room_id, cooldown_seconds):
            remaining = self.cooldowns.remaining(sender_id, recipient_id, room_id, cooldown_seconds)
            log_deterministic(
                f"[Conversation] {sender_id} + {recipient_id} cooling down in {room_id} "
                f"({remaining:.0f}s left)"
            )
            return None

        exchange = self.send(
            SpeakerRef.agent(sender_id),
            SpeakerRef.agent(recipient_id),
            text,
            room_id,
            SendOptions(topic=infer_topic(text)),
        )
        self.cooldowns.record_start(sender_id, recipient_id, room_id)
        return exchange

    def whisper(
        self,
        sender: Speaker,
        recipient: Speaker,
        text: str,
        room_id: str,
        topic: Optional[Topic] = None,
    ) -> ConversationExchange:
        """Send an exchange the player never sees, on a low-priority thread."""
        return self.send(
            sender,
            recipient,
            text,
            room_id,
            SendOptions(topic=topic, visible_to_player=False, priority=Priority.LOW),
        )

    def add_observation_listener(self, listener: Callable[[str], None]) -> None:
        self.observation_listeners.append(listener)

    def _observe(self, line: str) -> None:
        self.observation_log.append(line)
        for listener in self.observation_listeners:
            try:
                listener(line)
            except Exception as exc:
                log_error(f"[Conversation] Observation listener failed: {exc}")

    # ------------------------------------------------------------------
    # Replies
    # ------------------------------------------------------------------

    def _schedule_reply(
        self,
        sender: SpeakerRef,
        recipient: SpeakerRef,
        room_id: str,
        topic: Optional[Topic],
        depth: int,
    ) -> None:
        key = pair_key(sender.id, recipient.id)
        token = self.guard.try_acquire(key)
        if token is None:
            log_deterministic(
                f"[Conversation] Reply already in flight, {recipient.id} will not answer {sender.id}"
            )
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.guard.release(key, token)
            log_info(f"[Conversation] No running event loop, dropping reply from {recipient.id}")
            return

        task = loop.create_task(
            self._reply(sender, recipient, room_id, topic, depth, key, token)
        )
        self.pending_replies.add(task)
        # A task cancelled before its first step never reaches _reply's finally
        task.add_done_callback(functools.partial(self._reply_done, key, token))

    async def _reply(
        self,
        original_sender: SpeakerRef,
        replier: SpeakerRef,
        room_id: str,
        topic: Optional[Topic],
        depth: int,
        guard_key: str,
        guard_token: object,
    ) -> None:
        try:
            text = await self._compose_reply(original_sender, replier, room_id, topic)
        finally:
            self.guard.release(guard_key, guard_token)

        if text is None:
            return

        self.send(
            replier,
            original_sender,
            text,
            room_id,
            SendOptions(topic=topic, visible_to_player=self.overhear),
            depth=depth + 1,
        )

    async def _compose_reply(
        self,
        original_sender: SpeakerRef,
        replier: SpeakerRef,
        room_id: str,
        topic: Optional[Topic],
    ) -> Optional[str]:
        low, high = self.reply_delay_ms
        delay_ms = self.rng.uniform(low, high) if high > low else low
        await asyncio.sleep(delay_ms / 1000.0)

        if self.cast.requires_co_location(original_sender.id, replier.id):
            present = self.presence.agents_in_room(room_id) if self.presence else set()
            if original_sender.id not in present or replier.id not in present:
                log_deterministic(
                    f"[Conversation] {replier.id} and {original_sender.id} not both in "
                    f"{room_id}, reply dropped"
                )
                return None

        prompt = build_reply_prompt(original_sender.id, topic)
        world_state = dict(self.presence.snapshot()) if self.presence else {}
        world_state["room_id"] = room_id

        text = await generate_with_timeout(
            self.text_generator,
            replier.id,
            prompt,
            world_state,
            timeout_seconds=self.text_timeout_seconds,
        )
        if text is None:
            text = self.cast.template_reply(replier.id, original_sender.id, topic, self.rng)

        return stylize(text, self.cast.voice_for(replier.id), self.rng)

    def _reply_done(self, guard_key: str, guard_token: object, task: asyncio.Task) -> None:
        self.pending_replies.discard(task)
        self.guard.release(guard_key, guard_token)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log_error(f"[Conversation] Reply failed: {exc!r}")

    async def drain(self) -> None:
        """Wait until no replies are pending, including replies to replies."""
        while self.pending_replies:
            await asyncio.gather(*list(self.pending_replies), return_exceptions=True)

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    @property
    def threads(self) -> List[ConversationThread]:
        return list(self._threads.values())

    def get_thread(self, room_id: str, speaker_a: str, speaker_b: str) -> Optional[ConversationThread]:
        return self._threads.get(thread_id(room_id, speaker_a, speaker_b))

    def is_thread_at_limit(self, thread: ConversationThread) -> bool:
        return len(thread.exchanges) >= self.max_exchanges

    def clear_thread(self, room_id: str, speaker_a: str, speaker_b: str) -> bool:
        return self._threads.pop(thread_id(room_id, speaker_a, speaker_b), None) is not None

    def clear(self) -> None:
        """Drop every thread and the observation log."""
        self._threads.clear()
        self.observation_log.clear()


def _as_speaker(speaker: Speaker) -> SpeakerRef:
    if isinstance(speaker, SpeakerRef):
        return speaker
    return SpeakerRef.agent(speaker)
