# pingstats/brain/scheduler.py
from ipaddress import IPv4Address
from typing import Callable, Optional

from loguru import logger

from pingstats.brain.discovery import RouteDiscovery
from pingstats.brain.state import EchoRequest, ProbeSlot
from pingstats.config import Settings, TargetSettings
from pingstats.prober.base import PendingEcho, Prober
from pingstats.prober.flag import CancelFlag
from pingstats.schemas import EchoResult, Phase

ResultHandler = Callable[[EchoResult, Phase], None]


class SlotPool:
    """Fixed number of slots, O(1) acquire/release via a free list. Indices stay put while occupied."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("slot pool needs at least one slot")
        self.capacity = capacity
        self._slots: list[Optional[ProbeSlot]] = [None] * capacity
        self._free = list(range(capacity - 1, -1, -1))

    def __len__(self) -> int:
        return self.capacity - len(self._free)

    @property
    def full(self) -> bool:
        return not self._free

    def acquire(self, slot: ProbeSlot) -> int:
        if not self._free:
            raise RuntimeError("no free probe slot")
        i = self._free.pop()
        self._slots[i] = slot
        return i

    def release(self, index: int) -> ProbeSlot:
        slot = self._slots[index]
        if slot is None:
            raise KeyError(f"slot {index} is not occupied")
        self._slots[index] = None
        self._free.append(index)
        return slot

    def occupied(self) -> list[tuple[int, ProbeSlot]]:
        return [(i, s) for i, s in enumerate(self._slots) if s is not None]


class ProbeScheduler:
    """
    Single-threaded owner of one target's in-flight echoes. Launches probes on
    a fixed cadence while slots are free, and sleeps only inside one
    multiplexed wait over every in-flight echo plus the cancel flag.
    """

    def __init__(self, prober: Prober, settings: Settings, target: TargetSettings,
                 cancel: CancelFlag, on_result: ResultHandler, tag: str = ""):
        self.prober = prober
        self.s = settings
        self.t = target
        self.cancel = cancel
        self.on_result = on_result
        self.tag = tag or target.tag
        self.source = target.source_address()

        capacity = min(settings.max_in_flight, prober.wait_limit - 1)
        if not target.async_mode:
            capacity = 1
        self.pool = SlotPool(capacity)
        self.interval = target.interval_ms / 1000.0
        self.slack = settings.send_slack_ms / 1000.0
        self.probes_sent = 0

    def run(self, discovery: RouteDiscovery) -> Optional[IPv4Address]:
        """
        Discover (if needed), then probe until cancelled. Returns the probed
        target, or None if cancelled during discovery. DiscoveryFailure propagates.
        """
        try:
            if not self._discover(discovery):
                return None
            self._probe(discovery.target)
            return discovery.target
        finally:
            self._abandon_all()

    # -------------------------------
    # launching / completing
    # -------------------------------

    def _launch(self, request: EchoRequest, phase: Phase,
                deliver: Optional[Callable[[EchoResult], None]] = None) -> None:
        echo = self.prober.send_echo(request.target, self.source, self.t.timeout_ms, request.hop_limit)
        self.probes_sent += 1

        if isinstance(echo, EchoResult):
            # failed at send time: no slot taken
            self._dispatch(echo, phase, deliver)
            return

        expires_at = echo.sent_time + (self.t.timeout_ms + self.s.expiry_grace_ms) / 1000.0
        self.pool.acquire(ProbeSlot(echo, phase, expires_at))

    def _complete(self, index: int, reply_time: float,
                  deliver: Optional[Callable[[EchoResult], None]] = None) -> None:
        slot = self.pool.release(index)
        result = self.prober.resolve_echo(slot.pending, reply_time)
        self._dispatch(result, slot.phase, deliver if slot.phase == "trace" else None)

    def _dispatch(self, result: EchoResult, phase: Phase,
                  deliver: Optional[Callable[[EchoResult], None]]) -> None:
        self.on_result(result, phase)
        if deliver is not None:
            deliver(result)

    def _wait(self, deadline: Optional[float]) -> Optional[tuple[int, float]]:
        """One blocking wait. Returns (slot index, reply time) or None."""
        occupied = self.pool.occupied()
        pending: list[PendingEcho] = [slot.pending for _, slot in occupied]

        now = self.prober.now()
        if occupied:
            earliest = min(slot.expires_at for _, slot in occupied)
            deadline = earliest if deadline is None else min(deadline, earliest)
        timeout = None if deadline is None else max(0.0, deadline - now)

        ready = self.prober.wait_any(pending, self.cancel, timeout)
        if ready is None:
            return None
        return occupied[ready][0], self.prober.now()

    def _reap_expired(self, deliver=None) -> None:
        now = self.prober.now()
        for index, slot in self.pool.occupied():
            if now >= slot.expires_at:
                logger.debug(f"{self.tag}: reaping expired echo to {slot.pending.target}")
                self._complete(index, now, deliver)

    def _abandon_all(self) -> None:
        for index, _ in self.pool.occupied():
            slot = self.pool.release(index)
            self.prober.abandon(slot.pending)

    # -------------------------------
    # phases
    # -------------------------------

    def _discover(self, discovery: RouteDiscovery) -> bool:
        deliver = discovery.deliver

        def launch(request: EchoRequest) -> None:
            self._launch(request, "trace", deliver)

        deadline = self.prober.now()

        while True:
            now = self.prober.now()
            if now >= deadline or not discovery.awaiting:
                deadline = discovery.tick(now, launch)
            if discovery.resolved:
                return True

            done = self._wait(deadline)
            if self.cancel.is_set():
                logger.info(f"{self.tag}: cancelled during discovery")
                return False
            if done is not None:
                self._complete(*done, deliver)
            self._reap_expired(deliver)

    def _probe(self, target: IPv4Address) -> None:
        request = EchoRequest(target, self.s.steady_hop_limit, "ping")
        next_send = self.prober.now()
        logger.info(f"{self.tag}: probing {target} every {self.t.interval_ms} ms "
                    f"({self.pool.capacity} in flight max)")

        while not self.cancel.is_set():
            now = self.prober.now()
            if now + self.slack >= next_send and not self.pool.full:
                self._launch(request, "ping")
                # skip missed sends instead of bursting to catch up
                while next_send <= now + self.slack:
                    next_send += self.interval

            # table full: only a completion (or an expiry) can make progress
            deadline = None if self.pool.full else next_send
            done = self._wait(deadline)
            if self.cancel.is_set():
                return
            if done is not None:
                self._complete(*done)
                if not self.t.async_mode:
                    next_send = max(next_send, done[1] + self.interval)
            self._reap_expired()
