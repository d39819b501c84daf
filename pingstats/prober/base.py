# pingstats/prober/base.py
import selectors
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Any, Optional, Sequence

from pingstats.prober.flag import CancelFlag
from pingstats.schemas import NO_RESPONDER, EchoResult, ReplyType

# Most handles a single multiplexed wait may watch, cancel flag included.
DEFAULT_WAIT_LIMIT = 64


@dataclass
class PendingEcho:
    target: IPv4Address
    source: Optional[IPv4Address]
    hop_limit: int
    timeout_ms: int
    sent_time: float
    handle: Any = None      # backend specific (process, script entry, ...)
    signal: Any = None      # anything with fileno(); readable once the echo completed


def failed_send(target: IPv4Address, hop_limit: int, sent_time: float, detail: str) -> EchoResult:
    """Result for an echo that never left the host."""
    return EchoResult(
        sent_time=sent_time,
        latency_ms=0.0,
        status="other",
        responder=NO_RESPONDER,
        error="send_failed",
        target=target,
        hop_limit=hop_limit,
        detail=detail,
    )


def reply_result(pending: PendingEcho, latency_ms: float, replies: int, status: ReplyType,
                 responder: IPv4Address, system_latency_ms: int = 0, detail: str = "") -> EchoResult:
    """
    Build the result for a completed echo. Reply fields are only trusted when
    at least one reply arrived in time; anything else is a timeout.
    """
    if replies < 1 or latency_ms >= pending.timeout_ms:
        return EchoResult(
            sent_time=pending.sent_time,
            latency_ms=latency_ms,
            status="timed_out",
            target=pending.target,
            hop_limit=pending.hop_limit,
        )
    return EchoResult(
        sent_time=pending.sent_time,
        latency_ms=latency_ms,
        status=status,
        responder=responder,
        system_latency_ms=system_latency_ms,
        target=pending.target,
        hop_limit=pending.hop_limit,
        detail=detail,
    )


class Prober(ABC):
    wait_limit: int = DEFAULT_WAIT_LIMIT

    @abstractmethod
    def send_echo(self, target: IPv4Address, source: Optional[IPv4Address],
                  timeout_ms: int, hop_limit: int) -> PendingEcho | EchoResult:
        """Start one echo. Returns a PendingEcho, or an EchoResult if the send failed on the spot."""
        raise NotImplementedError

    @abstractmethod
    def resolve_echo(self, pending: PendingEcho, reply_time: float) -> EchoResult:
        """Turn a completed (or expired) PendingEcho into an EchoResult and release it."""
        raise NotImplementedError

    def abandon(self, pending: PendingEcho) -> None:
        """Drop a pending echo without looking at its outcome."""

    def now(self) -> float:
        return time.monotonic()

    def wait_any(self, pending: Sequence[PendingEcho], cancel: CancelFlag,
                 timeout: Optional[float]) -> Optional[int]:
        """
        Block until one of the pending echoes completes, the cancel flag is
        set, or the timeout passes. Returns the index of a completed echo, or
        None for timeout/cancel (check cancel.is_set() to tell them apart).
        """
        if cancel.is_set():
            return None
        if timeout is not None:
            timeout = max(0.0, timeout)

        with selectors.DefaultSelector() as sel:
            sel.register(cancel, selectors.EVENT_READ, -1)
            for i, p in enumerate(pending):
                sel.register(p.signal, selectors.EVENT_READ, i)
            events = sel.select(timeout)

        ready = sorted(key.data for key, _ in events)
        if not ready or ready[0] == -1:
            return None
        return ready[0]
