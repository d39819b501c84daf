# pingstats/prober/fake.py
from collections import deque
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Optional

from pingstats.prober.base import PendingEcho, Prober, failed_send, reply_result
from pingstats.schemas import ReplyType


@dataclass
class FakeReply:
    status: ReplyType = "success"
    responder: Optional[str] = None     # defaults to the echo's target
    delay_ms: Optional[float] = 10.0    # None: never answers, completes at its timeout
    send_error: bool = False            # fail synchronously, nothing goes in flight
    detail: str = ""


@dataclass
class _Scripted:
    reply: FakeReply
    done_at: float


class FakeProber(Prober):
    """
    script: dict[(target, hop_limit)] -> list of FakeReply returned one per echo.
    When a key runs dry `default` is used; without a default the echo times out.

    Time is virtual: wait_any() jumps the clock straight to the next completion
    (or to the end of the wait), so scheduler timing is exact and instant.
    """

    def __init__(self, script=None, default: Optional[FakeReply] = None, start: float = 0.0):
        self.script = {}
        if script:
            for (target, hop_limit), replies in script.items():
                self.script[(str(target), hop_limit)] = deque(replies)
        self.default = default
        self.clock = start
        self.sent: list[tuple[float, str, int]] = []

    def now(self) -> float:
        return self.clock

    def advance(self, seconds: float) -> None:
        self.clock += seconds

    def _next_reply(self, target: IPv4Address, hop_limit: int) -> FakeReply:
        dq = self.script.get((str(target), hop_limit))
        if dq:
            return dq.popleft()
        if self.default is not None:
            return self.default
        return FakeReply(status="timed_out", delay_ms=None)

    def send_echo(self, target, source, timeout_ms, hop_limit):
        sent_time = self.clock
        self.sent.append((sent_time, str(target), hop_limit))
        reply = self._next_reply(target, hop_limit)

        if reply.send_error:
            return failed_send(target, hop_limit, sent_time, reply.detail or "scripted send failure")

        delay_ms = timeout_ms if reply.delay_ms is None else reply.delay_ms
        return PendingEcho(
            target=target,
            source=source,
            hop_limit=hop_limit,
            timeout_ms=timeout_ms,
            sent_time=sent_time,
            handle=_Scripted(reply, sent_time + delay_ms / 1000.0),
        )

    def resolve_echo(self, pending, reply_time):
        reply = pending.handle.reply
        latency_ms = (reply_time - pending.sent_time) * 1000.0
        answered = reply.delay_ms is not None and reply.status != "timed_out"
        responder = IPv4Address(reply.responder) if reply.responder else pending.target
        return reply_result(
            pending,
            latency_ms=latency_ms,
            replies=1 if answered else 0,
            status=reply.status,
            responder=responder,
            system_latency_ms=int(latency_ms),
            detail=reply.detail,
        )

    def wait_any(self, pending, cancel, timeout):
        if cancel.is_set():
            return None

        limit = None if timeout is None else self.clock + max(0.0, timeout)
        if not pending:
            if limit is None:
                raise RuntimeError("FakeProber.wait_any would block forever")
            self.clock = limit
            return None

        i = min(range(len(pending)), key=lambda k: pending[k].handle.done_at)
        done_at = pending[i].handle.done_at
        if limit is None or done_at <= limit:
            self.clock = max(self.clock, done_at)
            return i
        self.clock = limit
        return None
