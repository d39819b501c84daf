# pingstats/schemas.py
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Literal, Optional

ReplyType = Literal["success", "ttl_exceeded", "timed_out", "unreachable", "other"]
ErrorKind = Literal["send_failed", "bad_reply"]
Phase = Literal["trace", "ping"]

NO_RESPONDER = IPv4Address("0.0.0.0")

STATUS_TEXT = {
    "success": "Success",
    "ttl_exceeded": "TTL expired in transit",
    "timed_out": "Request timed out",
    "unreachable": "Destination unreachable",
    "other": "General failure",
}


@dataclass(frozen=True)
class EchoResult:
    sent_time: float                    # monotonic seconds
    latency_ms: float
    status: ReplyType
    responder: IPv4Address = NO_RESPONDER
    error: Optional[ErrorKind] = None   # transport-level failure, None if the send went out
    system_latency_ms: int = 0          # informational only
    target: Optional[IPv4Address] = None
    hop_limit: int = 0
    detail: str = ""

    @property
    def is_lost(self) -> bool:
        return self.error is not None or self.status != "success"

    def describe(self) -> str:
        text = self.detail or STATUS_TEXT[self.status]
        return f"({self.error or 'none'}, {self.status}) {text}"
