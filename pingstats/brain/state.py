# pingstats/brain/state.py
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Literal, Optional, Union

from pingstats.prober.base import PendingEcho
from pingstats.schemas import EchoResult, Phase


# --- route discovery: exactly one of these is active per target ---

@dataclass(frozen=True)
class SearchingFirstPublicHop:
    hop_limit: int = 0
    tries: int = 0


@dataclass(frozen=True)
class SearchingHopCountToHost:
    hop_limit: int = 0
    tries: int = 0


@dataclass(frozen=True)
class SteadyProbing:
    resolved_target: IPv4Address
    hops: int = 0        # hop-limit at which discovery resolved (informational)


DiscoveryState = Union[SearchingFirstPublicHop, SearchingHopCountToHost, SteadyProbing]


@dataclass(frozen=True)
class EchoRequest:
    target: IPv4Address
    hop_limit: int
    purpose: Literal["hop", "confirm", "ping"] = "hop"


# --- scheduler ---

@dataclass
class ProbeSlot:
    pending: PendingEcho
    phase: Phase
    expires_at: float     # sent + timeout + grace; reaped as timed out after this


# --- statistics ---

@dataclass
class Sample:
    sent_time: float
    roundtrip_time: float
    roundtrip_time_mean: float
    roundtrip_time_jitter: float
    loss_percentage: float
    result: Optional[EchoResult] = None

    @property
    def is_lost(self) -> bool:
        return self.result is not None and self.result.is_lost
