# pingstats/brain/discovery.py
from dataclasses import dataclass, replace
from ipaddress import IPv4Address
from typing import Callable, Literal, Optional

from loguru import logger

from pingstats.brain.rules import clean_reply, hop_expired
from pingstats.brain.state import (
    DiscoveryState,
    EchoRequest,
    SearchingFirstPublicHop,
    SearchingHopCountToHost,
    SteadyProbing,
)
from pingstats.config import Settings
from pingstats.errors import ConfigError, DiscoveryFailure
from pingstats.prober.address import is_public, resolve_host
from pingstats.schemas import NO_RESPONDER, EchoResult

TRACE_KINDS = {"public4": "public", "private4": "private", "full": "host"}


@dataclass(frozen=True)
class TargetSpec:
    mode: Literal["public", "private", "host"]
    probe_target: IPv4Address


def parse_target_spec(text: str, settings: Settings) -> TargetSpec:
    """
    "auto4" / "auto6"                       -> first public hop towards the well-known target
    "trace <public4|private4|full> <host>"  -> first public / last private hop, or the host itself
    "<host>"                                -> the host itself
    """
    words = text.split()
    if not words:
        raise ConfigError("empty target specification")

    if words[0] in ("auto4", "auto6") and len(words) == 1:
        if words[0] == "auto6":
            logger.warning("auto6 is not supported, searching an IPv4 route like auto4")
        return TargetSpec("public", IPv4Address(settings.well_known_target))

    if words[0] == "trace":
        if len(words) != 3 or words[1] not in TRACE_KINDS:
            raise ConfigError(f"expected 'trace <public4|private4|full> <host>', got {text!r}")
        return TargetSpec(TRACE_KINDS[words[1]], resolve_host(words[2]))

    if len(words) != 1:
        raise ConfigError(f"unrecognised target specification {text!r}")
    return TargetSpec("host", resolve_host(words[0]))


class RouteDiscovery:
    """
    Resolves a TargetSpec into a concrete probe target, one hop-limited echo at
    a time. Never blocks: the scheduler launches the requested echoes, waits
    for them along with everything else, and hands results back via deliver().
    """

    def __init__(self, spec: TargetSpec, settings: Settings, tag: str = ""):
        self.spec = spec
        self.s = settings
        self.tag = tag or str(spec.probe_target)
        self.state: DiscoveryState = (
            SearchingHopCountToHost() if spec.mode == "host" else SearchingFirstPublicHop()
        )
        self.status = "Initializing..."
        self.best_private: Optional[IPv4Address] = None
        self.failure: Optional[DiscoveryFailure] = None

        self._in_flight: Optional[EchoRequest] = None
        self._outcome: Optional[EchoResult] = None
        self._confirm: Optional[IPv4Address] = None
        self._next_send = float("-inf")

    @classmethod
    def resolved_to(cls, target: IPv4Address, settings: Settings, tag: str = "") -> "RouteDiscovery":
        """A discovery that starts out finished (steady probing of a known target)."""
        d = cls(TargetSpec("host", target), settings, tag)
        d.state = SteadyProbing(target, settings.steady_hop_limit)
        return d

    @property
    def resolved(self) -> bool:
        return isinstance(self.state, SteadyProbing)

    @property
    def target(self) -> Optional[IPv4Address]:
        return self.state.resolved_target if isinstance(self.state, SteadyProbing) else None

    @property
    def awaiting(self) -> bool:
        return self._in_flight is not None and self._outcome is None

    def deliver(self, result: EchoResult) -> None:
        if self._in_flight is None:
            logger.warning(f"{self.tag}: discovery got a result it did not ask for, ignored")
            return
        self._outcome = result

    def tick(self, now: float, launch: Callable[[EchoRequest], None]) -> float:
        """Consume the last outcome, maybe launch one echo, return when to tick again."""
        if self.failure is not None:
            raise self.failure

        if self._outcome is not None:
            request, result = self._in_flight, self._outcome
            self._in_flight = self._outcome = None
            self._consume(request, result, now)

        if self.resolved:
            return now
        if self._in_flight is not None:
            return now + self.s.discovery_poll_ms / 1000.0
        if now < self._next_send:
            return self._next_send

        request = self._next_request()
        self._in_flight = request
        launch(request)
        if self._outcome is not None:
            # failed on the spot; look at it right away
            return now
        return now + self.s.discovery_poll_ms / 1000.0

    # -------------------------------
    # transitions
    # -------------------------------

    def _next_request(self) -> EchoRequest:
        if self._confirm is not None:
            return EchoRequest(self._confirm, self.s.confirm_hop_limit, "confirm")
        return EchoRequest(self.spec.probe_target, self.state.hop_limit, "hop")

    def _consume(self, request: EchoRequest, result: EchoResult, now: float) -> None:
        if request.purpose == "confirm":
            self._consume_confirm(request, result, now)
        elif isinstance(self.state, SearchingFirstPublicHop):
            self._consume_public(self.state, result, now)
        else:
            self._consume_hop_count(self.state, result, now)

    def _consume_confirm(self, request: EchoRequest, result: EchoResult, now: float) -> None:
        self._confirm = None
        if clean_reply(result):
            # most recent confirmation wins
            self.best_private = request.target
            self._set_status(f"Private node {request.target} confirmed with hops = {self.state.hop_limit}.")
        else:
            self._set_status(f"Private node {request.target} did not answer. ({result.describe()})")
        self._advance(now)

    def _consume_public(self, state: SearchingFirstPublicHop, result: EchoResult, now: float) -> None:
        hops = state.hop_limit

        if clean_reply(result):
            self._resolve(result.responder, hops, f"Found target node {result.responder} with hops = {hops}.")
            return

        if hop_expired(result) and result.responder != NO_RESPONDER:
            self.state = replace(state, tries=0)
            if not is_public(result.responder):
                self._set_status(f"Node {result.responder} with hops = {hops} not public, confirming.")
                self._confirm = result.responder
                self._next_send = now + self.s.confirm_gap_ms / 1000.0
            elif self.spec.mode == "public":
                self._resolve(result.responder, hops, f"Found first public node {result.responder} with hops = {hops}.")
            elif self.best_private is not None:
                self._resolve(self.best_private, hops, f"Found last private node {self.best_private} before hops = {hops}.")
            else:
                raise self._fail(f"No private node answered before public node {result.responder}.", hops)
            return

        self._failed_try(state, result, now)

    def _consume_hop_count(self, state: SearchingHopCountToHost, result: EchoResult, now: float) -> None:
        hops = state.hop_limit

        if result.error is None and result.responder == self.spec.probe_target:
            self._resolve(result.responder, hops, f"Response from target node with hops = {hops}.")
        elif hop_expired(result):
            self._set_status(f"Response from {result.responder} with hops = {hops}: {result.describe()}")
            self._advance(now)
        else:
            self._failed_try(state, result, now)

    def _failed_try(self, state, result: EchoResult, now: float) -> None:
        tries = state.tries + 1
        self._set_status(f"{result.describe()} with hops = {state.hop_limit}.")
        if tries >= self.s.max_tries:
            self._advance(now)
        else:
            self.state = replace(state, tries=tries)
            self._next_send = now + self.s.hop_gap_ms / 1000.0

    def _advance(self, now: float) -> None:
        hops = self.state.hop_limit + 1
        if hops > self.s.max_hop_limit:
            raise self._fail(f"No route found within {self.s.max_hop_limit} hops.", self.state.hop_limit)
        self.state = type(self.state)(hop_limit=hops, tries=0)
        self._next_send = now + self.s.hop_gap_ms / 1000.0

    def _resolve(self, target: IPv4Address, hops: int, message: str) -> None:
        self.state = SteadyProbing(target, hops)
        self._set_status(message)

    def _fail(self, reason: str, hop_limit: int) -> DiscoveryFailure:
        self.failure = DiscoveryFailure(reason, hop_limit)
        self.status = f"Discovery failed: {reason}"
        logger.error(f"{self.tag}: {self.status}")
        return self.failure

    def _set_status(self, text: str) -> None:
        self.status = text
        logger.info(f"{self.tag}: {text}")
