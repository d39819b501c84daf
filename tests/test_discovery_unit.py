# tests/test_discovery_unit.py
import socket
from ipaddress import IPv4Address

import pytest

from pingstats.brain.discovery import RouteDiscovery, TargetSpec, parse_target_spec
from pingstats.brain.state import SearchingFirstPublicHop, SearchingHopCountToHost, SteadyProbing
from pingstats.config import Settings
from pingstats.errors import ConfigError, DiscoveryFailure
from pingstats.schemas import EchoResult

HOST = IPv4Address("192.0.2.10")


def reply(status, responder="0.0.0.0", error=None):
    return EchoResult(sent_time=0.0, latency_ms=5.0, status=status,
                      responder=IPv4Address(responder), error=error)


class Driver:
    """Plays the scheduler's part: launch what discovery asks for, feed back a result."""

    def __init__(self, discovery):
        self.d = discovery
        self.now = 0.0
        self.requests = []

    def answer(self, result):
        self.now += 1.0   # well past any send gap
        launched = []
        self.d.tick(self.now, launched.append)
        assert len(launched) == 1, "discovery should have launched exactly one echo"
        self.requests.append(launched[0])
        self.d.deliver(result)
        self.d.tick(self.now, launched.append)
        assert len(launched) == 1, "nothing new may go out before the send gap"
        return launched[0]


def test_parse_target_specs():
    s = Settings()
    assert parse_target_spec("auto4", s) == TargetSpec("public", IPv4Address("8.8.8.8"))
    assert parse_target_spec("auto6", s) == TargetSpec("public", IPv4Address("8.8.8.8"))
    assert parse_target_spec("trace public4 1.2.3.4", s) == TargetSpec("public", IPv4Address("1.2.3.4"))
    assert parse_target_spec("trace private4 1.2.3.4", s) == TargetSpec("private", IPv4Address("1.2.3.4"))
    assert parse_target_spec("trace full 1.2.3.4", s) == TargetSpec("host", IPv4Address("1.2.3.4"))
    assert parse_target_spec(" 192.0.2.10 ", s) == TargetSpec("host", HOST)


@pytest.mark.parametrize("text", ["", "trace", "trace sideways 1.2.3.4", "trace full", "1.2.3.4 5.6.7.8"])
def test_parse_target_spec_rejects(text):
    with pytest.raises(ConfigError):
        parse_target_spec(text, Settings())


def test_unresolvable_host_is_config_error(monkeypatch):
    def boom(name):
        raise socket.gaierror(-2, "Name or service not known")

    monkeypatch.setattr(socket, "gethostbyname", boom)
    with pytest.raises(ConfigError):
        parse_target_spec("no-such-host.example", Settings())


def test_auto4_resolves_to_first_public_hop():
    """Three private hops (each confirmation times out), then a public one at hop-limit 3."""
    d = RouteDiscovery(parse_target_spec("auto4", Settings()), Settings())
    drv = Driver(d)

    drv.answer(reply("ttl_exceeded", "10.0.0.1"))
    drv.answer(reply("timed_out"))                        # confirmation
    drv.answer(reply("ttl_exceeded", "192.168.0.1"))
    drv.answer(reply("timed_out"))
    drv.answer(reply("ttl_exceeded", "172.16.5.1"))
    drv.answer(reply("timed_out"))
    drv.answer(reply("ttl_exceeded", "203.0.113.9"))

    assert d.state == SteadyProbing(IPv4Address("203.0.113.9"), 3)
    assert d.resolved
    assert d.target == IPv4Address("203.0.113.9")
    hop_probes = [r for r in drv.requests if r.purpose == "hop"]
    assert [r.hop_limit for r in hop_probes] == [0, 1, 2, 3]
    assert all(r.target == IPv4Address("8.8.8.8") for r in hop_probes)
    confirms = [r for r in drv.requests if r.purpose == "confirm"]
    assert [str(r.target) for r in confirms] == ["10.0.0.1", "192.168.0.1", "172.16.5.1"]
    assert all(r.hop_limit == 128 for r in confirms)


def test_reaching_probe_target_resolves():
    d = RouteDiscovery(parse_target_spec("auto4", Settings()), Settings())
    Driver(d).answer(reply("success", "8.8.8.8"))
    assert d.target == IPv4Address("8.8.8.8")


def test_private4_keeps_most_recent_confirmed_hop():
    d = RouteDiscovery(TargetSpec("private", HOST), Settings())
    drv = Driver(d)

    drv.answer(reply("ttl_exceeded", "192.168.1.1"))
    drv.answer(reply("success", "192.168.1.1"))
    drv.answer(reply("ttl_exceeded", "10.20.0.1"))
    drv.answer(reply("success", "10.20.0.1"))
    drv.answer(reply("ttl_exceeded", "10.30.0.1"))
    drv.answer(reply("timed_out"))                        # not confirmed, not kept
    drv.answer(reply("ttl_exceeded", "198.51.100.1"))

    assert d.target == IPv4Address("10.20.0.1")
    assert d.best_private == IPv4Address("10.20.0.1")


def test_private4_without_confirmed_hop_fails():
    d = RouteDiscovery(TargetSpec("private", HOST), Settings())
    drv = Driver(d)
    with pytest.raises(DiscoveryFailure):
        drv.answer(reply("ttl_exceeded", "198.51.100.1"))
    assert d.status.startswith("Discovery failed")
    with pytest.raises(DiscoveryFailure):
        d.tick(10.0, lambda r: None)


def test_four_failures_advance_hop_limit():
    d = RouteDiscovery(TargetSpec("public", IPv4Address("8.8.8.8")), Settings())
    drv = Driver(d)

    for tries in range(1, 4):
        drv.answer(reply("timed_out"))
        assert d.state == SearchingFirstPublicHop(hop_limit=0, tries=tries)
    drv.answer(reply("other", error="send_failed"))
    assert d.state == SearchingFirstPublicHop(hop_limit=1, tries=0)
    assert [r.hop_limit for r in drv.requests] == [0, 0, 0, 0]


def test_success_resets_tries():
    d = RouteDiscovery(TargetSpec("host", HOST), Settings())
    drv = Driver(d)
    drv.answer(reply("timed_out"))
    drv.answer(reply("timed_out"))
    drv.answer(reply("ttl_exceeded", "10.0.0.1"))
    assert d.state == SearchingHopCountToHost(hop_limit=1, tries=0)


def test_hop_count_to_host():
    d = RouteDiscovery(parse_target_spec("192.0.2.10", Settings()), Settings())
    drv = Driver(d)
    drv.answer(reply("ttl_exceeded", "10.0.0.1"))
    drv.answer(reply("ttl_exceeded", "198.51.100.1"))     # public, but we want the host
    drv.answer(reply("success", "192.0.2.10"))
    assert d.state == SteadyProbing(HOST, 2)
    assert [r.hop_limit for r in drv.requests] == [0, 1, 2]
    assert all(r.purpose == "hop" for r in drv.requests)


def test_hop_limit_never_leaves_range():
    d = RouteDiscovery(TargetSpec("host", HOST), Settings())
    drv = Driver(d)
    with pytest.raises(DiscoveryFailure) as exc:
        for _ in range(200):
            drv.answer(reply("ttl_exceeded", "10.0.0.1"))
    assert max(r.hop_limit for r in drv.requests) == 128
    assert min(r.hop_limit for r in drv.requests) == 0
    assert exc.value.hop_limit == 128


def test_small_hop_range_with_only_timeouts():
    s = Settings(max_hop_limit=2, max_tries=2)
    d = RouteDiscovery(TargetSpec("public", IPv4Address("8.8.8.8")), s)
    drv = Driver(d)
    with pytest.raises(DiscoveryFailure):
        for _ in range(20):
            drv.answer(reply("timed_out"))
    assert [r.hop_limit for r in drv.requests] == [0, 0, 1, 1, 2, 2]


def test_tick_waits_for_outcome_and_send_gap():
    s = Settings()
    d = RouteDiscovery(TargetSpec("host", HOST), s)
    launched = []

    nxt = d.tick(0.0, launched.append)
    assert len(launched) == 1
    assert nxt == pytest.approx(s.discovery_poll_ms / 1000.0)

    # still in flight: no second echo
    d.tick(0.1, launched.append)
    assert len(launched) == 1

    d.deliver(reply("ttl_exceeded", "10.0.0.1"))
    nxt = d.tick(0.2, launched.append)
    assert len(launched) == 1
    assert nxt == pytest.approx(0.2 + s.hop_gap_ms / 1000.0)

    d.tick(nxt, launched.append)
    assert len(launched) == 2
    assert launched[1].hop_limit == 1


def test_immediate_failure_is_seen_on_next_tick():
    d = RouteDiscovery(TargetSpec("host", HOST), Settings())

    def launch(request):
        d.deliver(reply("other", error="send_failed"))

    assert d.tick(5.0, launch) == 5.0
    d.tick(5.0, lambda r: None)
    assert d.state == SearchingHopCountToHost(hop_limit=0, tries=1)


def test_resolved_to_skips_discovery():
    d = RouteDiscovery.resolved_to(HOST, Settings())
    assert d.resolved
    assert d.target == HOST
    assert d.tick(1.0, lambda r: pytest.fail("no echo expected")) == 1.0
