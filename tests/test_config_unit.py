# tests/test_config_unit.py
from ipaddress import IPv4Address

import pytest

from pingstats.config import Settings, TargetSettings
from pingstats.errors import ConfigError, PingstatsError


def test_defaults_are_valid():
    s = Settings().validate()
    assert s.max_hop_limit == 128
    assert s.max_tries == 4
    assert s.steady_hop_limit == 255
    t = TargetSettings().validate()
    assert t.address == "auto4"
    assert t.interval_ms == 500
    assert t.timeout_ms == 2000
    assert t.async_mode


@pytest.mark.parametrize("overrides", [
    {"max_hop_limit": 0},
    {"max_hop_limit": 256},
    {"max_tries": 0},
    {"max_in_flight": 0},
    {"history_limit": 1},
    {"mean_weight": 0.5},
    {"loss_weight": 0.0},
])
def test_invalid_settings(overrides):
    with pytest.raises(ConfigError):
        Settings(**overrides).validate()


def test_config_error_is_a_value_error():
    with pytest.raises(ValueError):
        Settings(max_tries=0).validate()
    assert issubclass(ConfigError, PingstatsError)


def test_target_tag_prefers_name():
    assert TargetSettings(address="1.1.1.1").tag == "1.1.1.1"
    assert TargetSettings(address="1.1.1.1", name="cloudflare").tag == "cloudflare"


def test_source_address():
    assert TargetSettings().source_address() is None
    assert TargetSettings(source="").source_address() is None
    assert TargetSettings(source="192.0.2.7").source_address() == IPv4Address("192.0.2.7")
