# pingstats/config.py
from dataclasses import dataclass
from ipaddress import IPv4Address
from typing import Optional

from pingstats.errors import ConfigError
from pingstats.prober.address import resolve_host


@dataclass
class Settings:
    # route discovery
    well_known_target: str = "8.8.8.8"   # probed by "auto4" to find the first public hop
    max_hop_limit: int = 128
    max_tries: int = 4                   # consecutive failures before a hop-limit is skipped
    confirm_hop_limit: int = 128         # confirmation echo to a private hop
    steady_hop_limit: int = 255          # full journey once the target is known
    hop_gap_ms: int = 250                # pause before each hop probe
    confirm_gap_ms: int = 50             # pause before each confirmation echo
    discovery_poll_ms: int = 500

    # scheduler
    max_in_flight: int = 64
    send_slack_ms: float = 1.0
    expiry_grace_ms: int = 1000          # a slot this far past its timeout is reaped

    # statistics
    history_limit: int = 4096            # high-water mark, compacted to half
    mean_weight: float = 80.0
    jitter_weight: float = 40.0
    loss_weight: float = 40.0
    plot_height_px: float = 200.0

    def validate(self) -> "Settings":
        if not 0 < self.max_hop_limit <= 255:
            raise ConfigError(f"max_hop_limit must be in 1..255, got {self.max_hop_limit}")
        if self.max_tries < 1:
            raise ConfigError("max_tries must be >= 1")
        if self.max_in_flight < 1:
            raise ConfigError("max_in_flight must be >= 1")
        if self.history_limit < 2:
            raise ConfigError("history_limit must be >= 2")
        for name in ("mean_weight", "jitter_weight", "loss_weight"):
            if getattr(self, name) < 1.0:
                raise ConfigError(f"{name} must be >= 1")
        return self


@dataclass
class TargetSettings:
    address: str = "auto4"               # "auto4", "auto6", a host, or "trace <public4|private4|full> <host>"
    source: str = "auto"
    interval_ms: int = 500
    timeout_ms: int = 2000
    async_mode: bool = True              # False: wait for each reply before the next send
    name: Optional[str] = None

    @property
    def tag(self) -> str:
        return self.name or self.address

    def source_address(self) -> Optional[IPv4Address]:
        if self.source in ("", "auto"):
            return None
        return resolve_host(self.source)

    def validate(self) -> "TargetSettings":
        if not self.address.strip():
            raise ConfigError("target address must not be empty")
        if self.interval_ms <= 0:
            raise ConfigError(f"interval_ms must be > 0, got {self.interval_ms}")
        if self.timeout_ms <= 0:
            raise ConfigError(f"timeout_ms must be > 0, got {self.timeout_ms}")
        return self
