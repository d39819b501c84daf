# pingstats/errors.py


class PingstatsError(Exception):
    """Base class for errors raised by pingstats."""


class ConfigError(PingstatsError, ValueError):
    """A setting or target specification is invalid. Fatal at start-up."""


class DiscoveryFailure(PingstatsError):
    """Route discovery gave up. Terminal for the target that raised it."""

    def __init__(self, reason: str, hop_limit: int | None = None):
        super().__init__(reason)
        self.reason = reason
        self.hop_limit = hop_limit
