# pingstats/prober/address.py
import socket
from ipaddress import AddressValueError, IPv4Address, IPv4Network

from pingstats.errors import ConfigError

PRIVATE_NETWORKS = (
    IPv4Network("10.0.0.0/8"),
    IPv4Network("172.16.0.0/12"),
    IPv4Network("192.168.0.0/16"),
)


def is_public(addr: IPv4Address) -> bool:
    # Only the RFC1918 blocks count as private; loopback, CGNAT etc. are "public" here.
    return not any(addr in net for net in PRIVATE_NETWORKS)


def resolve_host(host: str) -> IPv4Address:
    """Dotted quad or hostname -> IPv4Address. Names are looked up once."""
    try:
        return IPv4Address(host)
    except AddressValueError:
        pass
    try:
        return IPv4Address(socket.gethostbyname(host))
    except (OSError, UnicodeError) as e:
        raise ConfigError(f"cannot resolve host {host!r}: {e}") from e
