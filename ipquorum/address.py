"""
Address parsing and classification.

Classifies addresses against the IANA special-purpose registries
(https://en.wikipedia.org/wiki/Reserved_IP_addresses) so that callers
can tell a real public address from a NAT, loopback or documentation one.
"""

from ipaddress import IPv4Network, IPv6Network, ip_address, ip_network

from ipquorum.errors import MalformedResponse
from ipquorum.models import AddressFamily, AddressKind, IPAddress


_RESERVED_IPV4: list[tuple[IPv4Network, AddressKind]] = [
    (ip_network(net), net_kind)
    for net, net_kind in [
        ("0.0.0.0/8", AddressKind.LOOPBACK),
        ("10.0.0.0/8", AddressKind.PRIVATE),
        ("100.64.0.0/10", AddressKind.RESERVED),
        ("127.0.0.0/8", AddressKind.LOOPBACK),
        ("169.254.0.0/16", AddressKind.PRIVATE),
        ("172.16.0.0/12", AddressKind.PRIVATE),
        ("192.0.0.0/24", AddressKind.RESERVED),
        ("192.0.2.0/24", AddressKind.RESERVED),
        ("192.88.99.0/24", AddressKind.RESERVED),
        ("192.168.0.0/16", AddressKind.PRIVATE),
        ("198.18.0.0/15", AddressKind.RESERVED),
        ("198.51.100.0/24", AddressKind.RESERVED),
        ("203.0.113.0/24", AddressKind.RESERVED),
        ("224.0.0.0/4", AddressKind.MULTICAST),
        ("233.252.0.0/24", AddressKind.RESERVED),
        ("240.0.0.0/4", AddressKind.RESERVED),
        ("255.255.255.255/32", AddressKind.MULTICAST),
    ]
]

_RESERVED_IPV6: list[tuple[IPv6Network, AddressKind]] = [
    (ip_network(net, strict=False), net_kind)
    for net, net_kind in [
        ("::/128", AddressKind.LOOPBACK),
        ("::1/128", AddressKind.LOOPBACK),
        ("::ffff:0:0/96", AddressKind.RESERVED),
        ("::ffff:0:0:0/96", AddressKind.RESERVED),
        ("64:ff9b::/96", AddressKind.RESERVED),
        ("64:ff9b:1::/48", AddressKind.RESERVED),
        ("100::/64", AddressKind.RESERVED),
        ("2001::/32", AddressKind.RESERVED),
        ("2001:20::/28", AddressKind.RESERVED),
        ("2001:db8::/32", AddressKind.RESERVED),
        ("2002::/16", AddressKind.RESERVED),
        ("3fff::/20", AddressKind.RESERVED),
        ("5f00::/16", AddressKind.RESERVED),
        ("fc00::/7", AddressKind.PRIVATE),
        ("fe80::/10", AddressKind.PRIVATE),
        ("ff00::/8", AddressKind.MULTICAST),
    ]
]


def parse_address(text: str) -> IPAddress:
    """Parse a provider-reported address, raising MalformedResponse on garbage."""
    cleaned = text.strip() if isinstance(text, str) else text
    try:
        return ip_address(cleaned)
    except ValueError as e:
        raise MalformedResponse(f"not an IP address: {str(text)[:64]!r}") from e


def family_of(address: IPAddress) -> AddressFamily:
    return AddressFamily.IPV4 if address.version == 4 else AddressFamily.IPV6


def kind(address: IPAddress) -> AddressKind:
    """Classify an address; anything outside the registries is public."""
    table = _RESERVED_IPV4 if address.version == 4 else _RESERVED_IPV6
    matches = [(network, network_kind) for network, network_kind in table if address in network]
    if not matches:
        return AddressKind.PUBLIC
    # most specific block wins, e.g. the broadcast address inside 240.0.0.0/4
    return max(matches, key=lambda match: match[0].prefixlen)[1]


def is_public(address: IPAddress) -> bool:
    return kind(address) == AddressKind.PUBLIC
