"""
Relay Records

A RelayDescriptor is one entry of the provider's relay list. A MeasuredRelay
pairs a descriptor with the round-trip time of a successful probe.
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from relay_errors import CatalogParseError


# Catalog key -> (expected JSON types, zero value)
_FIELD_TYPES = {
    "hostname": ((str,), ""),
    "country_code": ((str,), ""),
    "country_name": ((str,), ""),
    "city_code": ((str,), ""),
    "city_name": ((str,), ""),
    "active": ((bool,), False),
    "owned": ((bool,), False),
    "provider": ((str,), ""),
    "ipv4_addr_in": ((str,), ""),
    "ipv6_addr_in": ((str,), None),
    "network_port_speed": ((int,), 0),
    "pubkey": ((str,), ""),
    "multihop_port": ((int,), 0),
    "socks_name": ((str,), ""),
}


@dataclass(frozen=True)
class RelayDescriptor:
    """One candidate relay, exactly as published in the catalog."""

    hostname: str
    country_code: str = ""
    country_name: str = ""
    city_code: str = ""
    city_name: str = ""
    active: bool = False
    owned: bool = False
    provider: str = ""
    ipv4_addr_in: str = ""
    ipv6_addr_in: Optional[str] = None
    network_port_speed: int = 0
    pubkey: str = ""
    multihop_port: int = 0
    socks_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a catalog-shaped dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RelayDescriptor":
        """
        Create from one catalog JSON object.

        Missing keys take their zero value and unknown keys are ignored.
        A null value counts as missing.

        Raises:
            CatalogParseError: if data is not an object or a known key has
                the wrong JSON type
        """
        if not isinstance(data, dict):
            raise CatalogParseError(f"Relay entry must be an object, got {type(data).__name__}")

        values = {}
        for key, (types, zero) in _FIELD_TYPES.items():
            value = data.get(key)
            if value is None:
                values[key] = zero
                continue
            # bool is a subclass of int; a port speed of `true` is still wrong
            if not isinstance(value, types) or (bool not in types and isinstance(value, bool)):
                raise CatalogParseError(
                    f"Relay field '{key}' has type {type(value).__name__}, "
                    f"expected {types[0].__name__}"
                )
            values[key] = value

        # An empty IPv6 address is the same as none
        if not values["ipv6_addr_in"]:
            values["ipv6_addr_in"] = None

        return cls(**values)


@dataclass(frozen=True)
class MeasuredRelay:
    """A relay with the RTT, in seconds, of its successful probe."""

    relay: RelayDescriptor
    duration: float

    def __post_init__(self):
        """Only strictly positive RTTs are genuine measurements."""
        if not self.duration > 0:
            raise ValueError(f"Measured duration must be > 0, got {self.duration!r}")

    @property
    def hostname(self) -> str:
        return self.relay.hostname

    @property
    def duration_ms(self) -> float:
        return self.duration * 1000.0

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into a single record: catalog fields plus duration_ms."""
        record = self.relay.to_dict()
        record["duration_ms"] = self.duration_ms
        return record
