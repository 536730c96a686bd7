"""Shared fixtures for the fastest-relay test suite."""

import asyncio
from typing import Dict, Optional, Union

import pytest

from relay_errors import ProbeError
from relay import MeasuredRelay, RelayDescriptor


def relay_factory(
    hostname: str = "se-got-wg-001",
    country_code: str = "se",
    active: bool = True,
    ipv4_addr_in: Optional[str] = None,
    **kwargs,
) -> RelayDescriptor:
    return RelayDescriptor(
        hostname=hostname,
        country_code=country_code,
        active=active,
        ipv4_addr_in=ipv4_addr_in if ipv4_addr_in is not None else "10.0.0.1",
        **kwargs,
    )


@pytest.fixture
def make_relay():
    """Factory for RelayDescriptors with sensible defaults."""
    return relay_factory


class FakeProber:
    """Stands in for LatencyProber; outcomes are looked up by hostname.

    Each outcome is either an RTT in seconds or an exception to raise.
    Unknown hostnames time out. Tracks the peak number of in-flight probes.
    """

    def __init__(self, outcomes: Dict[str, Union[float, Exception]], delay: float = 0.0):
        self.outcomes = outcomes
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.probed = []

    async def probe_async(self, relay: RelayDescriptor) -> MeasuredRelay:
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        self.probed.append(relay.hostname)
        try:
            await asyncio.sleep(self.delay)
            outcome = self.outcomes.get(
                relay.hostname,
                ProbeError("No reply within 1.0s", relay.hostname, relay.ipv4_addr_in),
            )
            if isinstance(outcome, Exception):
                raise outcome
            return MeasuredRelay(relay=relay, duration=outcome)
        finally:
            self.in_flight -= 1


@pytest.fixture
def fake_prober():
    """Factory for FakeProber instances."""
    return FakeProber


class FakeCatalog:
    """Stands in for RelayCatalog."""

    def __init__(self, relays=None, error: Optional[Exception] = None):
        self.relays = list(relays or [])
        self.error = error
        self.requested_types = []

    async def load(self, server_type: str = "wireguard"):
        self.requested_types.append(server_type)
        if self.error is not None:
            raise self.error
        return list(self.relays)


@pytest.fixture
def fake_catalog():
    """Factory for FakeCatalog instances."""
    return FakeCatalog
