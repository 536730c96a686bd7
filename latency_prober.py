"""
Latency Prober

Measures relay round-trip time with a single ICMP echo request.
"""

import asyncio
import logging
import platform

import ping3

from relay_errors import InvalidPingError, ProbeError
from relay import MeasuredRelay, RelayDescriptor

logger = logging.getLogger(__name__)


class LatencyProber:
    """Sends one ICMP echo per relay and measures the reply RTT."""

    # Platforms without unprivileged ICMP datagram sockets
    PRIVILEGED_ONLY_SYSTEMS = ("windows",)

    def __init__(self, timeout: float = 1.0):
        self.timeout = timeout
        self.system = platform.system().lower()

    @property
    def requires_privilege(self) -> bool:
        """
        Whether ICMP needs a privileged raw socket on this platform.

        ping3 always opens a raw socket first; on Linux and macOS it falls
        back to an unprivileged ICMP datagram socket when that is refused.
        """
        return self.system in self.PRIVILEGED_ONLY_SYSTEMS

    def _echo(self, address: str):
        """Send one echo request. Returns seconds, None on timeout, False on error."""
        return ping3.ping(address, timeout=self.timeout, unit='s', version=4)

    def probe(self, relay: RelayDescriptor) -> MeasuredRelay:
        """
        Probe a relay once.

        Args:
            relay: The relay to measure (its IPv4 address is pinged)

        Returns:
            MeasuredRelay with the reply RTT in seconds

        Raises:
            ProbeError: on socket failure or when no reply arrives in time
            InvalidPingError: when the reply RTT is exactly zero
        """
        address = relay.ipv4_addr_in
        if not address:
            raise ProbeError("Relay has no IPv4 address", relay.hostname, address)

        try:
            rtt = self._echo(address)
        except PermissionError as e:
            if self.requires_privilege:
                raise ProbeError(
                    f"ICMP on {self.system} needs a privileged socket, run as administrator: {e}",
                    relay.hostname, address
                ) from e
            raise ProbeError(f"ICMP socket not permitted: {e}", relay.hostname, address) from e
        except OSError as e:
            raise ProbeError(f"ICMP socket error: {e}", relay.hostname, address) from e
        except ValueError as e:
            # includes UnicodeError from resolving an unencodable address
            raise ProbeError(f"Invalid relay address: {e}", relay.hostname, address) from e

        if rtt is None:
            raise ProbeError(f"No reply within {self.timeout}s", relay.hostname, address)
        if rtt is False:
            raise ProbeError("Echo request failed", relay.hostname, address)
        if rtt <= 0:
            raise InvalidPingError(f"{rtt}s ping detected", relay.hostname, address)

        logger.debug("Relay %s (%s) replied, RTT %.3f ms", relay.hostname, address, rtt * 1000)
        return MeasuredRelay(relay=relay, duration=rtt)

    async def probe_async(self, relay: RelayDescriptor) -> MeasuredRelay:
        """Run probe() in the default executor so probes can overlap."""
        return await asyncio.get_event_loop().run_in_executor(
            None,
            lambda: self.probe(relay)
        )
