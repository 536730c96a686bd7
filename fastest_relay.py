#!/usr/bin/env python3
"""
Fastest Relay Finder - VPN Relay Latency Ranker

Fetches a VPN provider's relay list, pings every eligible relay once and
prints the relays with the lowest round-trip time.
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence

from relay_errors import CatalogError, ProbeError, InvalidPingError
from latency_prober import LatencyProber
from relay import MeasuredRelay, RelayDescriptor
from relay_catalog import RelayCatalog

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'

# trace, warn, fatal and panic are accepted alongside the logging module names
LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


def parse_log_level(name: str) -> int:
    """Map a log level name to a logging level."""
    try:
        return LOG_LEVELS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown log level '{name}'. Allowed values: {', '.join(LOG_LEVELS)}"
        ) from None


def configure_logging(level: str = "info") -> None:
    """Send log records at or above level to stderr."""
    root = logging.getLogger()
    root.setLevel(parse_log_level(level))

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    logging.getLogger('aiohttp').setLevel(logging.WARNING)


def parse_country_set(text: Optional[str]) -> FrozenSet[str]:
    """Split a comma-separated list of country codes into a set."""
    if not text:
        return frozenset()
    return frozenset(code.strip() for code in text.split(',') if code.strip())


@dataclass(frozen=True)
class FinderConfig:
    """Settings for one run of the finder."""

    server_type: str = "wireguard"
    country: str = ""
    excluded_countries: FrozenSet[str] = field(default_factory=frozenset)
    top_n: int = 10
    output: str = ""
    log_level: str = "info"
    workers: int = 32
    timeout: float = 1.0
    fallback_file: Optional[str] = None

    def __post_init__(self):
        """Validate the config."""
        if self.top_n < 0:
            raise ValueError("top_n must be >= 0")
        if self.workers < 1:
            raise ValueError("workers must be >= 1")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")
        parse_log_level(self.log_level)

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "FinderConfig":
        """Create from parsed command line arguments."""
        return cls(
            server_type=args.type,
            country=args.country,
            excluded_countries=parse_country_set(args.exclude),
            top_n=args.top,
            output=args.output,
            log_level=args.log_level,
            workers=args.workers,
            timeout=args.timeout,
            fallback_file=args.fallback_file,
        )


@dataclass
class ProbeSummary:
    """Counts of probe outcomes for one run."""
    candidates: int = 0
    measured: int = 0
    failed: int = 0
    invalid: int = 0


def filter_relays(
    relays: Iterable[RelayDescriptor],
    country: str = "",
    excluded_countries: Iterable[str] = ()
) -> List[RelayDescriptor]:
    """
    Select the relays eligible for probing.

    Args:
        relays: Relays in catalog order
        country: If non-empty, only relays with exactly this country code
        excluded_countries: Country codes to drop

    Returns:
        Active relays matching the country criteria, in input order
    """
    excluded = frozenset(excluded_countries)
    return [
        relay for relay in relays
        if relay.active
        and (not country or relay.country_code == country)
        and relay.country_code not in excluded
    ]


def by_latency(measured: MeasuredRelay) -> float:
    """Sort key: measured round-trip time."""
    return measured.duration


def rank_relays(
    measured: Sequence[MeasuredRelay],
    top_n: int,
    key: Callable[[MeasuredRelay], float] = by_latency
) -> List[MeasuredRelay]:
    """
    Order measured relays best first and keep the top_n.

    The sort is stable, so relays with equal latency keep their input order.
    Asking for more relays than were measured returns all of them.
    """
    if top_n < 0:
        raise ValueError("top_n must be >= 0")
    return sorted(measured, key=key)[:min(top_n, len(measured))]


def strip_type_suffix(hostname: str, server_type: str) -> str:
    """se-got-wg-001-wireguard -> se-got-wg-001"""
    suffix = f"-{server_type}"
    if server_type and hostname.endswith(suffix):
        return hostname[:-len(suffix)]
    return hostname


def format_duration(seconds: float) -> str:
    """Render a duration with the largest unit that keeps it >= 1 after rounding."""
    for scale, unit in ((1, "s"), (1000, "ms"), (1_000_000, "µs")):
        value = round(seconds * scale, 3)
        if value >= 1:
            break
    text = f"{value:.3f}".rstrip('0').rstrip('.')
    return f"{text}{unit}"


def format_text(measured: MeasuredRelay, server_type: str) -> str:
    """One text result line: '<hostname>: <duration>'."""
    return f"{strip_type_suffix(measured.hostname, server_type)}: {format_duration(measured.duration)}"


def format_json(measured: MeasuredRelay) -> str:
    """One JSON result line with every relay field and duration_ms."""
    return json.dumps(measured.to_dict())


class FastestRelayFinder:
    """Runs the load -> filter -> probe -> rank pipeline."""

    def __init__(
        self,
        config: FinderConfig,
        catalog: Optional[RelayCatalog] = None,
        prober: Optional[LatencyProber] = None
    ):
        self.config = config
        self.catalog = catalog or RelayCatalog(fallback_file=config.fallback_file)
        self.prober = prober or LatencyProber(timeout=config.timeout)
        self.summary = ProbeSummary()

    async def _probe(
        self,
        relay: RelayDescriptor,
        semaphore: asyncio.Semaphore
    ) -> Optional[MeasuredRelay]:
        """Probe one relay; a probe failure drops only this relay."""
        async with semaphore:
            try:
                measured = await self.prober.probe_async(relay)
            except InvalidPingError as e:
                self.summary.invalid += 1
                logger.warning("Skipping relay %s (%s): %s", relay.hostname, e.address, e)
                return None
            except ProbeError as e:
                self.summary.failed += 1
                logger.warning("Skipping relay %s (%s): %s", relay.hostname, e.address, e)
                return None

        self.summary.measured += 1
        return measured

    async def measure(self, relays: Sequence[RelayDescriptor]) -> List[MeasuredRelay]:
        """
        Probe relays concurrently, at most config.workers at a time.

        Returns:
            Successfully measured relays, in the same order as relays
        """
        self.summary = ProbeSummary(candidates=len(relays))
        semaphore = asyncio.Semaphore(self.config.workers)

        tasks = [self._probe(relay, semaphore) for relay in relays]
        results = await asyncio.gather(*tasks)

        return [result for result in results if result is not None]

    async def find_fastest(self) -> List[MeasuredRelay]:
        """
        Find the lowest-latency relays.

        Returns:
            Up to config.top_n measured relays, fastest first

        Raises:
            CatalogError: if the relay list can't be loaded
        """
        relays = await self.catalog.load(self.config.server_type)

        eligible = filter_relays(
            relays,
            country=self.config.country,
            excluded_countries=self.config.excluded_countries
        )
        logger.info("Probing %d of %d relays", len(eligible), len(relays))

        measured = await self.measure(eligible)
        s = self.summary
        logger.info(
            "Measured %d relays (%d unreachable, %d invalid)",
            s.measured, s.failed, s.invalid
        )

        return rank_relays(measured, self.config.top_n)

    def render(self, ranked: Sequence[MeasuredRelay]) -> List[str]:
        """Output lines for ranked results in the configured format."""
        lines = []
        for measured in ranked:
            logger.debug("Best latency relay found: %s", measured.to_dict())
            if self.config.output == "json":
                lines.append(format_json(measured))
            else:
                lines.append(format_text(measured, self.config.server_type))
        return lines


def non_negative_int(value: str) -> int:
    """argparse type for the result count."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"should not contain characters, only numbers: {value!r}"
        ) from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def positive_int(value: str) -> int:
    number = non_negative_int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {number}")
    return number


def positive_float(value: str) -> float:
    try:
        number = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}") from None
    if not number > 0:
        raise argparse.ArgumentTypeError(f"must be > 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Command line interface."""
    parser = argparse.ArgumentParser(
        prog="fastest-relay",
        description="Find the VPN relays with the lowest ping",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ten fastest WireGuard relays
  %(prog)s

  # Three fastest relays in Switzerland, as JSON
  %(prog)s -c ch -s 3 -o json

  # Fastest relays outside the US and Sweden
  %(prog)s -e us,se
        """
    )
    parser.add_argument(
        "--output", "-o",
        default="",
        help="Output format. 'json' outputs relay json"
    )
    parser.add_argument(
        "--country", "-c",
        default="",
        help="Relay country code, e.g. ch for Switzerland"
    )
    parser.add_argument(
        "--exclude", "-e",
        default="",
        help="Exclude relays from these countries (e.g. 'us,se')"
    )
    parser.add_argument(
        "--top", "-s",
        type=non_negative_int,
        default=10,
        help="Limit for top latency relays output (default: 10)"
    )
    parser.add_argument(
        "--type", "-t",
        default="wireguard",
        help="Relay type, e.g. wireguard (default: wireguard)"
    )
    parser.add_argument(
        "--log-level", "-l",
        choices=sorted(LOG_LEVELS),
        type=str.lower,
        default="info",
        help="Log level (default: info)"
    )
    parser.add_argument(
        "--workers", "-w",
        type=positive_int,
        default=32,
        help="Number of relays probed at the same time (default: 32)"
    )
    parser.add_argument(
        "--fallback-file", "-f",
        default=None,
        help="Relay list backup used when the API is down (default: <type>_servers.json)"
    )
    parser.add_argument(
        "--timeout",
        type=positive_float,
        default=1.0,
        help="Ping timeout in seconds (default: 1.0)"
    )
    return parser


async def run(config: FinderConfig) -> List[str]:
    """Run the finder and return the output lines."""
    finder = FastestRelayFinder(config)
    ranked = await finder.find_fastest()
    return finder.render(ranked)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    config = FinderConfig.from_args(args)
    configure_logging(config.log_level)

    try:
        lines = asyncio.run(run(config))
    except CatalogError as e:
        logger.critical("Can't load relay list: %s", e)
        return 1
    except KeyboardInterrupt:
        print("\n\nInterrupted by user", file=sys.stderr)
        return 130

    for line in lines:
        print(line)
    return 0


if __name__ == "__main__":
    sys.exit(main())
