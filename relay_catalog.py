"""
Relay Catalog

Fetches the provider's relay list and falls back to a local copy when the
API cannot be reached.
"""

import asyncio
import json
import logging
from typing import List, Optional, Union

import aiohttp

from relay_errors import CatalogParseError, CatalogUnavailableError
from relay import RelayDescriptor

logger = logging.getLogger(__name__)


class RelayCatalog:
    """Loads RelayDescriptors from the relay API or a fallback file."""

    # Relay list URL, parameterized by server type (wireguard, openvpn, ...)
    RELAYS_URL = "https://api.mullvad.net/www/relays/{server_type}/"

    def __init__(self, fallback_file: Optional[str] = None, timeout: float = 10.0):
        self.fallback_file = fallback_file
        self.timeout = timeout

    def relays_url(self, server_type: str) -> str:
        return self.RELAYS_URL.format(server_type=server_type)

    def fallback_path(self, server_type: str) -> str:
        """Path of the local relay list backup for this server type."""
        if self.fallback_file:
            return self.fallback_file
        return f"{server_type}_servers.json"

    async def _fetch_relays(self, server_type: str) -> bytes:
        """Fetch the raw relay list body from the API."""
        url = self.relays_url(server_type)
        async with aiohttp.ClientSession() as session:
            async with session.get(
                url,
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status == 200:
                    return await response.read()
                else:
                    raise aiohttp.ClientResponseError(
                        response.request_info,
                        response.history,
                        status=response.status,
                        message=f"Failed to fetch relay list from {url}",
                    )

    def _read_fallback(self, server_type: str) -> bytes:
        """Read the raw relay list body from the local backup file."""
        path = self.fallback_path(server_type)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except OSError as e:
            raise CatalogUnavailableError(f"Can't read relay list backup file {path}: {e}") from e

    async def load(self, server_type: str = "wireguard") -> List[RelayDescriptor]:
        """
        Load the relay list for a server type.

        Args:
            server_type: Relay type segment of the API URL, e.g. "wireguard"

        Returns:
            List of relay descriptors in catalog order

        Raises:
            CatalogUnavailableError: if both the API and the fallback fail
            CatalogParseError: if the body that was obtained is malformed
        """
        try:
            body = await self._fetch_relays(server_type)
            source = self.relays_url(server_type)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(
                "Relay API not responding (%s), falling back to local relay list backup",
                str(e) or type(e).__name__,
            )
            body = self._read_fallback(server_type)
            source = self.fallback_path(server_type)

        relays = parse_relays(body, source=source)
        logger.info("Loaded %d relays from %s", len(relays), source)
        return relays


def parse_relays(body: Union[bytes, str], source: str = "<catalog>") -> List[RelayDescriptor]:
    """
    Parse a relay list body into descriptors.

    Raises:
        CatalogParseError: if the body is not UTF-8 or not a JSON array of
            relay objects
    """
    if isinstance(body, bytes):
        try:
            body = body.decode('utf-8-sig')
        except UnicodeDecodeError as e:
            raise CatalogParseError(f"Relay list from {source} is not valid UTF-8: {e}") from e

    try:
        data = json.loads(body)
    except ValueError as e:
        raise CatalogParseError(f"Couldn't parse relay list from {source}: {e}") from e

    if not isinstance(data, list):
        raise CatalogParseError(
            f"Relay list from {source} must be a JSON array, got {type(data).__name__}"
        )

    return [RelayDescriptor.from_dict(item) for item in data]
