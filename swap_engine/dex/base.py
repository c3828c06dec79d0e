"""
Venue adapter interface.

Every liquidity venue is one implementation of ``VenueAdapter``. The
aggregator and builder only talk to this interface, so adding a venue means
adding an adapter and listing it in the router's configuration.
"""
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from swap_engine.dex.types import Quote, SwapParams
from swap_engine.exceptions import VenueAPIError
from swap_engine.tokens import TokenRegistry

logger = logging.getLogger(__name__)


class VenueAdapter(ABC):
    """Quote and build capability of a single venue."""

    venue_id: str = ""

    @abstractmethod
    async def quote(
        self,
        token_in_address: str,
        token_out_address: str,
        amount_in: Decimal,
    ) -> Quote:
        """
        Price ``amount_in`` of token in, expressed in token-out units.

        Raises:
            PoolNotFoundError: The venue has no pool for the pair
            VenueAPIError: The venue could not be reached or answered badly
        """

    @abstractmethod
    async def build_transaction(self, params: SwapParams) -> str:
        """
        Build an unsigned swap transaction.

        Returns:
            Base64-encoded serialized transaction
        """

    async def close(self) -> None:
        """Release any network resources held by the adapter."""


class HttpVenueAdapter(VenueAdapter):
    """
    Base for venues reached over an HTTP API.

    Holds one lazily created aiohttp session per adapter instance.
    """

    def __init__(self, registry: TokenRegistry, timeout: float = 10.0):
        self.registry = registry
        self.timeout = timeout
        self.session: Optional[aiohttp.ClientSession] = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
        return self.session

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()

    async def _request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> Any:
        session = await self._get_session()
        try:
            async with session.request(method, url, params=params, json=data) as response:
                if response.status >= 400:
                    raise VenueAPIError(self.venue_id, response.status, await response.text())
                return await response.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.error(f"Network error during {method} {url}: {e}")
            raise VenueAPIError(self.venue_id, 0, f"Network error: {e}") from e
