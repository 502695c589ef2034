"""
Hyperliquid API Client

Single responsibility: communicate with the Hyperliquid info API.

Two endpoints are used:
- Private API (usually a local node) for clearinghouse state
- Public API for allMids price data
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

import aiohttp

from ..config import Config, config as default_config
from ..models import AccountState, SchemaError, parse_mid_prices
from .base import AccountStateSource

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1")


class HyperliquidClient(AccountStateSource):
    """
    Async client for the Hyperliquid info API.

    Handles:
    - Fetching account state for a single address (private endpoint)
    - Fetching mid prices (public endpoint)
    - Rate limiting backoff and retries
    """

    def __init__(
        self,
        private_url: str = None,
        public_url: str = None,
        cfg: Config = None,
    ):
        self.config = cfg or default_config
        self.private_url = private_url or self.config.private_api_url
        self.public_url = public_url or self.config.public_api_url
        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            f"HyperliquidClient initialized: private={self.private_url} "
            f"public={self.public_url}"
        )

    @property
    def is_low_latency(self) -> bool:
        return any(host in self.private_url for host in LOCAL_HOSTS)

    async def _ensure_session(self):
        """Create session if needed."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_sec)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self):
        """Close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def _request(self, url: str, payload: dict, retries: int = None) -> Optional[Any]:
        """
        POST a payload to an info endpoint with retry logic.

        Args:
            url: Endpoint URL
            payload: JSON payload to send
            retries: Number of retries (default from config)

        Returns:
            JSON response or None on failure
        """
        await self._ensure_session()
        retries = retries if retries is not None else self.config.max_retries
        backoff = self.config.rate_limit_backoff_sec

        for attempt in range(retries + 1):
            try:
                async with self._session.post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                ) as response:
                    if response.status == 429:
                        # Rate limited - back off
                        wait = backoff * (2 ** attempt)
                        logger.warning(f"Rate limited by {url}, backing off {wait}s")
                        await asyncio.sleep(wait)
                        continue

                    if response.status != 200:
                        logger.error(f"API error {response.status} from {url}: {await response.text()}")
                        return None

                    return await response.json(content_type=None)

            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.error(f"Request error {payload.get('type')} (attempt {attempt + 1}): {e!r}")
                if attempt < retries:
                    await asyncio.sleep(backoff)
                continue

        return None

    # -------------------------------------------------------------------------
    # Public Methods
    # -------------------------------------------------------------------------

    async def get_account_state(self, address: str) -> Optional[AccountState]:
        """
        Get clearinghouse state for an address from the private endpoint.

        Returns:
            AccountState, or None if unavailable or malformed
        """
        response = await self._request(
            self.private_url,
            {"type": "clearinghouseState", "user": address},
        )
        if response is None:
            return None

        try:
            return AccountState.from_api(address, response)
        except SchemaError as e:
            logger.warning(f"Invalid account state for {address[:10]}...: {e}")
            return None

    async def get_all_mid_prices(self) -> Optional[Dict[str, float]]:
        """
        Get current mid prices for all coins from the public endpoint.

        Returns:
            Dict mapping coin to price, or None if the feed is unavailable
        """
        response = await self._request(self.public_url, {"type": "allMids"})
        if response is None:
            return None

        try:
            return parse_mid_prices(response)
        except SchemaError as e:
            logger.error(f"Invalid allMids response: {e}")
            return None

    async def ping(self) -> Optional[float]:
        """
        Check the public endpoint is reachable.

        Returns:
            Response time in seconds, or None if unreachable
        """
        start = time.monotonic()
        prices = await self.get_all_mid_prices()
        if prices is None:
            return None
        return time.monotonic() - start
