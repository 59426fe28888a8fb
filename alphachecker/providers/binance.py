"""Binance public market data provider implementation."""
import asyncio
import httpx
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    retry_if_exception,
    before_sleep_log
)
from alphachecker.core.config import Settings, settings
from alphachecker.providers import MarketDataProvider, UpstreamError, UpstreamErrorKind
from alphachecker.providers.models import (
    UniverseToken,
    ListingInfo,
    TickerSnapshot,
    FundingRate,
    OpenInterest,
)
from alphachecker.utils.symbols import canonical_symbol


logger = logging.getLogger(__name__)

SUCCESS_CODE = "000000"


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, UpstreamError) and exc.retryable


class BinanceProvider(MarketDataProvider):
    """
    Binance implementation of the market data provider.
    
    Talks to the public alpha token list, the USDⓈ-M futures market data
    endpoints and the spot 24h ticker. Every request goes through one
    retry/rate-limit path:
    
    - at least ``min_request_interval_ms`` between consecutive requests
    - up to ``retry_max_attempts`` attempts, waiting ``attempt * base_delay``
      between them, plus ``rate_limit_wait_ms`` after an HTTP 429
    - network failures and ``retryable_statuses`` are retried, everything
      else fails on the first attempt
    """
    
    def __init__(
        self,
        config: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Callable = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or settings
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.config.request_timeout_s)
        self.headers = {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json",
        }
        self._sleep = sleep
        self._clock = clock
        self._lock = asyncio.Lock()
        self._last_request_at: Optional[float] = None
        self._retryable_statuses = set(self.config.retryable_statuses)
        self._non_retryable_statuses = set(self.config.non_retryable_statuses)
    
    async def _wait_for_slot(self):
        """Enforce the minimum spacing between consecutive requests."""
        interval = self.config.min_request_interval_ms / 1000
        async with self._lock:
            if self._last_request_at is not None:
                remaining = interval - (self._clock() - self._last_request_at)
                if remaining > 0:
                    await self._sleep(remaining)
            self._last_request_at = self._clock()
    
    def _backoff(self, retry_state: RetryCallState) -> float:
        """Linear backoff, plus the rate-limit cooldown after a 429."""
        delay = retry_state.attempt_number * self.config.retry_base_delay_ms / 1000
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, UpstreamError) and exc.kind == UpstreamErrorKind.RATE_LIMITED:
            delay += self.config.rate_limit_wait_ms / 1000
        return delay
    
    def _classify_status(self, url: str, status: int) -> UpstreamError:
        """Map a non-2xx HTTP status to an UpstreamError."""
        message = f"GET {url} returned HTTP {status}"
        if status == 429:
            return UpstreamError(
                UpstreamErrorKind.RATE_LIMITED, message, status,
                retryable=status in self._retryable_statuses
            )
        if status in self._retryable_statuses:
            kind = UpstreamErrorKind.SERVER_ERROR if status >= 500 else UpstreamErrorKind.NETWORK
            return UpstreamError(kind, message, status, retryable=True)
        if status in self._non_retryable_statuses or 400 <= status < 500:
            return UpstreamError(UpstreamErrorKind.CLIENT_ERROR, message, status)
        if status >= 500:
            return UpstreamError(UpstreamErrorKind.SERVER_ERROR, message, status)
        return UpstreamError(UpstreamErrorKind.INVALID_RESPONSE, message, status)
    
    async def _send(self, url: str, params: Optional[Dict[str, Any]], timeout: float) -> Any:
        """Make a single HTTP attempt and decode the JSON body."""
        await self._wait_for_slot()
        try:
            response = await self.client.get(url, params=params, headers=self.headers, timeout=timeout)
        except httpx.TimeoutException as e:
            raise UpstreamError(
                UpstreamErrorKind.NETWORK, f"Timed out after {timeout}s: GET {url}", retryable=True
            ) from e
        except httpx.RequestError as e:
            raise UpstreamError(
                UpstreamErrorKind.NETWORK, f"Transport error on GET {url}: {e}", retryable=True
            ) from e
        
        if not 200 <= response.status_code < 300:
            raise self._classify_status(url, response.status_code)
        
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                UpstreamErrorKind.INVALID_RESPONSE, f"Body of GET {url} is not JSON",
                response.status_code
            ) from e
    
    async def _request(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None
    ) -> Any:
        """Make HTTP request with the retry policy applied."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.retry_max_attempts),
            wait=self._backoff,
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True
        )
        return await retrying(self._send, url, params, timeout or self.config.request_timeout_s)
    
    async def fetch_universe(self) -> List[UniverseToken]:
        """
        Fetch the alpha token universe.
        
        The envelope must carry ``code == "000000"`` and a list of items that
        each have a non-empty string symbol; anything else is an
        INVALID_RESPONSE rather than a partial universe.
        """
        data = await self._request(self.config.binance_alpha_url)
        
        if not isinstance(data, dict):
            raise UpstreamError(UpstreamErrorKind.INVALID_RESPONSE, "Alpha token list is not an object")
        if data.get("code") != SUCCESS_CODE or data.get("success") is False:
            raise UpstreamError(
                UpstreamErrorKind.INVALID_RESPONSE,
                f"Alpha token list returned code={data.get('code')} message={data.get('message')}"
            )
        
        items = data.get("data")
        if not isinstance(items, list):
            raise UpstreamError(UpstreamErrorKind.INVALID_RESPONSE, "Alpha token list has no data array")
        
        tokens = []
        for item in items:
            symbol = item.get("symbol") if isinstance(item, dict) else None
            if not isinstance(symbol, str) or not symbol.strip():
                raise UpstreamError(
                    UpstreamErrorKind.INVALID_RESPONSE, f"Alpha token entry without symbol: {item!r}"
                )
            tokens.append(UniverseToken.from_payload(item))
        
        logger.info(f"Fetched {len(tokens)} alpha tokens")
        return tokens
    
    async def check_listing(self, symbol: str, timeout: Optional[float] = None) -> ListingInfo:
        """Look up the ``<BASE>USDT`` perpetual in futures exchangeInfo."""
        base = canonical_symbol(symbol)
        pair = f"{base}USDT"
        url = f"{self.config.binance_futures_url}/fapi/v1/exchangeInfo"
        
        try:
            data = await self._request(url, timeout=timeout)
        except UpstreamError as e:
            if e.status_code == 404:
                logger.debug(f"exchangeInfo returned 404 for {pair}, treating as not listed")
                return ListingInfo.not_found(base)
            raise
        
        symbols = data.get("symbols") if isinstance(data, dict) else None
        if not isinstance(symbols, list):
            raise UpstreamError(UpstreamErrorKind.INVALID_RESPONSE, "exchangeInfo has no symbols array")
        
        for item in symbols:
            if isinstance(item, dict) and item.get("symbol") == pair:
                listing = ListingInfo.from_payload(base, item)
                logger.debug(f"{pair} futures status: {listing.status}")
                return listing
        
        logger.debug(f"{pair} not found in futures exchangeInfo")
        return ListingInfo.not_found(base)
    
    async def get_ticker_24h(self, symbol: str, timeout: Optional[float] = None) -> Optional[TickerSnapshot]:
        """
        Fetch the spot 24h ticker, trying USDT then USDC pairs.
        
        A 4xx for one pair format means "no such pair" and the next format is
        tried; other failures propagate.
        """
        base = canonical_symbol(symbol)
        pairs = [f"{base}{quote}" for quote in ("USDT", "USDC")]
        
        url = f"{self.config.binance_spot_url}/api/v3/ticker/24hr"
        for pair in pairs:
            try:
                data = await self._request(
                    url, params={"symbol": pair}, timeout=timeout or self.config.ticker_timeout_s
                )
            except UpstreamError as e:
                if e.kind == UpstreamErrorKind.CLIENT_ERROR:
                    logger.debug(f"No spot ticker for {pair}: {e}")
                    continue
                raise
            
            if isinstance(data, dict) and data.get("lastPrice") is not None:
                return TickerSnapshot.from_payload(data)
        
        return None
    
    async def _futures_lookup(self, path: str, params: Dict[str, Any], timeout: Optional[float]) -> Any:
        """GET a per-symbol futures endpoint; a 4xx (unknown symbol) yields None."""
        url = f"{self.config.binance_futures_url}{path}"
        try:
            return await self._request(url, params=params, timeout=timeout)
        except UpstreamError as e:
            if e.kind == UpstreamErrorKind.CLIENT_ERROR:
                logger.debug(f"No futures data at {path} for {params.get('symbol')}: {e}")
                return None
            raise
    
    async def get_funding_rate(self, symbol: str, timeout: Optional[float] = None) -> Optional[FundingRate]:
        """Most recent funding rate entry of the ``<BASE>USDT`` perpetual."""
        pair = f"{canonical_symbol(symbol)}USDT"
        data = await self._futures_lookup(
            "/fapi/v1/fundingRate", {"symbol": pair, "limit": 1}, timeout
        )
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            return None
        return FundingRate.from_payload(data[0])
    
    async def get_open_interest(self, symbol: str, timeout: Optional[float] = None) -> Optional[OpenInterest]:
        """Current open interest of the ``<BASE>USDT`` perpetual."""
        pair = f"{canonical_symbol(symbol)}USDT"
        data = await self._futures_lookup("/fapi/v1/openInterest", {"symbol": pair}, timeout)
        if not isinstance(data, dict) or data.get("openInterest") is None:
            return None
        return OpenInterest.from_payload(data)
    
    async def close(self):
        """Close HTTP client."""
        if self._owns_client:
            await self.client.aclose()
