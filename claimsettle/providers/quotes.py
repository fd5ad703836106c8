"""
Quotes, deposit addresses and token prices from the settlement provider.
"""
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests
from cachetools import TTLCache

from ..exceptions import PriceUnavailableError, ProviderError, TransientError
from ..utils import to_atomic, utc_now, validate_service_url
from ._http import build_session

logger = logging.getLogger(__name__)

_CHAIN_NAMES = {
    "eth": "ethereum",
    "arb": "arbitrum",
    "op": "optimism",
    "pol": "polygon",
    "matic": "polygon",
    "sol": "solana",
}


def normalize_chain_name(chain: str) -> str:
    name = (chain or "").strip().lower()
    return _CHAIN_NAMES.get(name, name)


@dataclass(frozen=True)
class ProviderToken:
    """A token as listed by the provider"""
    symbol: str
    chain: str
    asset_id: str
    decimals: int
    price: Optional[Decimal] = None


@dataclass
class Quote:
    """An accepted quote: where to deposit, how much, and until when"""
    deposit_address: str
    quote_id: Optional[str] = None
    memo: Optional[str] = None
    deadline: Optional[datetime] = None
    time_estimate: Optional[int] = None
    min_amount_in: Optional[str] = None
    min_amount_in_formatted: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PriceSource(ABC):
    """Provides USD prices for tokens"""

    @abstractmethod
    def get_price(self, symbol: str, chain: str) -> Decimal:
        """
        USD price of one whole token.

        Raises:
            PriceUnavailableError: If no positive price is known
        """
        pass


class QuoteProvider(PriceSource):
    """Provider of deposit quotes and token metadata"""

    @abstractmethod
    def find_token(self, symbol: str, chain: str) -> Optional[ProviderToken]:
        pass

    @abstractmethod
    def get_deposit_quote(
        self,
        from_token: ProviderToken,
        to_token: ProviderToken,
        amount_out: Decimal,
        recipient: str,
        refund_address: Optional[str] = None
    ) -> Quote:
        """
        Request an exact-output quote with a deposit address.

        Raises:
            TransientError: On network errors
            ProviderError: If the provider rejects the request
        """
        pass


class OneClickQuoteProvider(QuoteProvider):
    """Client for the 1-Click quote and token endpoints"""

    TOKEN_CACHE_TTL = 300

    def __init__(
        self,
        api_base: str,
        api_token: Optional[str] = None,
        referral: Optional[str] = None,
        slippage_bps: int = 100,
        deadline_minutes: int = 60,
        timeout: int = 30,
        retry_count: int = 3,
        session: Optional[requests.Session] = None
    ):
        self.api_base = validate_service_url("quote_api_base", api_base)
        self.referral = referral
        self.slippage_bps = slippage_bps
        self.deadline_minutes = deadline_minutes
        self.timeout = timeout
        self.session = session or build_session(retry_count, api_token)
        self._token_cache: TTLCache = TTLCache(maxsize=1, ttl=self.TOKEN_CACHE_TTL)
        self._stale_tokens: List[ProviderToken] = []
        self._lock = threading.RLock()

    def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = self.session.request(
                method, f"{self.api_base}{path}", timeout=self.timeout, **kwargs
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"Quote provider unreachable: {e}")
        except requests.RequestException as e:
            raise TransientError(f"Quote request failed: {e}")
        if response.status_code >= 500:
            raise TransientError(f"Quote provider returned {response.status_code}")
        if response.status_code >= 400:
            try:
                message = response.json().get("message", response.text)
            except ValueError:
                message = response.text
            raise ProviderError(f"Quote provider rejected request: {message}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from quote provider: {e}")

    @staticmethod
    def _parse_token(item: Dict[str, Any]) -> Optional[ProviderToken]:
        symbol = item.get("symbol") or ""
        asset_id = item.get("assetId") or item.get("tokenId") or item.get("address")
        chain = normalize_chain_name(item.get("blockchain") or item.get("chain") or "")
        if not (symbol and asset_id and chain):
            return None
        price = None
        if item.get("price") is not None:
            try:
                price = Decimal(str(item["price"]))
            except InvalidOperation:
                price = None
        return ProviderToken(
            symbol=symbol,
            chain=chain,
            asset_id=asset_id,
            decimals=int(item.get("decimals", 18)),
            price=price,
        )

    def get_tokens(self) -> List[ProviderToken]:
        """
        Token list, cached for five minutes; a stale copy is served on failure.
        """
        with self._lock:
            cached = self._token_cache.get("tokens")
            if cached is not None:
                return cached
            try:
                data = self._request("GET", "/v0/tokens")
            except (TransientError, ProviderError) as e:
                if self._stale_tokens:
                    logger.warning(f"Token list refresh failed, using stale list: {e}")
                    return self._stale_tokens
                raise
            items = data if isinstance(data, list) else data.get("tokens", [])
            tokens = [t for t in (self._parse_token(i) for i in items) if t is not None]
            self._token_cache["tokens"] = tokens
            self._stale_tokens = tokens
            return tokens

    def find_token(self, symbol: str, chain: str) -> Optional[ProviderToken]:
        sym = (symbol or "").strip().upper()
        ch = normalize_chain_name(chain)
        for token in self.get_tokens():
            if token.symbol.upper() == sym and token.chain == ch:
                return token
        logger.warning(f"Token {symbol} on {chain} not listed by provider")
        return None

    def get_price(self, symbol: str, chain: str) -> Decimal:
        try:
            token = self.find_token(symbol, chain)
        except TransientError as e:
            raise PriceUnavailableError(f"Price for {symbol} on {chain} unavailable: {e}")
        if token is None or token.price is None or token.price <= 0:
            raise PriceUnavailableError(f"No price for {symbol} on {chain}")
        return token.price

    def get_deposit_quote(
        self,
        from_token: ProviderToken,
        to_token: ProviderToken,
        amount_out: Decimal,
        recipient: str,
        refund_address: Optional[str] = None
    ) -> Quote:
        deadline = utc_now() + timedelta(minutes=self.deadline_minutes)
        body = {
            "dry": False,
            "swapType": "EXACT_OUTPUT",
            "depositMode": "SIMPLE",
            "slippageTolerance": self.slippage_bps,
            "originAsset": from_token.asset_id,
            "depositType": "ORIGIN_CHAIN",
            "destinationAsset": to_token.asset_id,
            "amount": str(to_atomic(amount_out, to_token.decimals)),
            "refundTo": refund_address or recipient,
            "refundType": "ORIGIN_CHAIN",
            "recipient": recipient,
            "recipientType": "DESTINATION_CHAIN",
            "deadline": deadline.isoformat().replace("+00:00", "Z"),
            "quoteWaitingTimeMs": 3000,
        }
        if self.referral:
            body["referral"] = self.referral

        raw = self._request("POST", "/v0/quote", json=body)
        quote = raw.get("quote") or raw
        deposit_address = quote.get("depositAddress") or quote.get("address")
        if not deposit_address:
            raise ProviderError("Quote response has no deposit address")

        quote_deadline = None
        if quote.get("deadline"):
            try:
                quote_deadline = datetime.fromisoformat(str(quote["deadline"]).replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable quote deadline: {quote['deadline']}")

        return Quote(
            deposit_address=deposit_address,
            quote_id=quote.get("id") or quote.get("quoteId") or raw.get("correlationId"),
            memo=quote.get("memo"),
            deadline=quote_deadline or deadline,
            time_estimate=quote.get("timeEstimate"),
            min_amount_in=quote.get("minAmountIn") or quote.get("amountIn"),
            min_amount_in_formatted=quote.get("minAmountInFormatted") or quote.get("amountInFormatted"),
            raw=raw,
        )
