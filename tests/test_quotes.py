"""
Tests for the 1-Click quote and token client.
"""
from decimal import Decimal

import pytest

from claimsettle.exceptions import PriceUnavailableError, ProviderError, TransientError
from claimsettle.providers.quotes import OneClickQuoteProvider, ProviderToken, normalize_chain_name

API = "https://quotes.example.com"
RECIPIENT = "0x1234567890123456789012345678901234567890"

TOKENS = [
    {"assetId": "nep141:base-usdc", "symbol": "USDC", "blockchain": "base", "decimals": 6, "price": 1.0},
    {"assetId": "nep141:eth", "symbol": "ETH", "blockchain": "eth", "decimals": 18, "price": 2600.5},
    {"assetId": "nep141:arb-usdt", "symbol": "USDT", "blockchain": "arb", "decimals": 6},
    {"symbol": "BROKEN"},
]


@pytest.fixture
def provider():
    return OneClickQuoteProvider(API, referral="claimsettle", retry_count=0)


def test_normalize_chain_name():
    assert normalize_chain_name("ETH") == "ethereum"
    assert normalize_chain_name(" arb ") == "arbitrum"
    assert normalize_chain_name("base") == "base"


def test_get_tokens_parses_and_caches(provider, requests_mock):
    route = requests_mock.get(f"{API}/v0/tokens", json=TOKENS)

    tokens = provider.get_tokens()
    provider.get_tokens()

    assert route.call_count == 1
    assert [t.symbol for t in tokens] == ["USDC", "ETH", "USDT"]
    assert tokens[1].chain == "ethereum"
    assert tokens[1].price == Decimal("2600.5")


def test_stale_tokens_served_on_failure(provider, requests_mock):
    requests_mock.get(f"{API}/v0/tokens", json=TOKENS)
    provider.get_tokens()
    provider._token_cache.clear()
    requests_mock.get(f"{API}/v0/tokens", status_code=502)

    assert len(provider.get_tokens()) == 3


def test_token_failure_without_cache_raises(provider, requests_mock):
    requests_mock.get(f"{API}/v0/tokens", status_code=502)
    with pytest.raises(TransientError):
        provider.get_tokens()


def test_find_token_and_price(provider, requests_mock):
    requests_mock.get(f"{API}/v0/tokens", json=TOKENS)

    assert provider.find_token("usdc", "base").asset_id == "nep141:base-usdc"
    assert provider.find_token("USDC", "solana") is None
    assert provider.get_price("ETH", "eth") == Decimal("2600.5")
    with pytest.raises(PriceUnavailableError):
        provider.get_price("USDT", "arbitrum")
    with pytest.raises(PriceUnavailableError):
        provider.get_price("DOGE", "base")


def test_price_unavailable_when_provider_down(provider, requests_mock):
    requests_mock.get(f"{API}/v0/tokens", status_code=500)
    with pytest.raises(PriceUnavailableError):
        provider.get_price("USDC", "base")


def test_get_deposit_quote_request_and_parse(provider, requests_mock):
    route = requests_mock.post(f"{API}/v0/quote", json={
        "correlationId": "corr-1",
        "quote": {
            "depositAddress": "0xdeposit",
            "minAmountInFormatted": "100.5",
            "deadline": "2030-01-01T00:00:00Z",
            "timeEstimate": 90,
        },
    })
    source = ProviderToken("ETH", "ethereum", "nep141:eth", 18)
    dest = ProviderToken("USDC", "base", "nep141:base-usdc", 6)

    quote = provider.get_deposit_quote(source, dest, Decimal("100"), RECIPIENT)

    body = route.last_request.json()
    assert body["swapType"] == "EXACT_OUTPUT"
    assert body["depositMode"] == "SIMPLE"
    assert body["slippageTolerance"] == 100
    assert body["amount"] == "100000000"
    assert body["originAsset"] == "nep141:eth"
    assert body["destinationAsset"] == "nep141:base-usdc"
    assert body["refundTo"] == RECIPIENT
    assert body["recipientType"] == "DESTINATION_CHAIN"
    assert body["referral"] == "claimsettle"
    assert quote.deposit_address == "0xdeposit"
    assert quote.quote_id == "corr-1"
    assert quote.min_amount_in_formatted == "100.5"
    assert quote.time_estimate == 90
    assert quote.deadline.year == 2030


def test_quote_without_deposit_address_rejected(provider, requests_mock):
    requests_mock.post(f"{API}/v0/quote", json={"quote": {}})
    source = ProviderToken("ETH", "ethereum", "nep141:eth", 18)
    dest = ProviderToken("USDC", "base", "nep141:base-usdc", 6)
    with pytest.raises(ProviderError):
        provider.get_deposit_quote(source, dest, Decimal("1"), RECIPIENT)


def test_quote_rejection_carries_message(provider, requests_mock):
    requests_mock.post(f"{API}/v0/quote", status_code=400, json={"message": "amount too low"})
    source = ProviderToken("ETH", "ethereum", "nep141:eth", 18)
    dest = ProviderToken("USDC", "base", "nep141:base-usdc", 6)
    with pytest.raises(ProviderError, match="amount too low"):
        provider.get_deposit_quote(source, dest, Decimal("0.01"), RECIPIENT)
