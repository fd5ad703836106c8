"""
Tests for provider status normalization and the 1-Click status client.
"""
import pytest
import requests

from claimsettle.exceptions import ProviderError, TransientError
from claimsettle.providers.status import (
    NormalizedStatus, OneClickStatusProvider, extract_tx_hash, normalize_status
)

API = "https://status.example.com"
DEPOSIT = "0xdeposit000000000000000000000000000000001"


@pytest.mark.parametrize("raw,expected", [
    ("PENDING_DEPOSIT", NormalizedStatus.PENDING),
    ("KNOWN_DEPOSIT_TX", NormalizedStatus.PROCESSING),
    ("PROCESSING", NormalizedStatus.PROCESSING),
    ("SUCCESS", NormalizedStatus.COMPLETE),
    ("FAILED", NormalizedStatus.FAILED),
    ("REFUNDED", NormalizedStatus.FAILED),
    ("INCOMPLETE_DEPOSIT", NormalizedStatus.FAILED),
    ("success", NormalizedStatus.COMPLETE),
    ("SOMETHING_NEW", NormalizedStatus.PENDING),
])
def test_normalize_status(raw, expected):
    assert normalize_status({"status": raw}) == expected


def test_missing_status_is_pending():
    assert normalize_status({}) == NormalizedStatus.PENDING


def test_incomplete_deposit_with_amount_but_no_expected_is_processing():
    payload = {
        "status": "INCOMPLETE_DEPOSIT",
        "swapDetails": {"depositedAmountFormatted": "0.5", "amountInFormatted": None},
    }
    assert normalize_status(payload) == NormalizedStatus.PROCESSING

    payload["swapDetails"]["amountInFormatted"] = ""
    assert normalize_status(payload) == NormalizedStatus.PROCESSING


def test_incomplete_deposit_with_expected_amount_is_failed():
    payload = {
        "status": "INCOMPLETE_DEPOSIT",
        "swapDetails": {"depositedAmountFormatted": "0.5", "amountInFormatted": "1.0"},
    }
    assert normalize_status(payload) == NormalizedStatus.FAILED


def test_incomplete_deposit_with_zero_deposit_is_failed():
    payload = {"status": "INCOMPLETE_DEPOSIT", "swapDetails": {"depositedAmountFormatted": "0"}}
    assert normalize_status(payload) == NormalizedStatus.FAILED


def test_extract_tx_hash_sources():
    assert extract_tx_hash({"txHash": "0xaa"}) == "0xaa"
    assert extract_tx_hash({"swapDetails": {"destinationChainTxHashes": [{"hash": "0xbb"}]}}) == "0xbb"
    assert extract_tx_hash({"swapDetails": {"withdrawTxHashes": ["0xcc"]}}) == "0xcc"
    assert extract_tx_hash({"status": "SUCCESS"}) is None


class TestOneClickStatusProvider:

    @pytest.fixture
    def provider(self):
        return OneClickStatusProvider(API, api_token="token", retry_count=0)

    def test_rejects_plain_http(self):
        with pytest.raises(ValueError):
            OneClickStatusProvider("http://status.example.com")

    def test_allows_localhost_http(self):
        assert OneClickStatusProvider("http://localhost:8080/").api_base == "http://localhost:8080"

    def test_poll_success(self, provider, requests_mock):
        route = requests_mock.get(f"{API}/v0/status", json={
            "status": "SUCCESS",
            "swapDetails": {"destinationChainTxHashes": [{"hash": "0xfeed"}]},
        })

        result = provider.poll(DEPOSIT)

        assert result.is_complete
        assert result.status == "SUCCESS"
        assert result.tx_hash == "0xfeed"
        assert route.last_request.qs == {"depositaddress": [DEPOSIT.lower()]}
        assert route.last_request.headers["Authorization"] == "Bearer token"

    def test_5xx_is_transient(self, provider, requests_mock):
        requests_mock.get(f"{API}/v0/status", status_code=503)
        with pytest.raises(TransientError):
            provider.poll(DEPOSIT)

    def test_4xx_is_provider_error(self, provider, requests_mock):
        requests_mock.get(f"{API}/v0/status", status_code=404, json={"message": "not found"})
        with pytest.raises(ProviderError) as excinfo:
            provider.poll(DEPOSIT)
        assert excinfo.value.status_code == 404

    def test_connection_error_is_transient(self, provider, requests_mock):
        requests_mock.get(f"{API}/v0/status", exc=requests.ConnectionError("refused"))
        with pytest.raises(TransientError):
            provider.poll(DEPOSIT)

    def test_timeout_is_transient(self, provider, requests_mock):
        requests_mock.get(f"{API}/v0/status", exc=requests.Timeout("slow"))
        with pytest.raises(TransientError):
            provider.poll(DEPOSIT)

    def test_invalid_json_is_transient(self, provider, requests_mock):
        requests_mock.get(f"{API}/v0/status", text="<html>")
        with pytest.raises(TransientError):
            provider.poll(DEPOSIT)

    def test_empty_address_rejected(self, provider):
        with pytest.raises(ValueError):
            provider.poll("")
