"""
On-chain transfer and swap execution with an ephemeral signer.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from ..chain import ERC20_ABI, BalanceReader, TokenSpec
from ..exceptions import ConfigurationError, ExecutionFailedError, ProviderError, TransientError
from ..utils import truncate_address, validate_service_url
from ._http import build_session

logger = logging.getLogger(__name__)

NATIVE_TRANSFER_GAS = 21000
DEFAULT_GAS_LIMIT = 300000
GAS_TOP_UP_PERCENT = 120


class Signer(Protocol):
    """Anything that can sign a transaction dict (e.g. an eth_account LocalAccount)"""
    address: str

    def sign_transaction(self, transaction_dict: Dict[str, Any]) -> Any:
        ...


@dataclass
class SwapResult:
    swap_tx_hash: str
    transfer_tx_hash: str
    amount_out: Optional[int] = None


class SwapExecutor(ABC):
    """Executes transfers and swaps from a companion wallet"""

    def supports_source(self, token: TokenSpec) -> bool:
        """True if a wallet holding only ``token`` can pay for its own transactions"""
        return True

    @abstractmethod
    def transfer(
        self,
        signer: Signer,
        chain_id: int,
        token: TokenSpec,
        to_address: str,
        amount: int
    ) -> str:
        """
        Send ``amount`` smallest units of ``token`` to ``to_address``.

        Returns:
            Transaction hash (0x-prefixed hex)

        Raises:
            ExecutionFailedError: If signing, sending or the receipt fails
        """
        pass

    @abstractmethod
    def swap_and_transfer(
        self,
        signer: Signer,
        chain_id: int,
        from_token: TokenSpec,
        to_token: TokenSpec,
        amount_in: int,
        min_amount_out: int,
        recipient: str
    ) -> SwapResult:
        """
        Swap ``amount_in`` of ``from_token`` into ``to_token`` delivered to ``recipient``.

        Raises:
            ExecutionFailedError: If the swap cannot be built or executed
        """
        pass


class Web3SwapExecutor(SwapExecutor):
    """
    Signs and sends transactions directly through web3.

    Swaps are built by an HTTP swap API that returns ready-to-sign
    transactions (approval first, then the swap) for a taker address;
    the swap output goes straight to the recipient.

    Companion wallets funded with an ERC20 token hold no native gas. With a
    ``gas_sponsor`` account, each of their transactions is preceded by a
    native top-up from the sponsor; without one only native-token sources
    are supported.
    """

    def __init__(
        self,
        balances: BalanceReader,
        swap_api_base: Optional[str] = None,
        swap_api_key: Optional[str] = None,
        slippage_bps: int = 100,
        timeout: int = 30,
        retry_count: int = 3,
        receipt_timeout: int = 120,
        session: Optional[requests.Session] = None,
        gas_sponsor: Optional[Signer] = None
    ):
        self.balances = balances
        self.gas_sponsor = gas_sponsor
        self.swap_api_base = validate_service_url("swap_api_base", swap_api_base) if swap_api_base else None
        self.slippage_bps = slippage_bps
        self.timeout = timeout
        self.receipt_timeout = receipt_timeout
        self.session = session or build_session(retry_count)
        if swap_api_key:
            self.session.headers.update({"X-API-Key": swap_api_key})

    def _send(self, w3: Web3, signer: Signer, tx: Dict[str, Any]) -> str:
        try:
            signed_tx = signer.sign_transaction(tx)
        except Exception as e:
            raise ExecutionFailedError(f"Failed to sign transaction: {e}")
        try:
            tx_hash = w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            receipt = w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout, poll_latency=1
            )
        except (Web3Exception, requests.RequestException, ValueError) as e:
            raise ExecutionFailedError(f"Failed to send transaction: {e}")
        tx_hex = tx_hash.hex() if isinstance(tx_hash, bytes) else str(tx_hash)
        if not tx_hex.startswith("0x"):
            tx_hex = "0x" + tx_hex
        if receipt.get("status") != 1:
            raise ExecutionFailedError(f"Transaction {tx_hex} reverted")
        logger.info(f"Transaction confirmed: {tx_hex}")
        return tx_hex

    def _base_params(self, w3: Web3, signer: Signer, chain_id: int) -> Dict[str, Any]:
        try:
            return {
                "from": signer.address,
                "nonce": w3.eth.get_transaction_count(signer.address, "pending"),
                "gasPrice": w3.eth.gas_price,
                "chainId": chain_id,
            }
        except (Web3Exception, requests.RequestException) as e:
            raise TransientError(f"RPC unavailable on chain {chain_id}: {e}")

    def supports_source(self, token: TokenSpec) -> bool:
        return token.is_native or self.gas_sponsor is not None

    def _ensure_gas(self, w3: Web3, signer: Signer, chain_id: int, tx: Dict[str, Any]) -> Optional[str]:
        """Top up ``signer`` from the gas sponsor so it can pay for ``tx``"""
        if self.gas_sponsor is None:
            return None
        needed = tx["gas"] * tx.get("gasPrice", 0) * GAS_TOP_UP_PERCENT // 100 + int(tx.get("value", 0))
        try:
            balance = w3.eth.get_balance(signer.address)
        except (Web3Exception, requests.RequestException) as e:
            raise TransientError(f"RPC unavailable on chain {chain_id}: {e}")
        if balance >= needed:
            return None
        params = self._base_params(w3, self.gas_sponsor, chain_id)
        top_up = {**params, "to": signer.address, "value": needed - balance, "gas": NATIVE_TRANSFER_GAS}
        logger.info(f"Sponsoring {needed - balance} wei of gas for {truncate_address(signer.address)}")
        return self._send(w3, self.gas_sponsor, top_up)

    def transfer(
        self,
        signer: Signer,
        chain_id: int,
        token: TokenSpec,
        to_address: str,
        amount: int
    ) -> str:
        if amount <= 0:
            raise ExecutionFailedError("Transfer amount must be positive")
        w3 = self.balances.web3(chain_id)
        params = self._base_params(w3, signer, chain_id)
        to_address = Web3.to_checksum_address(to_address)

        if token.is_native:
            tx = {**params, "to": to_address, "value": amount, "gas": NATIVE_TRANSFER_GAS}
        else:
            contract = w3.eth.contract(address=Web3.to_checksum_address(token.address), abi=ERC20_ABI)
            fn = contract.functions.transfer(to_address, amount)
            try:
                gas = int(fn.estimate_gas({"from": signer.address}) * 1.1)
            except Exception as e:
                gas = DEFAULT_GAS_LIMIT
                logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")
            tx = fn.build_transaction({**params, "gas": gas})
            self._ensure_gas(w3, signer, chain_id, tx)

        logger.info(f"Sending {token.symbol} transfer to {truncate_address(to_address)} on chain {chain_id}")
        return self._send(w3, signer, tx)

    def _build_swap(
        self,
        chain_id: int,
        from_token: TokenSpec,
        to_token: TokenSpec,
        amount_in: int,
        taker: str,
        recipient: str
    ) -> Dict[str, Any]:
        if not self.swap_api_base:
            raise ConfigurationError("swap_api_base is not configured")
        body = {
            "chainId": chain_id,
            "sellToken": from_token.address or "native",
            "buyToken": to_token.address or "native",
            "sellAmount": str(amount_in),
            "taker": taker,
            "recipient": recipient,
            "slippageBps": self.slippage_bps,
        }
        try:
            response = self.session.post(f"{self.swap_api_base}/v1/swap/build", json=body, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransientError(f"Swap API unreachable: {e}")
        if response.status_code >= 500:
            raise TransientError(f"Swap API returned {response.status_code}")
        if response.status_code >= 400:
            raise ProviderError(f"Swap API rejected request: {response.text}", status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from swap API: {e}")

    def swap_and_transfer(
        self,
        signer: Signer,
        chain_id: int,
        from_token: TokenSpec,
        to_token: TokenSpec,
        amount_in: int,
        min_amount_out: int,
        recipient: str
    ) -> SwapResult:
        plan = self._build_swap(chain_id, from_token, to_token, amount_in, signer.address, recipient)
        amount_out = int(plan.get("buyAmount") or 0)
        if amount_out and amount_out < min_amount_out:
            raise ExecutionFailedError(
                f"Swap output {amount_out} below required {min_amount_out}"
            )
        transactions: List[Dict[str, Any]] = plan.get("transactions") or []
        if not transactions:
            raise ProviderError("Swap API returned no transactions")

        w3 = self.balances.web3(chain_id)
        tx_hash = ""
        for step in transactions:
            params = self._base_params(w3, signer, chain_id)
            tx = {
                **params,
                "to": Web3.to_checksum_address(step["to"]),
                "data": step.get("data", "0x"),
                "value": int(step.get("value", 0)),
                "gas": int(step.get("gas") or DEFAULT_GAS_LIMIT),
            }
            if not from_token.is_native:
                self._ensure_gas(w3, signer, chain_id, tx)
            tx_hash = self._send(w3, signer, tx)

        logger.info(f"Swapped {from_token.symbol} -> {to_token.symbol} on chain {chain_id}: {tx_hash}")
        return SwapResult(swap_tx_hash=tx_hash, transfer_tx_hash=tx_hash, amount_out=amount_out or None)
