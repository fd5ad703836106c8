"""
Attestation ledger clients.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests
from eth_account import Account
from eth_account.signers.base import BaseAccount
from web3 import Web3
from web3.exceptions import ContractLogicError, Web3Exception

from ..exceptions import LedgerError, TransientError
from ..utils import validate_service_url

logger = logging.getLogger(__name__)

ZERO_COMMITMENT = b"\x00" * 32


@dataclass
class LedgerRecord:
    """What the ledger stores for a claim"""
    claim_id: str
    execution_ref: str
    commitment: bytes
    timestamp: int


class AttestationLedger(ABC):
    """Append-only record of claim commitments"""

    @abstractmethod
    def record_payment(self, claim_id: str, execution_ref: str, commitment: bytes) -> str:
        """
        Record a commitment for a claim.

        Returns:
            Transaction reference

        Raises:
            LedgerError: If the submission fails or is rejected
        """
        pass

    @abstractmethod
    def get_payment(self, claim_id: str) -> Optional[LedgerRecord]:
        """The stored record for a claim, or None"""
        pass


class Web3AttestationLedger(AttestationLedger):
    """
    Attestation contract on an EVM chain.

    The contract rejects a second record for the same claim id.
    """

    ATTESTATION_ABI = [
        {
            "inputs": [
                {"internalType": "string", "name": "claimId", "type": "string"},
                {"internalType": "string", "name": "executionRef", "type": "string"},
                {"internalType": "bytes32", "name": "commitment", "type": "bytes32"}
            ],
            "name": "recordPayment",
            "outputs": [],
            "stateMutability": "nonpayable",
            "type": "function"
        },
        {
            "inputs": [{"internalType": "string", "name": "claimId", "type": "string"}],
            "name": "getPayment",
            "outputs": [
                {"internalType": "string", "name": "executionRef", "type": "string"},
                {"internalType": "bytes32", "name": "commitment", "type": "bytes32"},
                {"internalType": "uint64", "name": "timestamp", "type": "uint64"}
            ],
            "stateMutability": "view",
            "type": "function"
        }
    ]

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: Optional[str] = None,
        signer: Optional[BaseAccount] = None,
        w3: Optional[Web3] = None,
        receipt_timeout: int = 120,
        logger_instance: Optional[logging.Logger] = None
    ):
        """
        Args:
            rpc_url: RPC endpoint of the attestation chain
            contract_address: Attestation contract address
            private_key: Key of the submitting account (or pass ``signer``)
            signer: Account used instead of ``private_key``
            w3: Pre-built Web3 instance
            receipt_timeout: Seconds to wait for a receipt
            logger_instance: Optional logger

        Raises:
            ValueError: If no key is given or the RPC URL is not https
        """
        if not private_key and signer is None:
            raise ValueError("Either private_key or signer must be provided")
        self.rpc_url = validate_service_url("attestation_rpc_url", rpc_url)
        self.logger = logger_instance or logger
        self.w3 = w3 or Web3(Web3.HTTPProvider(self.rpc_url))
        self.account = signer or Account.from_key(private_key)
        self.contract = self.w3.eth.contract(
            address=Web3.to_checksum_address(contract_address),
            abi=self.ATTESTATION_ABI
        )
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        return self.account.address

    def record_payment(self, claim_id: str, execution_ref: str, commitment: bytes) -> str:
        if len(commitment) != 32:
            raise LedgerError("Commitment must be 32 bytes")
        fn = self.contract.functions.recordPayment(claim_id, execution_ref, commitment)

        try:
            nonce = self.w3.eth.get_transaction_count(self.address, "pending")
            try:
                gas = int(fn.estimate_gas({"from": self.address}) * 1.1)
                self.logger.debug(f"Estimated gas: {gas}")
            except ContractLogicError as e:
                raise LedgerError(f"Attestation rejected for claim {claim_id}: {e}")
            except Exception as e:
                gas = 300000
                self.logger.warning(f"Gas estimation failed, using default: {gas}. Error: {e}")

            tx = fn.build_transaction({
                "from": self.address,
                "nonce": nonce,
                "gas": gas,
                "gasPrice": self.w3.eth.gas_price,
            })
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"Attestation RPC unavailable: {e}")
        except Web3Exception as e:
            raise LedgerError(f"Failed to build attestation transaction: {e}")

        try:
            signed_tx = self.account.sign_transaction(tx)
        except Exception as e:
            self.logger.error(f"Transaction signing failed: {e}")
            raise LedgerError(f"Failed to sign transaction: {e}")

        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout, poll_latency=0.5
            )
        except (Web3Exception, requests.RequestException, ValueError) as e:
            self.logger.error(f"Failed to send attestation: {e}")
            raise LedgerError(f"Failed to send attestation: {e}")

        tx_hex = tx_hash.hex() if isinstance(tx_hash, bytes) else str(tx_hash)
        if not tx_hex.startswith("0x"):
            tx_hex = "0x" + tx_hex
        if receipt.get("status") != 1:
            raise LedgerError(f"Attestation transaction {tx_hex} reverted")
        self.logger.info(f"Attestation recorded for claim {claim_id}: {tx_hex}")
        return tx_hex

    def get_payment(self, claim_id: str) -> Optional[LedgerRecord]:
        try:
            execution_ref, commitment, timestamp = self.contract.functions.getPayment(claim_id).call()
        except ContractLogicError:
            return None
        except (Web3Exception, requests.RequestException) as e:
            raise TransientError(f"Attestation lookup failed: {e}")
        commitment = bytes(commitment)
        if commitment == ZERO_COMMITMENT:
            return None
        return LedgerRecord(
            claim_id=claim_id,
            execution_ref=execution_ref,
            commitment=commitment,
            timestamp=int(timestamp),
        )
