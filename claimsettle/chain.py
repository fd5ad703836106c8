"""
Supported chains and tokens, and on-chain balance reads.
"""
import logging
import threading
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Union

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .exceptions import InputValidationError, TransientError
from .utils import to_atomic, truncate_address

logger = logging.getLogger(__name__)

ERC20_ABI = [
    {
        "inputs": [{"internalType": "address", "name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "address", "name": "spender", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"internalType": "bool", "name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


@dataclass(frozen=True)
class TokenSpec:
    """
    A token on one chain.

    ``dust`` and ``gas_reserve`` are in human units. A companion balance
    below ``dust`` counts as "not funded yet"; ``gas_reserve`` is held back
    to pay for the outgoing transactions.
    """
    symbol: str
    address: Optional[str]
    decimals: int
    dust: Decimal
    gas_reserve: Decimal

    @property
    def is_native(self) -> bool:
        return self.address is None

    @property
    def dust_atomic(self) -> int:
        return to_atomic(self.dust, self.decimals)

    @property
    def gas_reserve_atomic(self) -> int:
        return to_atomic(self.gas_reserve, self.decimals)


@dataclass(frozen=True)
class ChainSpec:
    chain_id: int
    name: str
    rpc_url: str
    tokens: Dict[str, TokenSpec]


def _eth() -> TokenSpec:
    return TokenSpec("ETH", None, 18, Decimal("0.00001"), Decimal("0.0005"))


def _weth(address: str) -> TokenSpec:
    return TokenSpec("WETH", address, 18, Decimal("0.00001"), Decimal("0.0001"))


def _stable(symbol: str, address: str) -> TokenSpec:
    return TokenSpec(symbol, address, 6, Decimal("0.001"), Decimal("0.1"))


WETH_OP_STACK = "0x4200000000000000000000000000000000000006"

DEFAULT_CHAINS: List[ChainSpec] = [
    ChainSpec(1, "ethereum", "https://eth.llamarpc.com", {
        "ETH": _eth(),
        "WETH": _weth("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"),
        "USDC": _stable("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"),
        "USDT": _stable("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7"),
    }),
    ChainSpec(8453, "base", "https://mainnet.base.org", {
        "ETH": _eth(),
        "WETH": _weth(WETH_OP_STACK),
        "USDC": _stable("USDC", "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"),
        "USDT": _stable("USDT", "0xfde4C96c8593536E31F229EA8f37b2ADa2699bb2"),
    }),
    ChainSpec(10, "optimism", "https://mainnet.optimism.io", {
        "ETH": _eth(),
        "WETH": _weth(WETH_OP_STACK),
        "USDC": _stable("USDC", "0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85"),
        "USDT": _stable("USDT", "0x94b008aA00579c1307B0EF2c499aD98a8ce58e58"),
    }),
    ChainSpec(42161, "arbitrum", "https://arb1.arbitrum.io/rpc", {
        "ETH": _eth(),
        "WETH": _weth("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1"),
        "USDC": _stable("USDC", "0xaf88d065e77c8cC2239327C5EDb3A432268e5831"),
        "USDT": _stable("USDT", "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9"),
    }),
    ChainSpec(137, "polygon", "https://polygon-rpc.com", {
        "WETH": _weth("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619"),
        "USDC": _stable("USDC", "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"),
        "USDT": _stable("USDT", "0xc2132D05D31c914a87C6611C10748AEb04B58e8F"),
    }),
]

CHAIN_ALIASES = {
    "eth": 1, "ethereum": 1, "mainnet": 1,
    "base": 8453,
    "op": 10, "optimism": 10,
    "arb": 42161, "arbitrum": 42161,
    "pol": 137, "polygon": 137, "matic": 137,
}


class ChainRegistry:
    """Lookup of chains, tokens and RPC endpoints"""

    def __init__(
        self,
        chains: Optional[Iterable[ChainSpec]] = None,
        rpc_overrides: Optional[Dict[int, str]] = None
    ):
        self._chains = {c.chain_id: c for c in (chains or DEFAULT_CHAINS)}
        self._rpc_overrides = dict(rpc_overrides or {})

    def resolve_chain_id(self, chain: Union[str, int]) -> int:
        """
        Accept a chain id or a name like ``"base"``.

        Raises:
            InputValidationError: If the chain is not supported
        """
        if isinstance(chain, int):
            chain_id = chain
        elif str(chain).isdigit():
            chain_id = int(chain)
        else:
            chain_id = CHAIN_ALIASES.get(str(chain).lower(), -1)
        if chain_id not in self._chains:
            raise InputValidationError(f"Unsupported chain: {chain}")
        return chain_id

    def chain(self, chain: Union[str, int]) -> ChainSpec:
        return self._chains[self.resolve_chain_id(chain)]

    def token(self, chain: Union[str, int], symbol: str) -> TokenSpec:
        spec = self.chain(chain)
        token = spec.tokens.get(symbol.upper())
        if token is None:
            raise InputValidationError(f"Unsupported token {symbol} on {spec.name}")
        return token

    def rpc_url(self, chain: Union[str, int]) -> str:
        chain_id = self.resolve_chain_id(chain)
        return self._rpc_overrides.get(chain_id) or self._chains[chain_id].rpc_url

    def is_swap_supported(self, chain: Union[str, int], from_symbol: str, to_symbol: str) -> bool:
        """True if both tokens are known on the chain"""
        try:
            tokens = self.chain(chain).tokens
        except InputValidationError:
            return False
        return from_symbol.upper() in tokens and to_symbol.upper() in tokens


class BalanceReader:
    """Reads native and ERC20 balances through web3"""

    def __init__(
        self,
        registry: ChainRegistry,
        web3_factory: Optional[Callable[[str], Web3]] = None
    ):
        self.registry = registry
        self._web3_factory = web3_factory or (lambda url: Web3(Web3.HTTPProvider(url)))
        self._clients: Dict[int, Web3] = {}
        self._lock = threading.Lock()

    def web3(self, chain_id: int) -> Web3:
        with self._lock:
            if chain_id not in self._clients:
                self._clients[chain_id] = self._web3_factory(self.registry.rpc_url(chain_id))
            return self._clients[chain_id]

    def balance_of(self, chain_id: int, token: TokenSpec, address: str) -> int:
        """
        Balance in smallest units.

        Raises:
            TransientError: On RPC or network failure
        """
        w3 = self.web3(chain_id)
        try:
            owner = Web3.to_checksum_address(address)
            if token.is_native:
                return int(w3.eth.get_balance(owner))
            contract = w3.eth.contract(
                address=Web3.to_checksum_address(token.address), abi=ERC20_ABI
            )
            return int(contract.functions.balanceOf(owner).call())
        except (Web3Exception, requests.RequestException, OSError) as e:
            logger.debug(f"Balance read failed for {truncate_address(address)} on {chain_id}: {e}")
            raise TransientError(f"Balance read failed on chain {chain_id}: {e}")
