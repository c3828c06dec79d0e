"""
Token registry.

Maps symbolic asset names to Solana mint addresses and decimal precision.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Any

from swap_engine.exceptions import InvalidTokenPairError, UnknownTokenError


@dataclass(frozen=True)
class TokenInfo:
    """A registered token."""
    symbol: str
    address: str
    decimals: int


NATIVE_MINT = "So11111111111111111111111111111111111111112"

DEFAULT_TOKENS: List[TokenInfo] = [
    TokenInfo("SOL", NATIVE_MINT, 9),
    TokenInfo("USDC", "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v", 6),
    TokenInfo("USDT", "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB", 6),
]


class TokenRegistry:
    """
    Pure lookup table for supported tokens.

    Symbols are case-insensitive. No I/O is performed.
    """

    def __init__(self, tokens: Optional[Iterable[TokenInfo]] = None):
        self._by_symbol: Dict[str, TokenInfo] = {}
        self._by_address: Dict[str, TokenInfo] = {}
        for token in tokens if tokens is not None else DEFAULT_TOKENS:
            self.register(token)

    @classmethod
    def from_config(cls, extra_tokens: Mapping[str, Mapping[str, Any]]) -> "TokenRegistry":
        """Default tokens plus ``{"SYMBOL": {"address": ..., "decimals": ...}}`` entries."""
        registry = cls()
        for symbol, entry in (extra_tokens or {}).items():
            registry.register(
                TokenInfo(symbol.upper(), entry["address"], int(entry["decimals"]))
            )
        return registry

    def register(self, token: TokenInfo) -> None:
        self._by_symbol[token.symbol.upper()] = token
        self._by_address[token.address] = token

    def get(self, symbol: str) -> TokenInfo:
        token = self._by_symbol.get(symbol.upper())
        if token is None:
            raise UnknownTokenError(symbol)
        return token

    def resolve_address(self, symbol: str) -> str:
        """Mint address for a symbol."""
        return self.get(symbol).address

    def decimals(self, address: str) -> int:
        """Decimal precision for a mint address."""
        token = self._by_address.get(address)
        if token is None:
            raise UnknownTokenError(address)
        return token.decimals

    def symbol_for(self, address: str) -> str:
        token = self._by_address.get(address)
        if token is None:
            raise UnknownTokenError(address)
        return token.symbol

    def is_supported(self, symbol: str) -> bool:
        return symbol.upper() in self._by_symbol

    def validate_pair(self, token_in: str, token_out: str) -> None:
        """
        Check a symbol pair can be swapped.

        Raises:
            InvalidTokenPairError: Same token on both sides
            UnknownTokenError: Either symbol is not registered
        """
        if token_in.upper() == token_out.upper():
            raise InvalidTokenPairError(token_in, token_out)
        self.get(token_in)
        self.get(token_out)

    @property
    def symbols(self) -> List[str]:
        return sorted(self._by_symbol)
