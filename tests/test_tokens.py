"""
Tests for the token registry.
"""
import pytest

from swap_engine.exceptions import InvalidTokenPairError, UnknownTokenError
from swap_engine.tokens import NATIVE_MINT, TokenInfo, TokenRegistry


class TestTokenRegistry:
    """Symbol and mint lookups."""

    def test_resolve_is_case_insensitive(self, registry):
        assert registry.resolve_address("sol") == NATIVE_MINT
        assert registry.resolve_address("SOL") == NATIVE_MINT
        assert registry.resolve_address("Usdc") == "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"

    def test_unknown_symbol(self, registry):
        with pytest.raises(UnknownTokenError) as exc:
            registry.resolve_address("DOGE")
        assert "DOGE" in str(exc.value)
        assert exc.value.retryable is False

    def test_decimals_by_address(self, registry):
        assert registry.decimals(NATIVE_MINT) == 9
        assert registry.decimals(registry.resolve_address("USDT")) == 6

    def test_decimals_unknown_mint(self, registry):
        with pytest.raises(UnknownTokenError):
            registry.decimals("NotAMint1111111111111111111111111111111111")

    def test_validate_pair_same_token(self, registry):
        with pytest.raises(InvalidTokenPairError):
            registry.validate_pair("SOL", "sol")

    def test_validate_pair_unknown(self, registry):
        with pytest.raises(UnknownTokenError):
            registry.validate_pair("SOL", "BONK")

    def test_validate_pair_ok(self, registry):
        registry.validate_pair("SOL", "USDC")

    def test_extra_tokens_from_config(self):
        registry = TokenRegistry.from_config({
            "bonk": {"address": "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", "decimals": 5},
        })
        assert registry.get("BONK") == TokenInfo("BONK", "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263", 5)
        assert registry.symbol_for("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263") == "BONK"
        assert "SOL" in registry.symbols
        assert registry.is_supported("bonk")
