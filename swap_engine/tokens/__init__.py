from .registry import TokenInfo, TokenRegistry, DEFAULT_TOKENS, NATIVE_MINT

__all__ = ["TokenInfo", "TokenRegistry", "DEFAULT_TOKENS", "NATIVE_MINT"]
