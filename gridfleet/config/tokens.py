"""
Token registry for the Katana deployment.

Symbols are the ledger's token identity; addresses and decimals are looked
up here whenever an amount crosses the wei boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from gridfleet.core.errors import UnknownToken

NATIVE_ADDRESS = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"
QUOTE_SYMBOL = "USDC"


@dataclass(frozen=True)
class Token:
    symbol: str
    address: str
    decimals: int
    is_native: bool = False


_DEFAULT_TOKENS: Tuple[Token, ...] = (
    Token("ETH", NATIVE_ADDRESS, 18, is_native=True),
    Token("USDC", "0x203A662b0BD271A6ed5a60EdFbd04bFce608FD36", 6),
    Token("WETH", "0xEE7D8BCFb72bC1880D0Cf19822eB0A2e6577aB62", 18),
    Token("WBTC", "0x0913DA6Da4b42f538B445599b46Bb4622342Cf52", 8),
    Token("POL", "0xb24e3035d1FCBC0E43CF3143C3Fd92E53df2009b", 18),
    Token("AUSD", "0x00000000eFE302BEAA2b3e6e1b18d08D69a9012a", 6),
    Token("BTCK", "0xB0F70C0bD6FD87dbEb7C10dC692a2a6106817072", 8),
    Token("SUSHI", "0x17BFF452dae47e07CeA877Ff0E1aba17eB62b0aB", 18),
    Token("FRXUSD", "0x80Eede496655FB9047dd39d9f418d5483ED600df", 18),
    Token("SFRXUSD", "0x5Bff88cA1442c2496f7E475E9e7786383Bc070c0", 18),
    Token("USOL", "0x9B8Df6E244526ab5F6e6400d331DB28C8fdDdb55", 18),
    Token("WSTETH", "0x7Fb4D0f51544F24F385a421Db6e7D4fC71Ad8e5C", 18),
)

# Natives are routed and priced through their wrapped token
WRAPPED_NATIVE = {"ETH": "WETH"}


class TokenRegistry:
    def __init__(self, tokens: Iterable[Token] = _DEFAULT_TOKENS) -> None:
        self._by_symbol: Dict[str, Token] = {}
        for token in tokens:
            self.register(token)

    def register(self, token: Token) -> None:
        self._by_symbol[token.symbol.upper()] = token

    def get(self, symbol: str) -> Token:
        token = self._by_symbol.get(symbol.strip().upper())
        if token is None:
            raise UnknownToken(symbol)
        return token

    def find(self, symbol: str) -> Optional[Token]:
        return self._by_symbol.get(symbol.strip().upper())

    def find_by_address(self, address: str) -> Optional[Token]:
        addr = address.lower()
        for token in self._by_symbol.values():
            if token.address.lower() == addr:
                return token
        return None

    def all(self) -> List[Token]:
        return list(self._by_symbol.values())

    def wrapped(self, token: Token) -> Token:
        """Wrapped counterpart used for routing and pricing (identity for ERC20s)."""
        wrapped_symbol = WRAPPED_NATIVE.get(token.symbol)
        if token.is_native and wrapped_symbol:
            return self.get(wrapped_symbol)
        return token

    def parse_trading_pool(self, pool: str) -> Tuple[Token, Token]:
        """
        Parse "TARGET/BASE" into (target, base).

        "ETH/USDC" trades ETH (target) against USDC (base).
        """
        parts = [p.strip() for p in pool.split("/")]
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid trading pool format: {pool!r}. Expected TARGET/BASE")
        return self.get(parts[0]), self.get(parts[1])


TOKENS = TokenRegistry()


def get_token(symbol: str) -> Token:
    return TOKENS.get(symbol)


def parse_trading_pool(pool: str) -> Tuple[Token, Token]:
    return TOKENS.parse_trading_pool(pool)
