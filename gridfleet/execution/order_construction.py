"""
OrderConstructor: builds validated limit-order descriptors.

Given a wallet, an order type, a token pair, a human source amount and a
limit price (destination per source), produce an OrderDescriptor:

    from_amount_wei  = floor(amount * 10^from_decimals)
    expected_out_wei = from_amount_wei * limit_price, rescaled to to_decimals
    to_amount_min    = expected_out * (100 - slippage) / 100
    deadline         = now + expiry_hours

The only side effect is a balance read; construction is deterministic for
identical inputs and an unchanged balance, so it is safe to retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from gridfleet.config.tokens import TOKENS, Token, TokenRegistry
from gridfleet.core.errors import InsufficientBalance
from gridfleet.core.json_utils import dumps
from gridfleet.core.units import (
    deadline as make_deadline,
    from_wei,
    min_amount_out,
    output_amount_wei,
    to_decimal,
    to_wei,
)
from gridfleet.state.models import OrderType
from gridfleet.venue.interfaces import ChainClient, OrderDescriptor

log = logging.getLogger("gridfleet")

TokenLike = Union[Token, str]


@dataclass
class OrderConstructionConfig:
    slippage_pct: float = 0.1
    fill_delay_seconds: int = 180
    log_event_callback: Optional[Callable[..., None]] = None


class OrderConstructor:
    def __init__(
        self,
        chain: ChainClient,
        registry: TokenRegistry = TOKENS,
        config: Optional[OrderConstructionConfig] = None,
    ) -> None:
        self.chain = chain
        self.registry = registry
        self.config = config or OrderConstructionConfig()
        self._log_event = self.config.log_event_callback or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(dumps({"event": event, **kwargs}))

    def _token(self, token: TokenLike) -> Token:
        return token if isinstance(token, Token) else self.registry.get(token)

    async def construct(
        self,
        wallet_address: str,
        order_type: OrderType,
        from_token: TokenLike,
        to_token: TokenLike,
        amount: Any,
        limit_price: float,
        expiry_hours: float,
        grid_offset: Optional[float] = None,
        slippage_pct: Optional[float] = None,
        now: Optional[float] = None,
    ) -> OrderDescriptor:
        """
        Build a descriptor or raise.

        Raises:
            ValueError: non-positive amount/price, or amount below one smallest unit
            InsufficientBalance: wallet holds less than `amount` of the source token
        """
        src = self._token(from_token)
        dst = self._token(to_token)
        if src.symbol == dst.symbol:
            raise ValueError(f"Order tokens must differ: {src.symbol}")
        human_amount = to_decimal(amount)
        if human_amount <= 0:
            raise ValueError(f"Order amount must be positive, got {amount}")
        if limit_price is None or limit_price <= 0:
            raise ValueError(f"Limit price must be positive, got {limit_price}")

        slippage = self.config.slippage_pct if slippage_pct is None else slippage_pct
        from_amount_wei = to_wei(human_amount, src.decimals)
        if from_amount_wei <= 0:
            raise ValueError(f"Amount {amount} {src.symbol} is below one smallest unit")
        expected_out_wei = output_amount_wei(from_amount_wei, limit_price, src.decimals, dst.decimals)
        to_min_wei = min_amount_out(expected_out_wei, slippage)
        expires = make_deadline(expiry_hours, now=now)

        balance = await self.chain.get_balance(src, wallet_address)
        normalized = from_wei(from_amount_wei, src.decimals)
        if balance < normalized:
            raise InsufficientBalance(src.symbol, float(balance), float(normalized), wallet=wallet_address)

        descriptor = OrderDescriptor(
            wallet_address=wallet_address,
            order_type=order_type,
            from_token=src,
            to_token=dst,
            from_amount=normalized,
            from_amount_wei=from_amount_wei,
            to_amount_min=from_wei(to_min_wei, dst.decimals),
            to_amount_min_wei=to_min_wei,
            limit_price=float(limit_price),
            deadline=expires,
            chunk_amount_wei=from_amount_wei,
            fill_delay_seconds=self.config.fill_delay_seconds,
            grid_offset=grid_offset,
        )
        self._log_event(
            "order_constructed",
            wallet=wallet_address,
            order_type=order_type.value,
            from_token=src.symbol,
            to_token=dst.symbol,
            from_amount=str(normalized),
            to_amount_min=str(descriptor.to_amount_min),
            limit_price=descriptor.limit_price,
            deadline=expires,
            balance=str(balance),
        )
        return descriptor

    @staticmethod
    def describe(descriptor: OrderDescriptor) -> str:
        return (
            f"{descriptor.order_type.value}: {descriptor.from_amount} {descriptor.from_token.symbol} -> "
            f">= {descriptor.to_amount_min} {descriptor.to_token.symbol} @ {descriptor.limit_price:.8g}"
        )
