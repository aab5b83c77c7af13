"""
TWAP limit-order venue adapter.

- Order transactions are encoded by the relayer (POST {venue_url}/orders/prepare)
  and signed/sent locally through the chain client
- A maker's orders come from the indexer (GET {venue_url}/orders/{maker}),
  normalised to VenueOrder with human amounts
- Rebalance swaps use the swap router (GET {swap_router_url}/{chain_id})

Only listing and route lookups are retried (VENUE_POLICY); submissions are
not, since a resend could double-place an order.
"""

from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from gridfleet.config.tokens import TOKENS, Token, TokenRegistry
from gridfleet.core.errors import VenueError
from gridfleet.core.json_utils import dumps
from gridfleet.core.retry import VENUE_POLICY, RetryPolicy
from gridfleet.core.units import from_wei
from gridfleet.venue.interfaces import (
    VENUE_COMPLETED,
    OrderDescriptor,
    SubmissionReceipt,
    SwapRoute,
    VenueOrder,
    VenueOrderBook,
)
from gridfleet.venue.rpc_chain import RpcChainClient

log = logging.getLogger("gridfleet")

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def _amount(raw: Any, token: Optional[Token]) -> Decimal:
    if raw in (None, ""):
        return Decimal(0)
    if token is None:
        return Decimal(str(raw))
    return from_wei(int(Decimal(str(raw))), token.decimals)


class TwapVenueClient:
    def __init__(
        self,
        venue_url: str,
        swap_router_url: str,
        chain: RpcChainClient,
        twap_contract: str,
        chain_id: int,
        timeout: float = 10.0,
        policy: RetryPolicy = VENUE_POLICY,
        registry: TokenRegistry = TOKENS,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.venue_url = venue_url.rstrip("/")
        self.swap_router_url = swap_router_url.rstrip("/")
        self.chain = chain
        self.chain_id = chain_id
        self._spender = twap_contract
        self._policy = policy
        self._registry = registry
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True

    @property
    def spender(self) -> str:
        return self._spender

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _token_at(self, address: Optional[str]) -> Optional[Token]:
        if not address:
            return None
        if address.lower() == ZERO_ADDRESS:
            return self._registry.find("ETH")
        return self._registry.find_by_address(address)

    # ── Limit orders ──

    async def _prepare(self, descriptor: OrderDescriptor) -> Dict[str, Any]:
        payload = {
            "srcToken": descriptor.from_token.address,
            "dstToken": descriptor.to_token.address,
            "srcAmount": str(descriptor.from_amount_wei),
            "dstMinAmount": str(descriptor.to_amount_min_wei),
            "srcChunkAmount": str(descriptor.chunk_amount_wei),
            "deadline": descriptor.deadline,
            "fillDelay": {"unit": "Seconds", "value": descriptor.fill_delay_seconds},
        }
        resp = await self.client.post(f"{self.venue_url}/orders/prepare", json=payload)
        resp.raise_for_status()
        data = resp.json()
        tx = data.get("data", data) if isinstance(data, dict) else None
        if not isinstance(tx, dict) or not tx.get("to") or tx.get("data") in (None, "", "0x"):
            raise VenueError(f"Relayer returned no order transaction: {data!r}")
        return tx

    async def submit_order(self, signer: Any, descriptor: OrderDescriptor) -> SubmissionReceipt:
        tx = await self._policy.run(self._prepare, descriptor, op="venue.prepare")
        value = int(tx.get("value") or descriptor.tx_value)
        tx_hash = await self.chain.send_transaction(signer, tx["to"], tx["data"], value)
        log.info(dumps({
            "event": "order_tx_sent",
            "wallet": descriptor.wallet_address,
            "order_type": descriptor.order_type.value,
            "tx": tx_hash,
        }))
        return await self.chain.wait_for_receipt(tx_hash)

    async def _list(self, wallet_address: str) -> List[Dict[str, Any]]:
        resp = await self.client.get(f"{self.venue_url}/orders/{wallet_address}")
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict):
            data = data.get("ALL", data.get("orders", data.get("data", [])))
        return data if isinstance(data, list) else []

    def _parse(self, raw: Dict[str, Any]) -> VenueOrder:
        src = self._token_at(raw.get("srcTokenAddress"))
        dst = self._token_at(raw.get("dstTokenAddress"))
        status = str(raw.get("status", "Open"))
        progress = 100.0 if status == VENUE_COMPLETED else float(raw.get("progress") or 0)
        created = raw.get("createdAt")
        return VenueOrder(
            id=str(raw.get("id")),
            status=status,
            progress=progress,
            src_amount=_amount(raw.get("srcAmount"), src),
            dst_amount=_amount(raw.get("dstMinAmount", raw.get("dstMinAmountPerChunk")), dst),
            filled_src_amount=_amount(raw.get("filledSrcAmount"), src),
            filled_dst_amount=_amount(raw.get("filledDstAmount"), dst),
            tx_hash=raw.get("txHash"),
            src_token_address=raw.get("srcTokenAddress"),
            dst_token_address=raw.get("dstTokenAddress"),
            deadline=raw.get("deadline"),
            created_at=float(created) / 1000 if created else None,
        )

    async def fetch_orders(self, wallet_address: str) -> VenueOrderBook:
        rows = await self._policy.run(self._list, wallet_address, op="venue.fetch_orders")
        return VenueOrderBook.from_orders([self._parse(r) for r in rows])

    async def find_order_id(self, wallet_address: str, tx_hash: str) -> Optional[str]:
        book = await self.fetch_orders(wallet_address)
        match = book.by_tx_hash().get(tx_hash.lower())
        return match.id if match else None

    # ── Swaps ──

    async def _route(self, params: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self.client.get(f"{self.swap_router_url}/{self.chain_id}", params=params)
        resp.raise_for_status()
        return resp.json()

    async def get_swap_route(
        self, wallet_address: str, token_in: Token, token_out: Token, amount_in_wei: int, slippage_pct: float,
    ) -> Optional[SwapRoute]:
        params = {
            "tokenIn": self._registry.wrapped(token_in).address,
            "tokenOut": self._registry.wrapped(token_out).address,
            "amount": str(amount_in_wei),
            "maxSlippage": slippage_pct / 100,
            "sender": wallet_address,
        }
        data = await self._policy.run(self._route, params, op="venue.swap_route")
        tx = data.get("tx") if isinstance(data, dict) else None
        if not tx or not tx.get("to") or tx.get("data") in (None, "", "0x"):
            log.warning(dumps({
                "event": "swap_no_route",
                "wallet": wallet_address,
                "from": token_in.symbol,
                "to": token_out.symbol,
                "status": data.get("status") if isinstance(data, dict) else None,
            }))
            return None
        return SwapRoute(
            token_in=token_in,
            token_out=token_out,
            amount_in_wei=amount_in_wei,
            amount_out_wei=int(Decimal(str(data.get("assumedAmountOut") or 0))),
            tx_to=tx["to"],
            tx_data=tx["data"],
            tx_value=int(tx.get("value") or 0),
            price_impact=float(data["priceImpact"]) if data.get("priceImpact") is not None else None,
        )

    async def submit_swap(self, signer: Any, route: SwapRoute) -> SubmissionReceipt:
        started = time.monotonic()
        tx_hash = await self.chain.send_transaction(signer, route.tx_to, route.tx_data, route.tx_value)
        receipt = await self.chain.wait_for_receipt(tx_hash)
        log.info(dumps({
            "event": "swap_confirmed",
            "wallet": signer.address,
            "tx": tx_hash,
            "block": receipt.block_number,
            "elapsed_s": round(time.monotonic() - started, 2),
        }))
        return receipt
