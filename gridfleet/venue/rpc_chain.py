"""
Ethereum JSON-RPC chain client (balances, allowances, signed transactions).

Reads go through RPC_POLICY. Sends are never retried here: a send that
fails with a stale nonce surfaces as NonceConflict and the caller decides
whether to resubmit (the next send always refetches the pending nonce).

Transactions are signed locally with the wallet's eth_account LocalAccount.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from gridfleet.config.tokens import Token
from gridfleet.core.errors import NonceConflict, VenueError, VenueTimeout, looks_like_nonce_error
from gridfleet.core.json_utils import dumps
from gridfleet.core.retry import RPC_POLICY, RetryPolicy
from gridfleet.core.units import from_wei
from gridfleet.venue.interfaces import ApprovalResult, SubmissionReceipt

log = logging.getLogger("gridfleet")

MAX_UINT256 = 2**256 - 1
GAS_MULTIPLIER = 1.2

_BALANCE_OF = "0x70a08231"
_ALLOWANCE = "0xdd62ed3e"
_APPROVE = "0x095ea7b3"


def _word(value: int) -> str:
    return format(value, "064x")


def _addr_word(address: str) -> str:
    return address.lower().removeprefix("0x").rjust(64, "0")


def encode_balance_of(owner: str) -> str:
    return _BALANCE_OF + _addr_word(owner)


def encode_allowance(owner: str, spender: str) -> str:
    return _ALLOWANCE + _addr_word(owner) + _addr_word(spender)


def encode_approve(spender: str, amount: int) -> str:
    return _APPROVE + _addr_word(spender) + _word(amount)


def _hex_int(value: Any) -> int:
    if value in (None, "0x", ""):
        return 0
    return int(value, 16) if isinstance(value, str) else int(value)


class RpcChainClient:
    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        timeout: float = 10.0,
        receipt_timeout: float = 120.0,
        poll_interval: float = 2.0,
        policy: RetryPolicy = RPC_POLICY,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self._receipt_timeout = receipt_timeout
        self._poll_interval = poll_interval
        self._policy = policy
        self._ids = itertools.count(1)
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        resp = await self.client.post(self.rpc_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if isinstance(data, dict) and data.get("error"):
            err = data["error"]
            message = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            if looks_like_nonce_error(message):
                raise NonceConflict(message)
            raise VenueError(f"{method} failed: {message}")
        return data.get("result") if isinstance(data, dict) else None

    async def _read(self, method: str, params: List[Any]) -> Any:
        return await self._policy.run(self._rpc, method, params, op=f"rpc.{method}")

    # ── Reads ──

    async def get_balance(self, token: Token, wallet_address: str) -> Decimal:
        if token.is_native:
            raw = await self._read("eth_getBalance", [wallet_address, "latest"])
        else:
            raw = await self._read(
                "eth_call", [{"to": token.address, "data": encode_balance_of(wallet_address)}, "latest"],
            )
        return from_wei(_hex_int(raw), token.decimals)

    async def get_allowance(self, token: Token, owner: str, spender: str) -> int:
        if token.is_native:
            return MAX_UINT256
        raw = await self._read(
            "eth_call", [{"to": token.address, "data": encode_allowance(owner, spender)}, "latest"],
        )
        return _hex_int(raw)

    async def pending_nonce(self, address: str) -> int:
        return _hex_int(await self._read("eth_getTransactionCount", [address, "pending"]))

    async def gas_price(self) -> int:
        return _hex_int(await self._read("eth_gasPrice", []))

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return _hex_int(await self._read("eth_estimateGas", [tx]))

    # ── Writes ──

    async def send_transaction(self, signer: Any, to: str, data: str, value: int = 0) -> str:
        """Sign and broadcast; returns the transaction hash."""
        sender = signer.address
        call = {"from": sender, "to": to, "data": data, "value": hex(value)}
        nonce = await self.pending_nonce(sender)
        gas = int(await self.estimate_gas(call) * GAS_MULTIPLIER)
        tx = {
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": to,
            "data": data,
            "value": value,
            "gas": gas,
            "gasPrice": await self.gas_price(),
        }
        signed = signer.sign_transaction(tx)
        raw = "0x" + bytes(signed.raw_transaction).hex()
        tx_hash = await self._rpc("eth_sendRawTransaction", [raw])
        log.debug(dumps({"event": "tx_sent", "wallet": sender, "nonce": nonce, "gas": gas, "tx": tx_hash}))
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: Optional[float] = None) -> SubmissionReceipt:
        limit = self._receipt_timeout if timeout is None else timeout
        started = time.monotonic()
        while True:
            receipt = await self._read("eth_getTransactionReceipt", [tx_hash])
            if receipt:
                ok = _hex_int(receipt.get("status", "0x1")) == 1
                if not ok:
                    raise VenueError(f"Transaction {tx_hash} reverted")
                return SubmissionReceipt(
                    tx_hash=tx_hash,
                    block_number=_hex_int(receipt.get("blockNumber")),
                    status=ok,
                )
            if time.monotonic() - started >= limit:
                raise VenueTimeout(f"No receipt for {tx_hash} after {limit:.0f}s")
            await asyncio.sleep(self._poll_interval)

    async def ensure_approval(self, signer: Any, token: Token, spender: str, amount_wei: int) -> ApprovalResult:
        """Approve `spender` for MAX_UINT256 when the current allowance is short."""
        if token.is_native:
            return ApprovalResult(approved=True, already_approved=True)
        current = await self.get_allowance(token, signer.address, spender)
        if current >= amount_wei:
            return ApprovalResult(approved=True, already_approved=True)

        log.info(dumps({
            "event": "approval_requested",
            "wallet": signer.address,
            "token": token.symbol,
            "current": str(current),
            "needed": str(amount_wei),
        }))
        tx_hash = await self.send_transaction(signer, token.address, encode_approve(spender, MAX_UINT256))
        await self.wait_for_receipt(tx_hash)
        return ApprovalResult(approved=True, tx_hash=tx_hash)
