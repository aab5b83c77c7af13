"""
HTTP adapters against httpx.MockTransport: price feed, TWAP indexer/relayer and swap router.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import orjson
import pytest

from gridfleet.config.tokens import NATIVE_ADDRESS, TOKENS
from gridfleet.core.errors import VenueError, VenueUnavailable
from gridfleet.core.retry import PRICE_POLICY, VENUE_POLICY
from gridfleet.state.models import OrderType
from gridfleet.venue.interfaces import OrderDescriptor, SubmissionReceipt
from gridfleet.venue.price_feed import HttpPriceFeed
from gridfleet.venue.twap_venue import TwapVenueClient

CHAIN_ID = 747474
USDC = TOKENS.get("USDC")
WETH = TOKENS.get("WETH")
ETH = TOKENS.get("ETH")
MAKER = "0x" + "ab" * 20
ONE_SHOT = dict(max_attempts=1, timeout=None)


def price_feed(handler, **kwargs) -> HttpPriceFeed:
    client = httpx.AsyncClient(base_url="https://prices.test", transport=httpx.MockTransport(handler))
    return HttpPriceFeed("https://prices.test", CHAIN_ID, client=client, **kwargs)


def venue(handler, chain=None) -> TwapVenueClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TwapVenueClient(
        "https://venue.test", "https://router.test", chain, "0x" + "cc" * 20, CHAIN_ID,
        policy=VENUE_POLICY.with_overrides(**ONE_SHOT), client=client,
    )


class TestHttpPriceFeed:
    @pytest.mark.asyncio
    async def test_native_priced_through_wrapped_and_cached(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=2500.5)

        feed = price_feed(handler)
        assert await feed.get_price("ETH") == 2500.5
        assert await feed.get_price("eth") == 2500.5
        assert seen == [f"/{CHAIN_ID}/{WETH.address.lower()}"]

        feed.invalidate("ETH")
        await feed.get_price("ETH")
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_quote_token_is_pinned(self):
        def handler(request):
            raise AssertionError("USDC must not be fetched")

        assert await price_feed(handler).get_price("USDC") == 1.0

    @pytest.mark.asyncio
    async def test_dict_payload(self):
        feed = price_feed(lambda request: httpx.Response(200, json={"price": "64000"}))
        assert await feed.get_price("WBTC") == 64000.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        httpx.Response(503, json={"error": "busy"}),
        httpx.Response(200, json=0),
        httpx.Response(200, json={"price": None}),
    ])
    async def test_falls_back_when_fetch_fails(self, response):
        feed = price_feed(lambda request: response, policy=PRICE_POLICY.with_overrides(**ONE_SHOT))
        assert await feed.get_price("ETH") == 3000.0

    @pytest.mark.asyncio
    async def test_no_fallback_raises(self):
        feed = price_feed(
            lambda request: httpx.Response(500), policy=PRICE_POLICY.with_overrides(**ONE_SHOT),
        )
        with pytest.raises(VenueUnavailable):
            await feed.get_price("WBTC")


def indexer_row(**overrides):
    row = {
        "id": 42,
        "status": "Open",
        "progress": 40,
        "srcAmount": "400000000",
        "dstMinAmount": "200000000000000000",
        "filledSrcAmount": "160000000",
        "filledDstAmount": "80000000000000000",
        "txHash": "0xAbC",
        "srcTokenAddress": USDC.address,
        "dstTokenAddress": NATIVE_ADDRESS,
        "deadline": 1_800_000_000,
        "createdAt": 1_700_000_000_000,
    }
    row.update(overrides)
    return row


class TestTwapVenueClient:
    @pytest.mark.asyncio
    async def test_fetch_orders_normalises_indexer_rows(self):
        def handler(request):
            assert request.url.path == f"/orders/{MAKER}"
            return httpx.Response(200, json={"ALL": [indexer_row(), indexer_row(id=43, status="Completed", progress=0)]})

        book = await venue(handler).fetch_orders(MAKER)

        assert [o.id for o in book.all] == ["42", "43"]
        first = book.by_id()["42"]
        assert first.progress == 40.0
        assert first.src_amount == Decimal("400")
        assert first.dst_amount == Decimal("0.2")
        assert first.filled_dst_amount == Decimal("0.08")
        assert first.created_at == 1_700_000_000.0
        assert book.by_id()["43"].progress == 100.0
        assert [o.id for o in book.completed] == ["43"]

    @pytest.mark.asyncio
    async def test_find_order_id_by_tx_hash(self):
        client = venue(lambda request: httpx.Response(200, json=[indexer_row()]))
        assert await client.find_order_id(MAKER, "0xabc") == "42"
        assert await client.find_order_id(MAKER, "0xdef") is None

    @pytest.mark.asyncio
    async def test_listing_outage_raises(self):
        with pytest.raises(httpx.HTTPStatusError):
            await venue(lambda request: httpx.Response(502)).fetch_orders(MAKER)

    @pytest.mark.asyncio
    async def test_submit_order_prepares_then_sends(self):
        posted = {}

        def handler(request):
            assert request.url.path == "/orders/prepare"
            posted.update(orjson.loads(request.content))
            return httpx.Response(200, json={"data": {"to": "0x" + "cc" * 20, "data": "0xdeadbeef", "value": "0"}})

        chain = AsyncMock()
        chain.send_transaction.return_value = "0xhash"
        chain.wait_for_receipt.return_value = SubmissionReceipt(tx_hash="0xhash", block_number=7)
        descriptor = OrderDescriptor(
            wallet_address=MAKER, order_type=OrderType.GRID_BUY, from_token=USDC, to_token=ETH,
            from_amount=Decimal("400"), from_amount_wei=400_000_000,
            to_amount_min=Decimal("0.2"), to_amount_min_wei=2 * 10**17,
            limit_price=0.0005, deadline=1_800_000_000, chunk_amount_wei=400_000_000,
        )

        receipt = await venue(handler, chain).submit_order("signer", descriptor)

        assert receipt.tx_hash == "0xhash"
        assert posted["srcAmount"] == "400000000"
        assert posted["dstMinAmount"] == str(2 * 10**17)
        chain.send_transaction.assert_awaited_once_with("signer", "0x" + "cc" * 20, "0xdeadbeef", 0)

    @pytest.mark.asyncio
    async def test_submit_rejects_empty_relayer_tx(self):
        client = venue(lambda request: httpx.Response(200, json={"data": {"to": "", "data": "0x"}}), AsyncMock())
        descriptor = OrderDescriptor(
            wallet_address=MAKER, order_type=OrderType.GRID_SELL, from_token=ETH, to_token=USDC,
            from_amount=Decimal("0.2"), from_amount_wei=2 * 10**17,
            to_amount_min=Decimal("404"), to_amount_min_wei=404_000_000,
            limit_price=2020.0, deadline=1_800_000_000, chunk_amount_wei=2 * 10**17,
        )
        with pytest.raises(VenueError):
            await client.submit_order("signer", descriptor)

    @pytest.mark.asyncio
    async def test_swap_route(self):
        def handler(request):
            assert request.url.path == f"/{CHAIN_ID}"
            assert request.url.params["tokenIn"] == WETH.address
            assert request.url.params["sender"] == MAKER
            return httpx.Response(200, json={
                "status": "Success",
                "tx": {"to": "0x" + "5a" * 20, "data": "0x1234", "value": "10"},
                "assumedAmountOut": "19990000",
                "priceImpact": 0.002,
            })

        route = await venue(handler).get_swap_route(MAKER, ETH, USDC, 10**16, 0.5)

        assert route.tx_to == "0x" + "5a" * 20
        assert route.amount_out_wei == 19_990_000
        assert route.tx_value == 10
        assert route.price_impact == 0.002

    @pytest.mark.asyncio
    async def test_no_route(self):
        client = venue(lambda request: httpx.Response(200, json={"status": "NoWay"}))
        assert await client.get_swap_route(MAKER, USDC, ETH, 10**6, 0.5) is None
