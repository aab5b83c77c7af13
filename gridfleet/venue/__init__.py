"""
Venue package.

Collaborator protocols plus the production adapters (TWAP venue, JSON-RPC
chain, Sushi price API) and the in-memory simulation used in test mode.
"""

from gridfleet.venue.interfaces import (
    ApprovalResult,
    ChainClient,
    OrderDescriptor,
    PriceFeed,
    SubmissionReceipt,
    SwapRoute,
    VenueClient,
    VenueOrder,
    VenueOrderBook,
)
from gridfleet.venue.price_feed import FALLBACK_PRICES, HttpPriceFeed
from gridfleet.venue.rpc_chain import RpcChainClient
from gridfleet.venue.simulated import SimulatedChain, SimulatedVenue
from gridfleet.venue.twap_venue import TwapVenueClient

__all__ = [
    "ApprovalResult",
    "ChainClient",
    "OrderDescriptor",
    "PriceFeed",
    "SubmissionReceipt",
    "SwapRoute",
    "VenueClient",
    "VenueOrder",
    "VenueOrderBook",
    "FALLBACK_PRICES",
    "HttpPriceFeed",
    "RpcChainClient",
    "SimulatedChain",
    "SimulatedVenue",
    "TwapVenueClient",
]
