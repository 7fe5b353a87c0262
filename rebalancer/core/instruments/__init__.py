"""Instrument-level rebalancing and suggestion package."""

from rebalancer.core.instruments.rebalance import build_instrument_proposals
from rebalancer.core.instruments.suggestions import suggest
from rebalancer.core.instruments.weighting import compute_layer_weights, equal_weights

__all__ = [
    "build_instrument_proposals",
    "compute_layer_weights",
    "equal_weights",
    "suggest",
]
