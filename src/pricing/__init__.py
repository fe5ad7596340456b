"""Pricing calculator and quote service."""

from .calculator import create_pricing_snapshot, price, round_money
from .quotes import QuoteService

__all__ = [
    "QuoteService",
    "create_pricing_snapshot",
    "price",
    "round_money",
]
