"""
Quote service: price a vehicle against a product and record the quote.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from ..lifecycle.errors import InvalidInput, NotFound
from ..lifecycle.schema import (
    AddOn,
    ProductStatus,
    Quote,
    QuoteStatus,
    utc_now,
)
from ..storage.lifecycle_store import LifecycleStore
from ..utils.config import Settings, get_settings
from .calculator import create_pricing_snapshot, price

logger = logging.getLogger(__name__)


class QuoteService:
    """Creates priced quotes and expires them."""

    def __init__(
        self,
        store: LifecycleStore,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.clock = clock or utc_now

    def create_quote(
        self,
        owner: str,
        vehicle_id: str,
        product_id: str,
        add_on_codes: Sequence[str] = (),
    ) -> Quote:
        """
        Price and persist a new PENDING quote.

        The tariff is frozen into ``pricing_snapshot`` so later product edits
        never change an outstanding quote.
        """
        vehicle = self.store.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFound("Vehicle", vehicle_id)
        product = self.store.get_product(product_id)
        if product is None:
            raise NotFound("Product", product_id)
        if product.status != ProductStatus.ACTIVE:
            raise InvalidInput(f"Product {product.code} is not available")

        selected = self._select_add_ons(product.add_ons, add_on_codes)
        snapshot = create_pricing_snapshot(product)
        breakdown = price(vehicle, product.tariff, selected)

        now = self.clock()
        quote = Quote(
            owner=owner,
            vehicle_ref=vehicle.vehicle_id,
            product_ref=product.product_id,
            selected_add_ons=selected,
            pricing_snapshot=snapshot,
            breakdown=breakdown,
            currency=self.settings.currency,
            status=QuoteStatus.PENDING,
            expires_at=now + timedelta(days=self.settings.quote_validity_days),
            created_at=now,
            updated_at=now,
        )
        self.store.create_quote(quote)
        logger.info(f"Quote {quote.quote_id} created for {owner}: total {breakdown.total} {quote.currency}")
        return quote

    def expire_quote(self, quote_id: str) -> Quote:
        """PENDING -> EXPIRED. Any other status is left untouched."""
        quote = self.store.get_quote(quote_id)
        if quote is None:
            raise NotFound("Quote", quote_id)
        if quote.status == QuoteStatus.PENDING:
            if self.store.compare_and_set_quote_status(quote_id, QuoteStatus.PENDING, QuoteStatus.EXPIRED, self.clock()):
                logger.info(f"Quote {quote_id} expired")
            quote = self.store.get_quote(quote_id)
        return quote

    def get_quote(self, quote_id: str) -> Quote:
        quote = self.store.get_quote(quote_id)
        if quote is None:
            raise NotFound("Quote", quote_id)
        return quote

    @staticmethod
    def _select_add_ons(available: List[AddOn], codes: Sequence[str]) -> List[AddOn]:
        by_code = {a.code: a for a in available}
        unknown = [c for c in codes if c not in by_code]
        if unknown:
            raise InvalidInput(f"Unknown add-on(s): {', '.join(unknown)}")
        # Duplicate codes count once
        return [by_code[c] for c in dict.fromkeys(codes)]
