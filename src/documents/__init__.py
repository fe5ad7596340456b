"""Document rendering and the issuance pipeline."""

from .issuance import ENDORSEMENT_KINDS, ISSUANCE_KINDS, DocumentIssuancePipeline
from .renderer import CallableRenderer, DocumentRenderer, FpdfRenderer

__all__ = [
    "CallableRenderer",
    "DocumentIssuancePipeline",
    "DocumentRenderer",
    "ENDORSEMENT_KINDS",
    "FpdfRenderer",
    "ISSUANCE_KINDS",
]
