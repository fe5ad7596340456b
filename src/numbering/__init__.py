"""Document numbering: durable per-kind, per-year counters."""

from .sequence_registry import (
    NUMBER_PATTERN,
    PREFIXES,
    SequenceRegistry,
    counter_key,
    format_document_number,
    is_valid_document_number,
)

__all__ = [
    "NUMBER_PATTERN",
    "PREFIXES",
    "SequenceRegistry",
    "counter_key",
    "format_document_number",
    "is_valid_document_number",
]
