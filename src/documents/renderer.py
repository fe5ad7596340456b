"""
Renderer adapter for policy documents using fpdf2.

Turns a data bag (policy, vehicle, product, payment, number) into PDF
bytes. Any failure inside the rendering engine surfaces as RenderFailure.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Protocol, Tuple

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from ..lifecycle.errors import RenderFailure
from ..lifecycle.schema import DocumentKind

logger = logging.getLogger(__name__)

# Title and subtitle printed at the top of each kind of document
TITLES = {
    DocumentKind.ATTESTATION: ("INSURANCE ATTESTATION", "Certificate of motor insurance"),
    DocumentKind.CONTRACT: ("INSURANCE CONTRACT", "Particular conditions"),
    DocumentKind.RECEIPT: ("PAYMENT RECEIPT", "Premium payment"),
    DocumentKind.AMENDMENT: ("POLICY AMENDMENT", "Renewal endorsement"),
    DocumentKind.CANCELLATION: ("CANCELLATION NOTICE", "Termination of cover"),
}

FOOTERS = {
    DocumentKind.ATTESTATION: "Keep this attestation in the vehicle and present it at any roadside check.",
    DocumentKind.CONTRACT: "This contract is governed by the general conditions of the product.",
    DocumentKind.RECEIPT: "This receipt confirms payment of the premium shown above.",
    DocumentKind.AMENDMENT: "This endorsement amends the policy period shown above.",
    DocumentKind.CANCELLATION: "Cover ends on the cancellation date. Earlier documents are no longer valid.",
}


class DocumentRenderer(Protocol):
    def render(self, kind: DocumentKind, data: Dict[str, Any]) -> bytes:
        ...


def _text(value: Any) -> str:
    """Printable latin-1 text for the core PDF fonts."""
    if value is None or value == "":
        return "N/A"
    if isinstance(value, datetime):
        value = value.strftime("%Y-%m-%d")
    return str(value).encode("latin-1", "replace").decode("latin-1")


def _get(data: Dict[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


class FpdfRenderer:
    """Renders every document kind as a one-page A4 PDF."""

    def render(self, kind: DocumentKind, data: Dict[str, Any]) -> bytes:
        try:
            pdf = FPDF(orientation="portrait", unit="mm", format="A4")
            pdf.set_auto_page_break(auto=True, margin=15)
            pdf.add_page()

            title, subtitle = TITLES[kind]
            self._header(pdf, title, subtitle, data.get("number"))
            for heading, rows in self._sections(kind, data):
                self._section(pdf, heading, rows)
            self._footer(pdf, FOOTERS[kind], data.get("generated_at"))

            return bytes(pdf.output())
        except Exception as e:
            logger.error(f"Failed to render {kind.value} {data.get('number')}: {e}")
            raise RenderFailure(f"Rendering {kind.value} failed: {e}") from e

    def _sections(self, kind: DocumentKind, data: Dict[str, Any]) -> List[Tuple[str, List[Tuple[str, Any]]]]:
        currency = data.get("currency", "")
        policy_rows = [
            ("Policy", _get(data, "policy", "policy_id")),
            ("Status", _get(data, "policy", "status")),
            ("Start date", _get(data, "policy", "start_date")),
            ("End date", _get(data, "policy", "end_date")),
            ("Premium", f"{_get(data, 'policy', 'premium')} {currency}"),
        ]
        insured_rows = [("Insured", _get(data, "policy", "owner"))]
        vehicle_rows = [
            ("Plate number", _get(data, "vehicle", "plate_number")),
            ("Make", _get(data, "vehicle", "brand")),
            ("Model", _get(data, "vehicle", "model")),
            ("Year", _get(data, "vehicle", "year")),
            ("Category", _get(data, "vehicle", "category")),
        ]
        product_rows = [
            ("Code", _get(data, "product", "code")),
            ("Name", _get(data, "product", "name")),
        ]
        payment_rows = [
            ("Method", _get(data, "payment", "method")),
            ("Status", _get(data, "payment", "status")),
            ("Date", _get(data, "payment", "date")),
            ("Transaction", _get(data, "payment", "transaction_id")),
            ("Amount", f"{_get(data, 'policy', 'premium')} {currency}"),
        ]

        if kind == DocumentKind.ATTESTATION:
            return [("POLICY", policy_rows), ("INSURED", insured_rows), ("VEHICLE", vehicle_rows), ("COVER", product_rows)]
        if kind == DocumentKind.CONTRACT:
            breakdown = _get(data, "quote", "breakdown") or {}
            pricing_rows = [
                ("Base", breakdown.get("base")),
                ("Vehicle value part", breakdown.get("value_part")),
                ("Add-ons", breakdown.get("add_ons_total")),
                ("Total", breakdown.get("total")),
            ]
            add_ons = _get(data, "quote", "selected_add_ons") or []
            add_on_rows = [(a.get("label") or a.get("code"), f"{a.get('price')} {currency}") for a in add_ons]
            sections = [
                ("POLICY", policy_rows),
                ("INSURED", insured_rows),
                ("VEHICLE", vehicle_rows + [("Market value", f"{_get(data, 'vehicle', 'market_value')} {currency}")]),
                ("PRODUCT", product_rows),
                ("PREMIUM BREAKDOWN", pricing_rows),
            ]
            if add_on_rows:
                sections.append(("ADD-ONS", add_on_rows))
            return sections
        if kind == DocumentKind.RECEIPT:
            return [("PAYMENT", payment_rows), ("POLICY", policy_rows[:1] + policy_rows[2:4]), ("INSURED", insured_rows)]
        if kind == DocumentKind.AMENDMENT:
            return [
                ("POLICY", policy_rows),
                ("PREVIOUS PERIOD", [
                    ("Start date", _get(data, "extra", "previous_start_date")),
                    ("End date", _get(data, "extra", "previous_end_date")),
                ]),
                ("VEHICLE", vehicle_rows[:3]),
            ]
        return [
            ("POLICY", policy_rows),
            ("CANCELLATION", [
                ("Cancelled on", data.get("generated_at")),
                ("Reason", _get(data, "extra", "reason")),
            ]),
            ("VEHICLE", vehicle_rows[:3]),
        ]

    @staticmethod
    def _header(pdf: FPDF, title: str, subtitle: str, number: Any):
        pdf.set_font("helvetica", "B", 20)
        pdf.set_text_color(0, 51, 102)
        pdf.cell(0, 12, _text(title), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
        pdf.set_font("helvetica", "", 12)
        pdf.set_text_color(85, 85, 85)
        pdf.cell(0, 8, _text(subtitle), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")
        pdf.ln(4)
        pdf.set_font("helvetica", "B", 10)
        pdf.set_text_color(0, 0, 0)
        pdf.cell(0, 6, _text(f"Number: {number}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="R")
        pdf.ln(4)

    @staticmethod
    def _section(pdf: FPDF, heading: str, rows: List[Tuple[str, Any]]):
        pdf.set_font("helvetica", "B", 13)
        pdf.set_text_color(0, 51, 102)
        pdf.cell(0, 9, _text(heading), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.line(pdf.l_margin, pdf.get_y(), pdf.w - pdf.r_margin, pdf.get_y())
        pdf.ln(2)
        pdf.set_text_color(51, 51, 51)
        for label, value in rows:
            pdf.set_font("helvetica", "B", 10)
            pdf.cell(50, 6, _text(label))
            pdf.set_font("helvetica", "", 10)
            pdf.cell(0, 6, _text(value), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        pdf.ln(4)

    @staticmethod
    def _footer(pdf: FPDF, note: str, generated_at: Any):
        pdf.ln(6)
        pdf.set_font("helvetica", "I", 9)
        pdf.set_text_color(100, 116, 139)
        pdf.multi_cell(0, 5, _text(note), align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        stamp = generated_at.strftime("%Y-%m-%d %H:%M UTC") if isinstance(generated_at, datetime) else generated_at
        pdf.cell(0, 5, _text(f"Generated on {stamp}"), new_x=XPos.LMARGIN, new_y=YPos.NEXT, align="C")


class CallableRenderer:
    """Adapts a plain ``(kind, data) -> bytes`` function, wrapping its errors as RenderFailure."""

    def __init__(self, func: Callable[[DocumentKind, Dict[str, Any]], bytes]):
        self.func = func

    def render(self, kind: DocumentKind, data: Dict[str, Any]) -> bytes:
        try:
            return self.func(kind, data)
        except RenderFailure:
            raise
        except Exception as e:
            raise RenderFailure(f"Rendering {kind.value} failed: {e}") from e
