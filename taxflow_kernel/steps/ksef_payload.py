"""
Invoice -> KSeF submission DTO mapping.

The DTO is an opaque JSON-safe mapping handed to the InvoiceSubmitter.  XML
encoding is the submitter's concern.  The same DTO is stored in retry task
payloads, so every value must survive a JSON column round trip.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

DEFAULT_PAYMENT_METHOD = "przelew"


def _iso_date(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()[:10]
    return str(value)[:10]


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _party(invoice: dict[str, Any], key: str) -> dict[str, Any]:
    party = invoice.get(key) or {}
    return party if isinstance(party, dict) else {}


def build_ksef_payload(invoice: dict[str, Any]) -> dict[str, Any]:
    """Map an invoice record from the invoicing collaborator to the KSeF DTO.

    ``dueDate`` falls back to the issue date.
    """
    seller = _party(invoice, "company")
    buyer = _party(invoice, "buyer")
    issue_date = _iso_date(invoice.get("date"))

    return {
        "invoiceNumber": invoice.get("number"),
        "issueDate": issue_date,
        "dueDate": _iso_date(invoice.get("dueDate")) or issue_date,
        "sellerName": seller.get("name", ""),
        "sellerNip": seller.get("nip", ""),
        "sellerAddress": seller.get("address", ""),
        "buyerName": buyer.get("name", ""),
        "buyerNip": buyer.get("nip", ""),
        "buyerAddress": buyer.get("address", ""),
        "items": [
            {
                "name": item.get("description"),
                "quantity": _json_safe(item.get("quantity")),
                "unitPrice": _json_safe(item.get("unitPrice")),
                "vatRate": _json_safe(item.get("vatRate")),
                "gtu": item.get("gtu"),
                "netAmount": _json_safe(item.get("netAmount")),
                "vatAmount": _json_safe(item.get("vatAmount")),
                "grossAmount": _json_safe(item.get("grossAmount")),
            }
            for item in invoice.get("items") or []
        ],
        "totalNet": _json_safe(invoice.get("totalNet")),
        "totalVat": _json_safe(invoice.get("totalVat")),
        "totalGross": _json_safe(invoice.get("totalGross")),
        "paymentMethod": invoice.get("paymentMethod") or DEFAULT_PAYMENT_METHOD,
    }
