"""Invoice and refund lookup tools."""

from __future__ import annotations

import logging

from langchain_core.tools import tool
from pydantic import BaseModel, Field
from sqlalchemy import select

from src.db.models import Invoice, InvoiceStatus, isoformat_utc
from src.db.session import session_scope
from src.services.metrics import metrics

logger = logging.getLogger(__name__)


class InvoiceNoInput(BaseModel):
    invoice_no: str = Field(..., min_length=1, description="Invoice number, e.g. INV-2001")


def _find_invoice(invoice_no: str) -> Invoice | None:
    with session_scope() as session:
        return session.scalar(select(Invoice).where(Invoice.invoice_no == invoice_no))


def _not_found(invoice_no: str) -> dict:
    logger.info("Invoice lookup miss: %s", invoice_no)
    return {"error": "Invoice not found", "invoice_no": invoice_no}


@tool(args_schema=InvoiceNoInput)
def get_invoice_details(invoice_no: str) -> dict:
    """Get invoice details by invoice number."""
    with metrics.track("database", "get_invoice_details"):
        invoice = _find_invoice(invoice_no)
    if invoice is None:
        return _not_found(invoice_no)

    return {
        "id": invoice.id,
        "invoice_no": invoice.invoice_no,
        "amount": str(invoice.amount),
        "status": invoice.status.value,
        "due_date": invoice.due_date.isoformat(),
        "created_at": isoformat_utc(invoice.created_at),
    }


@tool(args_schema=InvoiceNoInput)
def check_refund_status(invoice_no: str) -> dict:
    """Check refund status for an invoice number."""
    with metrics.track("database", "check_refund_status"):
        invoice = _find_invoice(invoice_no)
    if invoice is None:
        return _not_found(invoice_no)

    return {
        "invoice_no": invoice.invoice_no,
        "status": invoice.status.value,
        "amount": str(invoice.amount),
        "due_date": invoice.due_date.isoformat(),
        "refunded": invoice.status is InvoiceStatus.REFUNDED,
    }
