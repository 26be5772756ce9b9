"""In-memory payment gateway for development, demos and tests.

Invoices are registered up front; refunds are recorded instead of sent.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from decimal import Decimal

from marketplace_escrow.domain.enums import InvoiceStatus
from marketplace_escrow.domain.exceptions import NotFoundError
from marketplace_escrow.domain.models import Invoice
from marketplace_escrow.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RefundRecord:
    refund_id: str
    reference: str
    amount: Decimal
    reason: str
    idempotency_key: str | None = None


class SimulatedGateway:
    """PaymentGateway that keeps invoices and refunds in process memory."""

    def __init__(self) -> None:
        self._invoices: dict[str, Invoice] = {}
        self.refunds: list[RefundRecord] = []
        self._refunds_by_key: dict[str, RefundRecord] = {}

    def register_invoice(
        self,
        invoice_id: str,
        amount: Decimal,
        status: InvoiceStatus = InvoiceStatus.PENDING,
        external_id: str | None = None,
    ) -> Invoice:
        invoice = Invoice(id=invoice_id, status=status, amount=amount, external_id=external_id)
        self._invoices[invoice_id] = invoice
        return invoice

    def set_status(self, invoice_id: str, status: InvoiceStatus) -> None:
        self._invoices[invoice_id] = replace(self._lookup(invoice_id), status=status)

    async def get_invoice(self, reference: str) -> Invoice:
        return self._lookup(reference)

    async def refund_invoice(
        self,
        reference: str,
        amount: Decimal,
        reason: str,
        idempotency_key: str | None = None,
    ) -> str:
        self._lookup(reference)
        if idempotency_key is not None and idempotency_key in self._refunds_by_key:
            existing = self._refunds_by_key[idempotency_key]
            logger.info(
                "gateway.refund_replayed",
                invoice_id=reference,
                refund_id=existing.refund_id,
                idempotency_key=idempotency_key,
            )
            return existing.refund_id

        refund_id = f"rfd-sim-{uuid.uuid4().hex[:12]}"
        record = RefundRecord(refund_id, reference, amount, reason, idempotency_key)
        self.refunds.append(record)
        if idempotency_key is not None:
            self._refunds_by_key[idempotency_key] = record
        logger.info(
            "gateway.refund_simulated",
            invoice_id=reference,
            refund_id=refund_id,
            amount=amount,
        )
        return refund_id

    def _lookup(self, reference: str) -> Invoice:
        try:
            return self._invoices[reference]
        except KeyError:
            raise NotFoundError("Invoice", reference) from None
