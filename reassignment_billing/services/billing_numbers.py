# reassignment_billing/services/billing_numbers.py
from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from reassignment_billing.core.config import settings
from reassignment_billing.models.billing import BillingNumberSeries


def next_invoice_number(
    db: Session,
    *,
    prefix: Optional[str] = None,
    padding: Optional[int] = None,
) -> str:
    """
    RB-000001, RB-000002, ...
    Locks the series row so two concurrent invoices never share a number.
    """
    prefix = prefix or settings.INVOICE_NUMBER_PREFIX
    padding = int(padding or settings.INVOICE_NUMBER_PADDING)

    row = (db.query(BillingNumberSeries).filter(
        BillingNumberSeries.prefix == prefix).with_for_update().first())

    if not row:
        row = BillingNumberSeries(
            prefix=prefix,
            next_number=1,
            padding=padding,
        )
        db.add(row)
        db.flush()

    n = int(row.next_number or 1)
    row.next_number = n + 1
    db.flush()

    return f"{prefix}{str(n).zfill(int(row.padding or padding))}"
