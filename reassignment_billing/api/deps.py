# reassignment_billing/api/deps.py
from __future__ import annotations

from typing import Generator, Optional

from fastapi import Header
from sqlalchemy.orm import Session

from reassignment_billing.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def idempotency_key(
    idempotency_key: Optional[str] = Header(default=None,
                                            alias="Idempotency-Key"),
) -> Optional[str]:
    key = (idempotency_key or "").strip()
    return key[:128] or None


def acting_user(
    x_user_id: Optional[int] = Header(default=None, alias="X-User-Id"),
) -> Optional[int]:
    # identity is resolved by the gateway; we only record who acted
    return x_user_id
