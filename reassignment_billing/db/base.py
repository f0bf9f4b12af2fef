# reassignment_billing/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All engine tables (patients, invoices, ledgers) inherit from this."""
    pass
