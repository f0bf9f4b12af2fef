# reassignment_billing/db/session.py
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from reassignment_billing.core.config import settings


def make_engine(db_uri: str, **overrides: Any) -> Engine:
    kwargs: Dict[str, Any] = {
        "echo": settings.SQLALCHEMY_ECHO,
        "future": True,
    }
    if db_uri.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs.update(
            pool_pre_ping=True,
            pool_recycle=280,
            pool_size=10,
            max_overflow=20,
        )
    kwargs.update(overrides)
    return create_engine(db_uri, **kwargs)


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=bind,
        future=True,
    )


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = make_session_factory(engine)
