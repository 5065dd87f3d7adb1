# -*- coding: utf-8 -*-
from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .models import Base


def make_engine(dsn: str, *, echo: bool = False, statement_timeout_ms: int = 2000) -> Engine:
    if dsn.startswith("sqlite"):
        # relay workers and the API threadpool share the file across threads
        return create_engine(
            dsn,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    engine = create_engine(
        dsn,
        echo=echo,
        pool_size=20,
        max_overflow=40,
        pool_timeout=5,
        pool_recycle=1800,
        pool_pre_ping=True,
        future=True,
    )

    if engine.dialect.name == "postgresql":

        @event.listens_for(engine, "connect")
        def set_statement_timeout(dbapi_connection, connection_record):  # pragma: no cover - driver specific
            cursor = dbapi_connection.cursor()
            cursor.execute(f"SET statement_timeout TO {int(statement_timeout_ms)}")
            cursor.close()

    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, future=True)


def create_schema(engine: Engine) -> None:
    """Create every payflow table; migrations own this in production."""

    Base.metadata.create_all(engine)
