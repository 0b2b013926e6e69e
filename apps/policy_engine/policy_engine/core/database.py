from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    pass


def create_session_factory(database_url: str, **engine_kwargs) -> sessionmaker[Session]:  # type: ignore[no-untyped-def]
    engine = create_engine(database_url, pool_pre_ping=True, **engine_kwargs)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)
