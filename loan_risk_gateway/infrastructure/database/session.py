"""Database engine and session management"""

from typing import Any, Dict, Iterator
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from loan_risk_gateway.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine; pooled for server databases, plain for SQLite"""
    options: Dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    else:
        # Loan rows are locked per request, keep the pool modest and recycle hourly
        options.update(pool_size=10, max_overflow=10, pool_recycle=3600)
    return create_engine(database_url, **options)


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Dependency injection for database sessions"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
