"""
Database setup for the ration shop.
Uses SQLAlchemy with SQLite for customers, inventory, card quotas, orders and customer issues.
Multi-row writes go through run_transaction(), which relies on each table's version column
for optimistic concurrency.
"""
import logging
import os
from pathlib import Path
from typing import Callable, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base
from sqlalchemy.orm.exc import StaleDataError

from rationshop.errors import TransactionConflict

logger = logging.getLogger(__name__)

# Default DB path: project root / data directory
BASE_DIR = Path(__file__).resolve().parent.parent.parent
DB_PATH = os.environ.get("SQLITE_DB_PATH", str(BASE_DIR / "data" / "rationshop.db"))
DATABASE_URL = os.environ.get("DATABASE_URL", f"sqlite:///{DB_PATH}")

# A conflicting transaction is retried this many times before surfacing
MAX_TRANSACTION_RETRIES = 1

engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    echo=os.environ.get("SQL_ECHO", "").lower() == "true",
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

T = TypeVar("T")


def get_db():
    """Dependency that yields a DB session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables. Call at app startup."""
    from rationshop.models import Customer, InventoryItem, CardTypeQuota, Order, OrderLine, CustomerIssue  # noqa: F401
    Base.metadata.create_all(bind=engine)


def run_transaction(fn: Callable[[Session], T], *, name: str = "transaction") -> T:
    """
    Run fn(session) in one transaction and commit.
    Rows read inside fn are validated against their version column at flush time; if another
    writer got there first the whole unit is rolled back and retried once from a fresh read.
    Domain errors raised by fn roll back and propagate unchanged.
    """
    attempt = 0
    while True:
        db = SessionLocal()
        try:
            result = fn(db)
            db.commit()
            return result
        except StaleDataError as e:
            db.rollback()
            logger.warning("transaction_conflict", extra={"transaction": name, "attempt": attempt, "error": str(e)})
            if attempt >= MAX_TRANSACTION_RETRIES:
                raise TransactionConflict() from e
            attempt += 1
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
