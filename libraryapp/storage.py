import contextlib
import logging

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from exceptions.exceptions import DatabaseError
from libraryapp.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    if database_url.startswith("sqlite"):
        # SQLite connections are handed between the threadpool workers
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
    return create_engine(
        database_url,
        pool_size=settings.pool_size,
        max_overflow=0,
        pool_timeout=settings.pool_timeout,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextlib.contextmanager
def transaction(db: Session):
    """Commit everything done inside the block as one unit, or nothing."""
    try:
        yield db
        db.commit()
    except IntegrityError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Transaction rolled back: {e}")
        raise DatabaseError("commit", str(e)) from e
    except Exception:
        db.rollback()
        raise
