import logging
import os
from contextlib import contextmanager

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker, declarative_base

from .errors import Conflict, RegistryError, StoreUnavailable

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./microvault.db")

Base = declarative_base()


class Store:
    """Owned handle on the record store: one engine plus its session factory."""

    def __init__(self, url: str = DATABASE_URL):
        if url.startswith("sqlite"):
            connect_args = {"check_same_thread": False, "timeout": 30}
        else:
            connect_args = {}
        self.url = url
        self.engine = create_engine(url, connect_args=connect_args)
        self.session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def session(self) -> Session:
        return self.session_factory()

    def create_schema(self):
        from . import models  # noqa: F401  registers tables on Base.metadata

        Base.metadata.create_all(bind=self.engine)

    def close(self):
        self.engine.dispose()


def get_db(request: Request):
    db = request.app.state.store.session()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def unit_of_work(db: Session, *, conflict_message: str = "Resource already exists"):
    """Commit the block's writes as one transaction or roll all of them back.

    Unique-index violations become ``Conflict``; any other store error becomes
    ``StoreUnavailable``.
    """
    try:
        yield db
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise Conflict(conflict_message) from exc
    except RegistryError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Store operation failed")
        raise StoreUnavailable() from exc
