import threading
from typing import Iterable, List, Optional

from fastapi import Request
from sqlalchemy import create_engine, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .logging_utils import logger
from .models import Base, Message


class DatastoreError(Exception):
    """Datastore failure; the message is what the client gets back."""


def _engine_connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def _engine_pool_args(url: str, pool_size: int, max_overflow: int, pool_recycle: int) -> dict:
    # SQLite picks its own pool class, which may not accept sizing arguments
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_recycle": pool_recycle,
    }


class Datastore:
    """
    Gateway to the relational store holding the messages table.

    One engine (and so one connection pool) is built lazily per gateway and
    reused; each request checks a session out of it and returns it when done.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 0,
        pool_recycle: int = 180,
    ) -> None:
        self.database_url = database_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_recycle = pool_recycle

        self._engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker] = None
        self._engine_lock = threading.Lock()

        self._schema_lock = threading.Lock()
        self._schema_attempted = False

    def _get_sessionmaker(self) -> sessionmaker:
        with self._engine_lock:
            if self._sessionmaker is None:
                if not self.database_url:
                    raise DatastoreError("Unable to connect to db")
                try:
                    engine = create_engine(
                        self.database_url,
                        connect_args=_engine_connect_args(self.database_url),
                        **_engine_pool_args(
                            self.database_url,
                            self.pool_size,
                            self.max_overflow,
                            self.pool_recycle,
                        ),
                    )
                except (SQLAlchemyError, ImportError) as exc:
                    logger.error("invalid database url: %s", exc)
                    raise DatastoreError("Unable to connect to db") from exc
                self._engine = engine
                self._sessionmaker = sessionmaker(
                    bind=engine, autoflush=False, autocommit=False
                )
            return self._sessionmaker

    def connect(self) -> Session:
        """Check a session out of the pool and make sure the store answers."""
        db = self._get_sessionmaker()()
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            db.close()
            logger.error("datastore unreachable: %s", exc)
            raise DatastoreError("Unable to connect to db") from exc
        return db

    def ensure_schema(self, db: Session) -> None:
        """
        Create the messages table, at most once for the lifetime of this gateway.

        Failures are logged and not retried: the table is normally provisioned
        ahead of time.
        """
        if self._schema_attempted:
            return
        with self._schema_lock:
            if self._schema_attempted:
                return
            self._schema_attempted = True
            try:
                Base.metadata.create_all(bind=db.get_bind())
            except SQLAlchemyError as exc:
                logger.warning("could not create messages table: %s", exc)

    def dispose(self) -> None:
        with self._engine_lock:
            if self._engine is not None:
                self._engine.dispose()
            self._engine = None
            self._sessionmaker = None


def get_db(request: Request) -> Iterable[Session]:
    datastore: Datastore = request.app.state.context.datastore
    db = datastore.connect()
    datastore.ensure_schema(db)
    try:
        yield db
    finally:
        db.close()


def insert_message(db: Session, text: str) -> Message:
    msg = Message(message=text)
    db.add(msg)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("insert failed: %s", exc)
        raise DatastoreError("Unable to insert message") from exc
    return msg


def list_messages(db: Session) -> List[Message]:
    # no ORDER BY: rows come back in whatever order the store keeps them
    try:
        return list(db.scalars(select(Message)).all())
    except SQLAlchemyError as exc:
        logger.error("select failed: %s", exc)
        raise DatastoreError("Unable to get messages from db") from exc
