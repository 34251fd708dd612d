"""Session ownership shared by every funnelboard service."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnelboard.database import db as database

logger = logging.getLogger(__name__)


class BaseService:
    """Works on a caller-provided session, or opens and owns a fresh one."""

    def __init__(self, db: Session | None = None) -> None:
        self.owns_session = db is None
        self.db = db if db is not None else database.SessionLocal()

    def commit(self) -> None:
        """Commit, rolling back first when the commit fails; the error still propagates."""
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "database.commit.failed",
                extra={"event": "database.commit.failed", "service": type(self).__name__, "error": str(exc)},
            )
            raise

    def rollback(self) -> None:
        self.db.rollback()

    def close(self) -> None:
        # Borrowed sessions belong to the request or task that opened them.
        if self.owns_session:
            self.db.close()

    def __enter__(self) -> "BaseService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        self.close()
