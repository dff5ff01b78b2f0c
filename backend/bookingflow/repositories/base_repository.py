# backend/bookingflow/repositories/base_repository.py
"""
Shared data access for BookingFlow repositories.

Repositories flush but never commit. Services own transaction boundaries so
provider calls stay outside open database transactions.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Lookup and insert helpers bound to one mapped model."""

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_by_id(self, id: str) -> Optional[ModelT]:
        return self.find_one_by(id=id)

    def create(self, **fields: Any) -> ModelT:
        """
        Add and flush a new row so its defaults are populated.

        Raises:
            RepositoryException: The insert failed; ``__cause__`` holds the
                SQLAlchemy error so callers can inspect constraint names
        """
        entity = self.model(**fields)
        try:
            self.db.add(entity)
            self.db.flush()
        except IntegrityError as exc:
            self.logger.warning("Insert of %s rejected: %s", self.model.__name__, exc.orig)
            self.db.rollback()
            raise RepositoryException(f"Integrity constraint violated: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            self.logger.error("Insert of %s failed: %s", self.model.__name__, exc)
            self.db.rollback()
            raise RepositoryException(f"Failed to create {self.model.__name__}") from exc
        return entity

    def exists(self, **criteria: Any) -> bool:
        return self.find_one_by(**criteria) is not None

    def find_one_by(self, **criteria: Any) -> Optional[ModelT]:
        """First row whose columns equal ``criteria``, or None."""
        try:
            return self._build_query().filter_by(**criteria).first()
        except SQLAlchemyError as exc:
            self.logger.error("Lookup of %s by %s failed: %s", self.model.__name__, criteria, exc)
            raise RepositoryException(f"Failed to read {self.model.__name__}") from exc

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[ModelT]:
        try:
            return query.all()
        except SQLAlchemyError as exc:
            self.logger.error("Query on %s failed: %s", self.model.__name__, exc)
            raise RepositoryException(f"Failed to list {self.model.__name__}") from exc
