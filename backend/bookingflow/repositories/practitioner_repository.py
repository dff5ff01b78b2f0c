# backend/bookingflow/repositories/practitioner_repository.py
"""
Practitioner Repository for BookingFlow

Read-only access to practitioner records. Practitioners are maintained by an
administrative process; the booking flow never writes them.
"""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import NotFoundException, RepositoryException
from ..models.practitioner import Practitioner
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PractitionerRepository(BaseRepository[Practitioner]):
    """Repository for practitioner data access."""

    def __init__(self, db: Session):
        super().__init__(db, Practitioner)
        self.logger = logging.getLogger(__name__)

    def get_practitioner(self, practitioner_id: str) -> Practitioner:
        """
        Load a practitioner by id.

        Raises:
            NotFoundException: If no practitioner has this id
        """
        practitioner = self.get_by_id(practitioner_id)
        if practitioner is None:
            raise NotFoundException(
                f"Practitioner {practitioner_id} not found",
                code="PRACTITIONER_NOT_FOUND",
                details={"practitioner_id": practitioner_id},
            )
        return practitioner

    def list_practitioners(self) -> List[Practitioner]:
        """All practitioners ordered by display name."""
        return self._execute_query(self._build_query().order_by(Practitioner.name, Practitioner.id))

    def list_ids(self) -> List[str]:
        try:
            return [row[0] for row in self.db.query(Practitioner.id).all()]
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing practitioner ids: {str(e)}")
            raise RepositoryException(f"Failed to list practitioner ids: {str(e)}")
