# backend/booking_engine/repositories/base_repository.py
"""
Shared data access for the booking engine repositories.

Every repository is bound to one model and one session. Writes are flushed
so generated ids and guarded updates are visible inside the caller's
transaction, but nothing here commits: BaseService.transaction() owns the
unit of work and its rollback.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

ModelT = TypeVar("ModelT")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelT]):
    """
    Id-keyed access to a single model.

    Attributes:
        db: Session shared with the owning service
        model: Mapped class this repository reads and writes
    """

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @property
    def _name(self) -> str:
        return self.model.__name__

    def get_by_id(self, id: str) -> Optional[ModelT]:
        try:
            return self.db.get(self.model, id)
        except SQLAlchemyError as e:
            self.logger.error(f"Lookup of {self._name} {id} failed: {str(e)}")
            raise RepositoryException(f"Failed to load {self._name} {id}: {str(e)}")

    def refresh(self, instance: ModelT) -> None:
        """Reload column values, e.g. after a guarded UPDATE bypassed the ORM."""
        self.db.refresh(instance)

    def flush(self) -> None:
        self.db.flush()

    def create(self, **kwargs: Any) -> ModelT:
        """
        Add a new row and flush it so its ULID and defaults are populated.

        Raises:
            RepositoryException: on a unique/foreign key violation or any
                other database error
        """
        entity = self.model(**kwargs)
        try:
            self.db.add(entity)
            self.db.flush()
        except IntegrityError as exc:
            self.logger.warning(f"{self._name} rejected by a constraint: {exc}")
            raise RepositoryException(f"{self._name} violates a constraint: {exc}") from exc
        except SQLAlchemyError as e:
            self.logger.error(f"Insert of {self._name} failed: {str(e)}")
            raise RepositoryException(f"Failed to create {self._name}: {str(e)}") from e
        return entity

    def update(self, id: str, **changes: Any) -> Optional[ModelT]:
        """
        Apply ``changes`` to the row with ``id``.

        Keys that are not attributes of the model are ignored. Returns None
        when the row does not exist.
        """
        entity = self.get_by_id(id)
        if entity is None:
            return None

        for field, value in changes.items():
            if hasattr(entity, field):
                setattr(entity, field, value)

        try:
            self.db.flush()
        except SQLAlchemyError as e:
            self.logger.error(f"Update of {self._name} {id} failed: {str(e)}")
            raise RepositoryException(f"Failed to update {self._name} {id}: {str(e)}") from e
        return entity

    def delete(self, id: str) -> bool:
        """Remove the row with ``id``; False when there was nothing to remove."""
        entity = self.get_by_id(id)
        if entity is None:
            return False

        try:
            self.db.delete(entity)
            self.db.flush()
        except IntegrityError as e:
            self.logger.warning(f"{self._name} {id} is still referenced: {str(e)}")
            raise RepositoryException(f"{self._name} {id} is still referenced: {str(e)}") from e
        except SQLAlchemyError as e:
            self.logger.error(f"Delete of {self._name} {id} failed: {str(e)}")
            raise RepositoryException(f"Failed to delete {self._name} {id}: {str(e)}") from e
        return True

    def _execute_query(self, query: Query) -> List[ModelT]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"{self._name} query failed: {str(e)}")
            raise RepositoryException(f"{self._name} query failed: {str(e)}") from e

    def _execute_scalar(self, query: Query) -> Any:
        try:
            return query.scalar()
        except SQLAlchemyError as e:
            self.logger.error(f"{self._name} scalar query failed: {str(e)}")
            raise RepositoryException(f"{self._name} scalar query failed: {str(e)}") from e
