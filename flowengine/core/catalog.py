"""Workflow catalog for registering and looking up workflow definitions."""

import threading
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..models.core import ValidationResult, WorkflowDefinition, WorkflowSummary, utcnow
from ..storage.models import WorkflowModel
from . import validator
from .exceptions import FatalError, StorageError, ValidationError
from .logging import get_logger
from .registry import ExecutorRegistry

logger = get_logger(__name__)


class WorkflowCatalog:
    """Validates workflow definitions and keeps them in the database."""

    def __init__(self, session_factory: sessionmaker, registry: ExecutorRegistry,
                 lock: Optional[threading.RLock] = None):
        self._session_factory = session_factory
        self._registry = registry
        self._lock = lock or threading.RLock()

    @property
    def registry(self) -> ExecutorRegistry:
        return self._registry

    def validate(self, definition: WorkflowDefinition) -> ValidationResult:
        """Report every problem with ``definition`` without raising."""
        logger.debug(f"Validating workflow: {definition.id}")
        return validator.check(definition, self._registry)

    def register(self, definition: WorkflowDefinition, replace: bool = False) -> str:
        """
        Validate and store a workflow definition.

        Args:
            definition: The definition to store
            replace: Overwrite an existing definition with the same id

        Returns:
            str: The workflow id

        Raises:
            ValidationError: If the definition is invalid or the id is taken
            StorageError: If the storage operation fails
        """
        logger.info(f"Registering workflow: {definition.id}")

        validator.validate(definition, self._registry)
        warnings = validator.check(definition, self._registry).warnings
        if warnings:
            logger.warning(f"Workflow validation warnings: {'; '.join(warnings)}")

        with self._lock:
            db = self._session_factory()
            try:
                existing = db.query(WorkflowModel).filter(WorkflowModel.id == definition.id).first()
                if existing and not replace:
                    raise ValidationError(
                        f"Workflow with id '{definition.id}' already exists",
                        workflow_id=definition.id
                    )

                dumped = definition.model_dump(mode="json", by_alias=True, exclude_unset=True)
                if existing:
                    existing.name = definition.name
                    existing.definition = dumped
                    existing.updated_at = utcnow()
                else:
                    db.add(WorkflowModel(
                        id=definition.id,
                        name=definition.name,
                        definition=dumped,
                        created_at=utcnow()
                    ))
                db.commit()
            except ValidationError:
                db.rollback()
                raise
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Database error while registering workflow: {str(e)}")
                raise StorageError(f"Failed to store workflow: {str(e)}", operation="register", table="workflows")
            finally:
                db.close()

        logger.info(f"Successfully registered workflow '{definition.id}'")
        return definition.id

    def get(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        """
        Retrieve a workflow definition by id.

        Returns:
            The definition, or None when no such workflow is registered

        Raises:
            FatalError: If the stored definition can no longer be decoded
            StorageError: If the storage operation fails
        """
        with self._lock:
            db = self._session_factory()
            try:
                row = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if row is None:
                    return None
                stored = row.definition
            except SQLAlchemyError as e:
                logger.error(f"Database error while retrieving workflow: {str(e)}")
                raise StorageError(f"Failed to retrieve workflow: {str(e)}", operation="get", table="workflows")
            finally:
                db.close()

        try:
            return WorkflowDefinition.model_validate(stored)
        except PydanticValidationError as e:
            raise FatalError(f"Stored definition for workflow '{workflow_id}' is corrupt: {e}")

    def list(self) -> List[WorkflowSummary]:
        """Summaries of all registered workflows, oldest first."""
        with self._lock:
            db = self._session_factory()
            try:
                rows = db.query(WorkflowModel).order_by(WorkflowModel.created_at).all()
                return [
                    WorkflowSummary(
                        id=row.id,
                        name=row.name,
                        created_at=row.created_at,
                        node_count=len((row.definition or {}).get("nodes", []))
                    )
                    for row in rows
                ]
            except SQLAlchemyError as e:
                raise StorageError(f"Failed to list workflows: {str(e)}", operation="list", table="workflows")
            finally:
                db.close()

    def delete(self, workflow_id: str) -> bool:
        """Remove a workflow definition; returns False when it did not exist."""
        with self._lock:
            db = self._session_factory()
            try:
                row = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
                if row is None:
                    return False
                db.delete(row)
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete", table="workflows")
            finally:
                db.close()

        logger.info(f"Deleted workflow '{workflow_id}'")
        return True

    def __contains__(self, workflow_id: str) -> bool:
        return self.get(workflow_id) is not None
