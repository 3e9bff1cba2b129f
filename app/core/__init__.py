"""
Core Application - Infrastructure & Base Classes

Generic, reusable base classes shared by the domain apps (accounts, chat).

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key
    - SoftDeleteMixin: Soft delete support (is_deleted, deleted_at)

Managers (import from core.managers):
    - SoftDeleteManager: Filter deleted records by default
    - SoftDeleteQuerySet: QuerySet with soft delete operations

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling
    - ErrorCategory / register_error_categories: error code classification

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - NotFoundError: Resource not found
    - PermissionDeniedError: Authorization failures
    - application_exception_handler: DRF exception handler

Note:
    Django models, model mixins and managers are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

from .services import BaseService, ErrorCategory, ServiceResult

__all__ = [
    "BaseService",
    "ErrorCategory",
    "ServiceResult",
]
