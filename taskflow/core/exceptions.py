"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class InvalidStateTransition(DomainException):
    """Raised when an SLA clock transition is not allowed (double pause, resume without pause)."""

    def __init__(self, item_id: str, transition: str, reason: str):
        self.item_id = item_id
        self.transition = transition
        super().__init__(
            f"Cannot {transition} item {item_id}: {reason}",
            {"item_id": item_id, "transition": transition}
        )


class PermissionDeniedException(DomainException):
    """Raised when a user acts on an escalation addressed to someone else."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class DuplicateEscalationError(RepositoryException):
    """Raised when an unresolved escalation log already exists for an (item, rule) pair."""

    def __init__(self, item_id: str, rule_id: str):
        self.item_id = item_id
        self.rule_id = rule_id
        super().__init__(
            f"Unresolved escalation already exists for item {item_id} and rule {rule_id}",
            {"item_id": item_id, "rule_id": rule_id}
        )


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class ItemEvaluationError(ApplicationException):
    """
    Failure while evaluating one item during an escalation pass.

    Caught per item by the engine; never aborts the pass.
    """

    def __init__(
        self,
        item_id: str,
        message: str,
        rule_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.item_id = item_id
        self.rule_id = rule_id
        super().__init__(
            message,
            details or {"item_id": item_id, "rule_id": rule_id}
        )


class ExternalDependencyTimeout(ItemEvaluationError):
    """An external call (store, directory, dispatcher) exceeded its timeout."""

    def __init__(
        self,
        dependency: str,
        timeout_seconds: float,
        item_id: str = "",
        rule_id: Optional[str] = None
    ):
        self.dependency = dependency
        self.timeout_seconds = timeout_seconds
        super().__init__(
            item_id,
            f"{dependency} did not respond within {timeout_seconds}s",
            rule_id,
            {"dependency": dependency, "timeout_seconds": timeout_seconds,
             "item_id": item_id, "rule_id": rule_id}
        )


class SchedulerStartupError(ApplicationException):
    """Startup step failed; the scheduler continues in degraded mode."""
