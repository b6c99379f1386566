"""
Core Module
============

Shared core utilities and abstractions used across the application.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from taskflow.core.exceptions import (
    ApplicationException,
    DomainException,
    InvalidStateTransition,
    PermissionDeniedException,
    RepositoryException,
    DuplicateEscalationError,
    ResourceNotFoundException,
    ConfigurationException,
    ExternalServiceException,
    ItemEvaluationError,
    ExternalDependencyTimeout,
    SchedulerStartupError,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "InvalidStateTransition",
    "PermissionDeniedException",
    "RepositoryException",
    "DuplicateEscalationError",
    "ResourceNotFoundException",
    "ConfigurationException",
    "ExternalServiceException",
    "ItemEvaluationError",
    "ExternalDependencyTimeout",
    "SchedulerStartupError",
]
