"""Exceptions raised by the bot services.

User-input problems derive from ``ValidationError`` and are shown back to the
invoking member. Missing resources derive from ``ResourceNotFoundError``.
Failures of the archive transition are wrapped in ``ArchiveError`` tagged with
the request and the step that failed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import UUID


class ServiceError(Exception):
    """Base exception for service operations."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ServiceError):
    """Invalid input supplied by a member."""


class MalformedTaskSpec(ValidationError):
    def __init__(self, segment: str, reason: str):
        super().__init__(f"Invalid task `{segment}`: {reason}", {"segment": segment})
        self.segment = segment


class MalformedDuration(ValidationError):
    def __init__(self, value: str):
        super().__init__(
            f"Could not understand the duration `{value}` (try something like `2 hours` or `1h30m`)",
            {"value": value},
        )
        self.value = value


class MalformedDeliverySpec(ValidationError):
    def __init__(self, segment: str, reason: str):
        super().__init__(f"Invalid delivery item `{segment}`: {reason}", {"segment": segment})
        self.segment = segment


class ResourceNotFoundError(ServiceError):
    """A referenced resource does not exist."""

    def __init__(self, resource_type: str, resource_id: Any):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            {"resource_type": resource_type, "resource_id": str(resource_id)},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class RequestNotFound(ResourceNotFoundError):
    def __init__(self, request_id: Any):
        super().__init__("Request", request_id)


class TaskNotFound(ResourceNotFoundError):
    def __init__(self, task_id: Any):
        super().__init__("Task", task_id)


class ChannelNotFound(ResourceNotFoundError):
    def __init__(self, channel_id: Any):
        super().__init__("Channel", channel_id)


class ArchiveStep(str, Enum):
    """Sub-operation of the archive transition."""

    DATABASE = "database"
    RESOLVE_CHANNEL = "resolve_channel"
    SEND_MESSAGE = "send_message"
    DELETE_MESSAGE = "delete_message"
    EDIT_MESSAGE = "edit_message"


class ArchiveError(ServiceError):
    """The archive transition of a request failed part way."""

    def __init__(self, request_id: UUID, step: ArchiveStep, cause: Exception | None = None):
        message = f"Failed to archive request {request_id} ({step.value})"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, {"request_id": str(request_id), "step": step.value})
        self.request_id = request_id
        self.step = step
