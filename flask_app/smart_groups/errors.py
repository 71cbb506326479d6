"""
Typed errors raised by the smart-groups service layer.

Each error carries the HTTP status the JSON API answers with so views can map
them without inspecting messages.
"""

from __future__ import annotations

from http import HTTPStatus


class SmartGroupsError(Exception):
    """Base class for caller-visible smart-groups failures."""

    http_status: HTTPStatus = HTTPStatus.INTERNAL_SERVER_ERROR
    status_label = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(SmartGroupsError):
    """Config, run or proposal is missing or owned by another organization."""

    http_status = HTTPStatus.NOT_FOUND
    status_label = "not_found"


class ConflictError(SmartGroupsError):
    """Stale version, duplicate config, or a transition the run no longer allows."""

    http_status = HTTPStatus.CONFLICT
    status_label = "conflict"


class ValidationError(SmartGroupsError, ValueError):
    """Request is well-formed but violates grouping rules."""

    http_status = HTTPStatus.BAD_REQUEST
    status_label = "validation"


__all__ = ["ConflictError", "NotFoundError", "SmartGroupsError", "ValidationError"]
