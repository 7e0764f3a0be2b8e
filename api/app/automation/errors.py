"""Exceptions raised by the automation mechanism."""

from __future__ import annotations


class AutomationError(RuntimeError):
    """Base class for automation failures that carry a short message for UI surfaces."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class CatalogError(AutomationError):
    """Raised when a recipe catalog cannot be loaded or is inconsistent."""


class TemplateError(AutomationError):
    """Raised when a placeholder cannot be resolved under the ``error`` policy."""

    def __init__(self, message: str, *, placeholder: str | None = None) -> None:
        super().__init__(message)
        self.placeholder = placeholder


class ActionExecutionError(AutomationError):
    """Raised by collaborators for expected failures such as a missing recipient."""


class DuplicateWorkItemError(ActionExecutionError):
    """Raised by a work-item store when a dedupe key is already taken."""

    def __init__(self, dedupe_key: str) -> None:
        super().__init__(f"duplicate_work_item:{dedupe_key}")
        self.dedupe_key = dedupe_key
