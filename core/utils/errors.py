"""Custom exceptions for core logic."""

from __future__ import annotations


class InvalidPresetFormatError(Exception):
    """Raised in strict mode when a preset string cannot be parsed."""

    def __init__(self, message: str, *, preset_string: str | None = None) -> None:
        super().__init__(message)
        self.preset_string = preset_string


class InvalidCellValueError(ValueError):
    """Raised when a cell value cannot be coerced to its column type."""

    def __init__(self, message: str, *, column: str, column_type: str, value: object) -> None:
        super().__init__(message)
        self.column = column
        self.column_type = column_type
        self.value = value


class QuotaExceededError(Exception):
    """Raised when a table mutation would exceed the user's credits or storage."""

    def __init__(self, message: str, *, resource: str, required: int, available: int) -> None:
        super().__init__(message)
        self.resource = resource
        self.required = required
        self.available = available


class PlanRequiredError(Exception):
    """Raised when a feature needs a paid plan."""

    def __init__(self, message: str, *, feature: str, plan: str) -> None:
        super().__init__(message)
        self.feature = feature
        self.plan = plan


class DocumentNotFoundError(KeyError):
    """Raised when a document store path does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.path = path

    def __str__(self) -> str:
        return f"Document not found: {self.path}"


class WebhookSignatureError(Exception):
    """Raised when a billing webhook signature is missing or invalid."""

    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class AiOutputError(Exception):
    """Raised when the completion service returns unusable output."""

    def __init__(self, message: str, *, flow: str, raw_output: str | None = None) -> None:
        super().__init__(message)
        self.flow = flow
        self.raw_output = raw_output


class CompletionServiceError(Exception):
    """Raised when the text-completion service cannot be reached or fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
