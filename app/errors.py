"""
app/errors.py
=============
Exception hierarchy for the diagnosis lifecycle.

Exception Tree::

    CareflowError (base)
    ├── NotFoundError
    ├── InvalidStateError
    │   └── ConcurrentModificationError
    ├── UnauthorizedError
    ├── AIGatewayError
    └── ValidationError

``NotFoundError``, ``InvalidStateError``, ``UnauthorizedError`` and
``ValidationError`` are permanent client errors. ``AIGatewayError`` and
``ConcurrentModificationError`` may succeed if the caller retries.
"""

from __future__ import annotations


class CareflowError(Exception):
    """Base exception for all diagnosis-lifecycle errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dict with structured error context.
    """

    retryable: bool = False

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message: str = message
        self.details: dict = details or {}
        super().__init__(self.message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, details={self.details!r})"


class NotFoundError(CareflowError):
    """Raised when a referenced patient, doctor or diagnosis does not exist.

    Attributes:
        entity: Kind of entity, e.g. ``"diagnosis"``.
        entity_id: The identifier that was looked up.
    """

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity: str = entity
        self.entity_id: str = entity_id
        super().__init__(
            message=f"{entity.capitalize()} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )


class InvalidStateError(CareflowError):
    """Raised when an operation is not valid for the diagnosis' current status."""


class ConcurrentModificationError(InvalidStateError):
    """Raised when a diagnosis was written by someone else since it was read.

    Attributes:
        expected_version: Revision the caller based its write on.
        actual_version: Revision currently stored, when known.
    """

    retryable = True

    def __init__(
        self,
        diagnosis_id: str,
        expected_version: int | None,
        actual_version: int | None = None,
    ) -> None:
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            message=(
                f"Diagnosis {diagnosis_id} was modified concurrently "
                f"(expected version {expected_version}, found {actual_version})"
            ),
            details={
                "diagnosis_id": diagnosis_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )


class UnauthorizedError(CareflowError):
    """Raised when the caller has no relationship to the requested diagnosis."""


class AIGatewayError(CareflowError):
    """Raised when the completion gateway fails or returns unparseable output."""

    retryable = True


class ValidationError(CareflowError):
    """Raised for malformed input, e.g. an empty message."""
