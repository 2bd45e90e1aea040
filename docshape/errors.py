"""
Error types and error normalization for docshape.

This module defines every exception raised by docshape and the Error
Normalizer that turns raw failures from the document store collaborator
into a small closed taxonomy:

- DocshapeError: Base exception
- SchemaDefinitionError: Malformed descriptor, raised at compile time
- ModelNotFoundError: Model used or extended before registration
- DocumentNotFound: Raised by "OrFail" operations for missing documents
- DocumentError and its per-kind subclasses: normalized runtime failures

Invariants:
    - normalize_error() never raises and always logs the record
    - The most specific failure shape wins
      (duplicate key > validation > invalid identifier > not found > unknown)
    - Error records are immutable once created
    - No raw store failure leaves translate_errors()
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODES = (11000, 11001)

_INDEX_NAME_RE = re.compile(r"index:\s+(?:\S+\.\$)?([A-Za-z0-9_.]+?)_-?\d")


class DocshapeError(Exception):
    """Base exception for all docshape errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCSHAPE_ERROR"
        self.details = details or {}


class SchemaDefinitionError(DocshapeError):
    """Schema descriptor is malformed.

    Raised when:
    - min/max are given for a non-numeric field
    - Explicit constraints conflict (min > max, default outside enum)
    - A descriptor entry has an unsupported shape or unknown keys
    """

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
    ) -> None:
        if path:
            message = f"{path}: {message}"
        super().__init__(
            message,
            code="SCHEMA_DEFINITION_ERROR",
            details={"path": path},
        )
        self.path = path


class ModelNotFoundError(DocshapeError):
    """Model is not registered.

    Registry misuse is a programmer error: register the model before
    extending or using it.
    """

    def __init__(self, model: str) -> None:
        super().__init__(
            f"Model '{model}' not found. Register it first with register_or_get()",
            code="MODEL_NOT_FOUND",
            details={"model": model},
        )
        self.model = model


class DocumentNotFound(DocshapeError):
    """Lookup by identifier or filter found no document ("OrFail" operations)."""

    def __init__(self, model: str, identifier: Any) -> None:
        super().__init__(
            f"{model} with ID {identifier} not found",
            code="DOCUMENT_NOT_FOUND",
            details={"model": model, "identifier": identifier},
        )
        self.model = model
        self.identifier = identifier


class ErrorKind(Enum):
    """Closed taxonomy of normalized runtime failures."""

    DUPLICATE_KEY = "DuplicateKey"
    VALIDATION_FAILED = "ValidationFailed"
    INVALID_IDENTIFIER = "InvalidIdentifier"
    NOT_FOUND = "NotFound"
    UNKNOWN = "Unknown"


class DocumentError(DocshapeError):
    """A normalized runtime data failure.

    Attributes:
        kind: Taxonomy entry
        original_cause: The raw failure that was normalized
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(
        self,
        message: str,
        original_cause: Optional[BaseException] = None,
        operation: str = "",
        model: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code=self.kind.name,
            details={"operation": operation, "model": model},
        )
        self.original_cause = original_cause
        self.operation = operation
        self.model = model


class DuplicateKeyError(DocumentError):
    """A uniqueness constraint was violated."""

    kind = ErrorKind.DUPLICATE_KEY


class ValidationFailedError(DocumentError):
    """One or more field validators failed."""

    kind = ErrorKind.VALIDATION_FAILED


class InvalidIdentifierError(DocumentError):
    """An identifier could not be parsed as the store's key type."""

    kind = ErrorKind.INVALID_IDENTIFIER


class NotFoundError(DocumentError):
    """An "OrFail" lookup found no document."""

    kind = ErrorKind.NOT_FOUND


class UnknownDocumentError(DocumentError):
    """Any failure outside the other kinds."""

    kind = ErrorKind.UNKNOWN


_EXCEPTION_BY_KIND = {
    ErrorKind.DUPLICATE_KEY: DuplicateKeyError,
    ErrorKind.VALIDATION_FAILED: ValidationFailedError,
    ErrorKind.INVALID_IDENTIFIER: InvalidIdentifierError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.UNKNOWN: UnknownDocumentError,
}


@dataclass(frozen=True)
class ErrorRecord:
    """Normalized failure handed back to callers.

    Attributes:
        kind: Taxonomy entry
        message: User-facing message
        original_cause: The raw failure
        operation: Operation that failed, e.g. "create User"
        model: Model involved, if known
    """

    kind: ErrorKind
    message: str
    original_cause: Any = None
    operation: str = ""
    model: Optional[str] = None

    def to_exception(self) -> DocumentError:
        """Build the exception matching this record's kind."""
        cause = self.original_cause if isinstance(self.original_cause, BaseException) else None
        return _EXCEPTION_BY_KIND[self.kind](
            self.message,
            original_cause=cause,
            operation=self.operation,
            model=self.model,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "operation": self.operation,
            "model": self.model,
        }


def _attr(failure: Any, name: str) -> Any:
    """Read a key from a mapping-shaped failure or an attribute otherwise."""
    if isinstance(failure, Mapping):
        return failure.get(name)
    return getattr(failure, name, None)


def _failure_name(failure: Any) -> str:
    name = _attr(failure, "name")
    if isinstance(name, str):
        return name
    return type(failure).__name__


def _duplicate_field(failure: Any) -> Optional[str]:
    """Return the conflicting field for a uniqueness failure, None otherwise."""
    details = _attr(failure, "details")
    details = details if isinstance(details, Mapping) else {}
    code = _attr(failure, "code")
    if code is None:
        code = details.get("code")
    if code not in DUPLICATE_KEY_CODES and _failure_name(failure) != "DuplicateKeyError":
        return None

    sources = (
        _attr(failure, "keyValue"),
        details.get("keyValue"),
        _attr(failure, "keyPattern"),
        details.get("keyPattern"),
    )
    for source in sources:
        if isinstance(source, Mapping) and source:
            return str(next(iter(source)))

    errmsg = details.get("errmsg") or str(failure)
    match = _INDEX_NAME_RE.search(errmsg)
    if match:
        return match.group(1)
    return "Value"


def _sub_error_messages(errors: Any) -> List[str]:
    if callable(errors):
        # pydantic-style errors() accessor
        errors = errors()
    if isinstance(errors, Mapping):
        errors = list(errors.values())
    messages = []
    for error in errors or []:
        if isinstance(error, str):
            messages.append(error)
            continue
        message = _attr(error, "message") or _attr(error, "msg")
        messages.append(str(message if message is not None else error))
    return messages


def _classify(
    failure: Any,
    operation: str,
    model: Optional[str],
    identifier: Any,
) -> tuple[ErrorKind, str]:
    if isinstance(failure, DocumentError):
        return failure.kind, failure.message

    field_name = _duplicate_field(failure)
    if field_name is not None:
        return ErrorKind.DUPLICATE_KEY, f"{field_name} already exists. Please use a different value."

    name = _failure_name(failure)
    errors = _attr(failure, "errors")
    if name == "ValidationError" and errors is not None:
        messages = _sub_error_messages(errors)
        return ErrorKind.VALIDATION_FAILED, f"Validation failed: {', '.join(messages)}"

    if name in ("CastError", "InvalidId"):
        return ErrorKind.INVALID_IDENTIFIER, "Invalid ID format"

    if isinstance(failure, DocumentNotFound):
        return ErrorKind.NOT_FOUND, f"{failure.model} with ID {failure.identifier} not found"

    return ErrorKind.UNKNOWN, f"Failed to {operation}"


def normalize_error(
    failure: Any,
    operation: str,
    *,
    model: Optional[str] = None,
    identifier: Any = None,
) -> ErrorRecord:
    """Map a raw failure into the closed error taxonomy.

    Args:
        failure: Exception or mapping-shaped failure from the store collaborator
        operation: Human-readable operation, e.g. "create User"
        model: Model involved, if known
        identifier: Document identifier involved, if known

    Returns:
        ErrorRecord; this function never raises

    Example:
        >>> record = normalize_error(dup_key_error, "create User")
        >>> record.message
        'email already exists. Please use a different value.'
    """
    try:
        kind, message = _classify(failure, operation, model, identifier)
    except Exception:
        logger.exception(f"Could not classify failure during '{operation}'")
        kind, message = ErrorKind.UNKNOWN, f"Failed to {operation}"

    record = ErrorRecord(
        kind=kind,
        message=message,
        original_cause=failure,
        operation=operation,
        model=model,
    )
    logger.error(f"{kind.value}: {message}", extra={"operation": operation, "model": model})
    return record


@contextmanager
def translate_errors(
    operation: str,
    model: Optional[str] = None,
    identifier: Any = None,
) -> Iterator[None]:
    """Re-raise any failure in the block as its normalized DocumentError.

    Registry and schema errors are programmer errors and pass through.

    Example:
        >>> with translate_errors("create User", model="User"):
        ...     collection.insert_one(doc)
    """
    try:
        yield
    except DocumentError:
        raise
    except DocumentNotFound as exc:
        raise normalize_error(exc, operation, model=model, identifier=identifier).to_exception() from exc
    except DocshapeError:
        raise
    except Exception as exc:
        raise normalize_error(exc, operation, model=model, identifier=identifier).to_exception() from exc


def ensure_found(result: Any, model: str, identifier: Any) -> Any:
    """Return result, raising DocumentNotFound when it is None."""
    if result is None:
        raise DocumentNotFound(model, identifier)
    return result
