"""Validation message helpers for MiniBeast request and settings models."""

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

# Inputs for these fields are never echoed back to the caller
SECRET_FIELDS = frozenset({"secretKey", "secret_key", "accessKey", "access_key"})

# Location prefixes FastAPI adds to request validation errors
_REQUEST_LOCATIONS = frozenset({"body", "query", "path", "header", "cookie"})


def _field_path(loc: Iterable[Any]) -> str:
    parts = [str(item) for item in loc]
    if parts and parts[0] in _REQUEST_LOCATIONS:
        parts = parts[1:]
    return ".".join(parts) if parts else "unknown"


def flatten_pydantic_errors(
    exc: PydanticValidationError | Iterable[Mapping[str, Any]],
) -> list[str]:
    """Flatten validation errors into human-readable messages.

    Accepts either a pydantic ``ValidationError`` or the error list of a
    FastAPI ``RequestValidationError``. Value errors include the rejected
    input unless the field holds a credential.

    Args:
        exc: Pydantic ValidationError or an iterable of error dicts

    Returns:
        List of human-readable error messages, one per field error
    """
    raw_errors = exc.errors() if isinstance(exc, PydanticValidationError) else exc
    errors: list[str] = []

    for error in raw_errors:
        loc = tuple(error.get("loc", ()))
        field_path = _field_path(loc)
        msg = error.get("msg", "Unknown error")

        secret = bool(loc) and str(loc[-1]) in SECRET_FIELDS
        if error.get("type") == "value_error" and not secret:
            formatted = f"Field '{field_path}': {msg} (received: {error.get('input')!r})"
        else:
            formatted = f"Field '{field_path}': {msg}"

        errors.append(formatted)

    return errors if errors else ["Validation failed with unknown error"]


def summarize_errors(
    exc: PydanticValidationError | Iterable[Mapping[str, Any]],
) -> str:
    """Join flattened validation errors into a single response message."""
    return "; ".join(flatten_pydantic_errors(exc))
