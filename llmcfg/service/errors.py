"""Failure kinds raised by the configuration service.

Each error carries a stable ``code`` that callers on the other side of the
service boundary can match on without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError


class ServiceError(Exception):
    code = "service_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    """Malformed or out-of-range input."""

    code = "validation_error"

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        return cls.from_errors(exc.errors())

    @classmethod
    def from_errors(cls, raw_errors: Iterable[Mapping[str, Any]]) -> "ValidationError":
        """Build from pydantic-style error dicts carrying ``loc`` and ``msg``."""
        errors = [
            {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in raw_errors
        ]
        message = "; ".join(f"{e['loc']}: {e['msg']}" if e["loc"] else e["msg"] for e in errors)
        return cls(message or "invalid input", details={"errors": errors})


class NotFoundError(ServiceError):
    code = "not_found"

    def __init__(self, config_id: str) -> None:
        super().__init__(f"Config {config_id} does not exist", details={"id": config_id})
        self.config_id = config_id


class StoreError(ServiceError):
    """The durable store could not be read or written."""

    code = "store_error"
