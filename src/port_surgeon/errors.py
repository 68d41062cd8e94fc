"""Error taxonomy for port-surgeon."""

from __future__ import annotations


class PortSurgeonError(Exception):
    """Base class for all port-surgeon errors."""


class BackendError(PortSurgeonError):
    """Structured fault reported by (or while talking to) the backend service.

    Mirrors the backend's ``{code, message, details}`` error payload.
    """

    def __init__(self, code: str, message: str, details: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    @classmethod
    def from_dict(cls, data: object) -> BackendError:
        """Build from an error payload, tolerating missing fields."""
        if not isinstance(data, dict):
            return cls("UNKNOWN", str(data))
        return cls(
            code=str(data.get("code", "UNKNOWN")),
            message=str(data.get("message", "Unknown backend error")),
            details=data.get("details"),
        )

    @classmethod
    def wrap(cls, exc: BaseException) -> BackendError:
        """Re-type an arbitrary backend fault, keeping its code if it has one."""
        if isinstance(exc, BackendError):
            return cls(exc.code, exc.message, exc.details)
        return cls("UNKNOWN", str(exc) or type(exc).__name__)

    def to_dict(self) -> dict:
        """Serialize to the wire error shape."""
        return {"code": self.code, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


class FetchError(BackendError):
    """A reconciliation fetch (or port lookup) failed."""


class ActionError(BackendError):
    """A termination or container action failed."""


class ValidationError(PortSurgeonError, ValueError):
    """Input rejected before any remote call was attempted."""
