from typing import Any, NamedTuple, Optional


class StoreError(Exception):
    """A failure reported by the conversation store (network, permission, constraint)."""

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    @classmethod
    def from_exception(cls, exc: Exception, code: Optional[str] = None):
        if isinstance(exc, StoreError):
            return exc
        details = getattr(exc, "orig", None)
        return cls(
            message=str(exc).splitlines()[0] if str(exc) else exc.__class__.__name__,
            code=code or exc.__class__.__name__,
            details=str(details) if details is not None else None,
        )

    def to_dict(self):
        return {"message": self.message, "code": self.code, "details": self.details}

    def __repr__(self):
        return f"StoreError(code={self.code!r}, message={self.message!r})"


class StoreResult(NamedTuple):
    """``(data, error)`` pair. ``(None, None)`` means not found."""

    data: Any = None
    error: Optional[StoreError] = None

    @property
    def ok(self) -> bool:
        return self.error is None
