from __future__ import annotations


class DrLedgerError(Exception):
    """Base error for drledger."""

    code = "DRLEDGER_ERROR"
    kind = "internal"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "kind": self.kind, "message": self.message}


class ValidationError(DrLedgerError):
    """Caller input is missing, malformed, or outside an allowed set."""

    code = "VALIDATION_ERROR"
    kind = "validation"
    status_code = 422


class DuplicateKeyError(ValidationError):
    """A snapshot or drill with the same normalized key already exists."""

    code = "DUPLICATE_KEY"
    kind = "conflict"
    status_code = 409


class NotFoundError(DrLedgerError):
    """Lookup by id or key resolved to no row."""

    code = "NOT_FOUND"
    kind = "not_found"
    status_code = 404


class ConflictError(DrLedgerError):
    """Requested lifecycle transition is not legal from the current status."""

    code = "INVALID_TRANSITION"
    kind = "conflict"
    status_code = 409
