# errors raised by the ledger, one class per failure kind


class LedgerError(Exception):
    kind = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"detail": self.message, "error": self.kind}


class NotFound(LedgerError):
    kind = "not_found"


class InvalidArgument(LedgerError):
    kind = "invalid_argument"


class Conflict(LedgerError):
    kind = "conflict"


class DuplicateKey(LedgerError):
    kind = "duplicate_key"


class Internal(LedgerError):
    kind = "internal"
