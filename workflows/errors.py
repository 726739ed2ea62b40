"""Error taxonomy for the bill processing workflows."""


class ErrorKind:
    """String labels carried by failed results."""
    TRANSIENT_IO = "transient_io"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONSISTENCY = "consistency"
    PRECONDITION = "precondition"
    LOCK_TIMEOUT = "lock_timeout"


class BillSortError(Exception):
    """Base exception for workflow errors.

    Carries the company, canonical filename and attempted operation so the
    caller has enough context to retry by hand.
    """

    kind = "error"

    def __init__(self, message: str, company: str = "", name: str = "",
                 operation: str = "") -> None:
        super().__init__(message)
        self.company = company
        self.name = name
        self.operation = operation

    def __str__(self) -> str:
        context = ", ".join(
            f"{key}={value}" for key, value in
            (("company", self.company), ("name", self.name), ("operation", self.operation))
            if value
        )
        message = super().__str__()
        return f"{message} ({context})" if context else message


class TransientIOError(BillSortError):
    """A network or storage call failed in a way that may succeed on retry."""
    kind = ErrorKind.TRANSIENT_IO


class ValidationError(BillSortError):
    """A required field is missing or malformed."""
    kind = ErrorKind.VALIDATION


class NotFoundError(BillSortError):
    """A document could not be located in any plausible storage location."""
    kind = ErrorKind.NOT_FOUND


class ConsistencyError(BillSortError):
    """A file was moved but the logs referencing it could not be reconciled."""
    kind = ErrorKind.CONSISTENCY


class LockTimeoutError(BillSortError):
    """The per-company lock could not be acquired in time."""
    kind = ErrorKind.LOCK_TIMEOUT
