import enum
import errno
from typing import Any, Optional


class ApplianceError(Exception):
    pass


class RemoteError(ApplianceError):
    """A failed call against the appliance middleware.

    ``errno`` carries the structured error code when the transport provides
    one; ``extra`` holds whatever additional payload came with the error.
    """

    def __init__(self, message: str, errno: Optional[int] = None, extra: Any = None):
        super().__init__(message)
        self.message = message
        self.errno = errno
        self.extra = extra

    def __str__(self) -> str:
        return self.message


class MalformedNameError(ApplianceError, ValueError):
    def __init__(self, name: str, reason: str = "expected exactly one '@' separator"):
        super().__init__(f"Invalid snapshot name {name!r}: {reason}")
        self.name = name


class ResourceNotFoundError(ApplianceError):
    def __init__(self, kind: str, key: Any):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class JobError(ApplianceError):
    def __init__(self, job_id: Any, message: str, job: Optional[dict] = None):
        super().__init__(message)
        self.job_id = job_id
        self.job = job


class JobFailedError(JobError):
    pass


class JobAbortedError(JobError):
    pass


class JobTimeoutError(JobError):
    pass


class JobNotFoundError(JobError):
    pass


class JobWaitCancelledError(JobError):
    pass


class ErrorKind(enum.Enum):
    ALREADY_EXISTS = "already_exists"
    NOT_FOUND = "not_found"
    OTHER = "other"


# Substring heuristics; the middleware does not reliably set errno on
# validation failures, but it does prefix messages with the errno name.
_ALREADY_EXISTS_PHRASES = ("already exists", "[eexist]")
_NOT_FOUND_PHRASES = ("not found", "does not exist", "[enoent]")


def _error_code(err: BaseException) -> Optional[int]:
    code = getattr(err, "errno", None)
    return code if isinstance(code, int) else None


def classify_error(err: BaseException) -> ErrorKind:
    """Map a failed call onto the outcome it implies for a lifecycle verb."""
    msg = str(err).lower()
    code = _error_code(err)

    if code == errno.EEXIST or any(p in msg for p in _ALREADY_EXISTS_PHRASES):
        return ErrorKind.ALREADY_EXISTS
    if code == errno.ENOENT or any(p in msg for p in _NOT_FOUND_PHRASES):
        return ErrorKind.NOT_FOUND
    return ErrorKind.OTHER


def is_already_exists(err: BaseException) -> bool:
    return classify_error(err) is ErrorKind.ALREADY_EXISTS


def is_not_found(err: BaseException) -> bool:
    return classify_error(err) is ErrorKind.NOT_FOUND
