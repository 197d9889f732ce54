import logging
from enum import Enum
from typing import Any

from msgspec import Struct

from crudflow.types import (
    AlreadyExistError,
    NotFoundError,
    OperationCancelledError,
    PersistenceError,
    RouteParamNotFoundError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class Code(Enum):
    """Stable response codes: (code, http status, message)."""

    success = (0, 200, "success")
    failure = (-1, 400, "failure")
    invalid_param = (1000, 400, "invalid parameter")
    bad_request = (1001, 400, "bad request")
    context_timeout = (1006, 504, "context timeout")
    not_found = (1008, 404, "Requested resource not found.")
    already_exist = (1010, 409, "resource already exist")
    not_found_route_param = (2005, 400, "not found router param")

    def __init__(self, code: int, status: int, msg: str):
        self.code = code
        self.status = status
        self.msg = msg


class Envelope(Struct, kw_only=True):
    code: int
    msg: str
    data: Any = None

    @classmethod
    def of(cls, code: Code, data: Any = None, msg: str | None = None) -> "Envelope":
        return cls(code=code.code, msg=msg or code.msg, data=data)


class Reply(Struct, kw_only=True):
    """What the orchestrator hands back to the transport layer."""

    status: int
    envelope: Envelope | None = None
    content: bytes | None = None
    media_type: str = "application/json"
    headers: dict[str, str] = {}

    @classmethod
    def ok(cls, data: Any = None, status: int | None = None) -> "Reply":
        return cls(
            status=status or Code.success.status,
            envelope=Envelope.of(Code.success, data),
        )

    @classmethod
    def no_content(cls) -> "Reply":
        return cls(status=204)


_CODE_BY_ERROR: list[tuple[type[Exception], Code]] = [
    (RouteParamNotFoundError, Code.not_found_route_param),
    (ValidationError, Code.invalid_param),
    (NotFoundError, Code.not_found),
    (AlreadyExistError, Code.already_exist),
    (OperationCancelledError, Code.context_timeout),
    (PersistenceError, Code.failure),
    (ServiceError, Code.failure),
]


def error_reply(exc: Exception) -> Reply:
    """Map an exception onto the response envelope.

    Only errors from the taxonomy carry their message to the caller.
    Anything else is logged here and answered with the generic failure.
    """
    for error_type, code in _CODE_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        logger.exception("unhandled error", exc_info=exc)
        return Reply(status=Code.failure.status, envelope=Envelope.of(Code.failure))

    status = code.status
    if isinstance(exc, ServiceError) and exc.status_code:
        status = exc.status_code
    msg = str(exc) or code.msg
    if isinstance(exc, PersistenceError):
        msg = code.msg
    return Reply(status=status, envelope=Envelope.of(code, msg=msg))
