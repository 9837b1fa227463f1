from typing import Optional
import logging

from fastapi import Header, HTTPException, status

from pharmabatch.core.result import Err, ErrorKind, Result
from pharmabatch.database import get_db_session
from pharmabatch.services.batch_events import BatchEventPublisher, default_publisher


logger = logging.getLogger(__name__)

DEFAULT_ACTOR = "SYSTEM"

# Business-rule failures mapped onto HTTP status codes
ERROR_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INSUFFICIENT_STOCK: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_QUARANTINED: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def unwrap(result: Result):
    """
    Return the value of an Ok result or raise the matching HTTPException.

    The exception detail is the error's dict form so clients get the kind
    and the numeric/status context, not just a message.
    """
    if isinstance(result, Err):
        status_code = ERROR_STATUS.get(result.kind, status.HTTP_400_BAD_REQUEST)
        logger.info(f"Request rejected ({result.kind.value}): {result.message}")
        raise HTTPException(status_code=status_code, detail=result.to_dict())
    return result.value


async def get_actor(x_actor: Optional[str] = Header(None)) -> str:
    """
    Identity recorded on movements and quarantine actions.

    Authentication happens upstream; the gateway forwards the caller in
    the X-Actor header.
    """
    if x_actor and x_actor.strip():
        return x_actor.strip()
    return DEFAULT_ACTOR


def get_publisher() -> BatchEventPublisher:
    return default_publisher


def get_job_session_factory():
    """Session factory for manually triggered jobs."""
    return get_db_session
