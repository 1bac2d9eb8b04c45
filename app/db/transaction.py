import logging
from typing import Awaitable, Callable, Optional, TypeVar

from pymongo.errors import PyMongoError

from app.core.config import settings
from app.core.errors import ConflictError, StaleWriteError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_transaction(
    db,
    work: Callable[..., Awaitable[T]],
    attempts: Optional[int] = None,
) -> T:
    """
    Run `work(session)` inside a multi-document transaction.

    The whole unit is re-run from scratch when a versioned write loses its
    compare-and-swap (StaleWriteError) or the server labels the failure as a
    TransientTransactionError. Domain errors propagate unchanged and abort the
    transaction. Once attempts are used up the caller gets a ConflictError.
    """
    attempts = attempts or settings.MAX_TRANSACTION_ATTEMPTS

    for attempt in range(1, attempts + 1):
        try:
            async with await db.client.start_session() as session:
                async with session.start_transaction():
                    return await work(session)
        except StaleWriteError as exc:
            logger.warning("Stale write on attempt %d/%d: %s", attempt, attempts, exc)
        except PyMongoError as exc:
            if not exc.has_error_label("TransientTransactionError"):
                raise
            logger.warning("Transient transaction error on attempt %d/%d: %s", attempt, attempts, exc)

    raise ConflictError(f"Concurrent update could not be applied after {attempts} attempts, retry the request")
