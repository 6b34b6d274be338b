"""
Commit-then-publish unit of work for service operations.

Any exception rolls the session back, which also releases row locks
taken with SELECT ... FOR UPDATE. Queued domain events are dropped on
failure and published only after a successful commit.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from lms.exceptions import LMSException

logger = logging.getLogger(__name__)


@asynccontextmanager
async def committing(db: AsyncSession, dispatcher=None) -> AsyncIterator[AsyncSession]:
    try:
        yield db
        await db.commit()
    except LMSException as e:
        logger.debug(f"Rejected, rolling back: {e.code}")
        await db.rollback()
        if dispatcher is not None:
            dispatcher.discard_pending(db)
        raise
    except Exception as e:
        logger.error(f"Transaction failed, rolling back: {type(e).__name__}: {str(e)}")
        await db.rollback()
        if dispatcher is not None:
            dispatcher.discard_pending(db)
        raise

    if dispatcher is not None:
        await dispatcher.publish_pending(db)
