from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel.ext.asyncio.session import AsyncSession

from vault_backend.errors import StorageFailure

logger = logging.getLogger(__name__)


async def rollback_quietly(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except SQLAlchemyError:
        logger.warning("rollback failed", exc_info=True)


async def commit(session: AsyncSession) -> None:
    """Commit, turning database errors into StorageFailure after rolling back."""

    try:
        await session.commit()
    except SQLAlchemyError as e:
        await rollback_quietly(session)
        raise StorageFailure() from e
