from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from riscura_vault.models.probo_integration import ProboIntegration
from riscura_vault.shared.core.config import Settings, get_settings
from riscura_vault.shared.core.exceptions import StoreError
from riscura_vault.shared.db.session import (
    create_engine_from_settings,
    create_session_maker,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class CredentialRecord:
    id: str
    organization_id: str
    cipher_text: str | None


class CredentialStore(Protocol):
    async def find_many(self, *, cipher_text_not_null: bool = True) -> list[CredentialRecord]:
        """List credential records, optionally only those holding a ciphertext."""

    async def update(self, record_id: str, *, cipher_text: str) -> None:
        """Overwrite one record's ciphertext; raises StoreError on failure."""


class SQLAlchemyCredentialStore:
    """Credential store over the ProboIntegration table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_many(self, *, cipher_text_not_null: bool = True) -> list[CredentialRecord]:
        stmt = select(
            ProboIntegration.id,
            ProboIntegration.organization_id,
            ProboIntegration.api_key_encrypted,
        )
        if cipher_text_not_null:
            stmt = stmt.where(ProboIntegration.api_key_encrypted.is_not(None))

        try:
            result = await self._session.execute(stmt)
            rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError("Failed to list credential records", code="store_read_failed") from e
        finally:
            # Close the read transaction so each update commits on its own.
            await self._session.rollback()

        return [
            CredentialRecord(id=record_id, organization_id=organization_id, cipher_text=cipher_text)
            for record_id, organization_id, cipher_text in rows
        ]

    async def update(self, record_id: str, *, cipher_text: str) -> None:
        stmt = (
            update(ProboIntegration)
            .where(ProboIntegration.id == record_id)
            .values(api_key_encrypted=cipher_text)
        )
        try:
            result = await self._session.execute(stmt)
            if result.rowcount == 0:
                await self._session.rollback()
                raise StoreError(
                    "Credential record not found",
                    code="store_record_missing",
                    details={"record_id": record_id},
                )
            await self._session.commit()
        except SQLAlchemyError as e:
            await self._session.rollback()
            raise StoreError(
                "Failed to update credential record",
                code="store_write_failed",
                details={"record_id": record_id},
            ) from e


@asynccontextmanager
async def open_credential_store(
    settings: Settings | None = None, database_url: str | None = None
) -> AsyncIterator[SQLAlchemyCredentialStore]:
    """
    Acquire one database session for the duration of a run.

    The engine is disposed exactly once on exit, whether the block returns or
    raises.
    """
    settings = settings or get_settings()
    engine = create_engine_from_settings(settings, database_url=database_url)
    session_maker = create_session_maker(engine)
    logger.info("credential_store_opened")
    try:
        async with session_maker() as session:
            yield SQLAlchemyCredentialStore(session)
    finally:
        await engine.dispose()
        logger.info("credential_store_closed")
