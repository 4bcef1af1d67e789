"""
Global pytest fixtures for the credential vault test suite.

Provides:
- Test environment variables, set before any package import
- A derived credential key shared across the session (PBKDF2 is slow on purpose)
- Async SQLite engine/session with the schema created
- Settings cache isolation
"""
import os
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio

# Set test environment BEFORE any package imports
os.environ["TESTING"] = "true"
os.environ["DB_SSL_MODE"] = "disable"
os.environ["PROBO_ENCRYPTION_KEY"] = "test-probo-encryption-passphrase"
os.environ.pop("NEXTAUTH_SECRET", None)
os.environ.pop("DATABASE_URL", None)

TEST_PASSPHRASE = os.environ["PROBO_ENCRYPTION_KEY"]


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    from riscura_vault.shared.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(scope="session")
def credential_key() -> bytes:
    from riscura_vault.shared.core.security import EncryptionKeyManager

    return EncryptionKeyManager.derive_key(TEST_PASSPHRASE)


@pytest.fixture(scope="session")
def other_key() -> bytes:
    from riscura_vault.shared.core.security import EncryptionKeyManager

    return EncryptionKeyManager.derive_key("a-completely-different-passphrase")


# ============================================================================
# Async Database Fixtures
# ============================================================================

@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / f'vault_{uuid4().hex}.sqlite'}"


@pytest_asyncio.fixture
async def async_engine(sqlite_url):
    """Create async SQLite engine for testing using a temporary file."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from riscura_vault.shared.db.base import Base
    import riscura_vault.models  # noqa: F401

    engine = create_async_engine(sqlite_url, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator:
    """Provide an async session bound to the test schema."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()
