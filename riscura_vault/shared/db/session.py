import ssl
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from riscura_vault.shared.core.config import Settings, get_settings
from riscura_vault.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()

# Ensure ORM mappings are registered for scripts that import the DB layer.
import riscura_vault.models  # noqa: F401, E402


def _build_connect_args(settings_obj: Settings, effective_url: str) -> dict[str, Any]:
    connect_args: dict[str, Any] = {}
    if "postgresql" not in effective_url:
        return connect_args

    connect_args["statement_cache_size"] = 0  # Required for Supavisor/pgbouncer
    ssl_mode = settings_obj.DB_SSL_MODE.lower()

    if ssl_mode == "disable":
        logger.warning(
            "database_ssl_disabled",
            msg="SSL disabled - INSECURE, do not use in production!",
        )
        connect_args["ssl"] = False
        return connect_args

    if ssl_mode == "require":
        ssl_context = ssl.create_default_context()
        if settings_obj.DB_SSL_CA_CERT_PATH:
            ssl_context.load_verify_locations(cafile=settings_obj.DB_SSL_CA_CERT_PATH)
            ssl_context.verify_mode = ssl.CERT_REQUIRED
            logger.info(
                "database_ssl_require_verified",
                ca_cert=settings_obj.DB_SSL_CA_CERT_PATH,
            )
        elif settings_obj.is_production:
            logger.critical(
                "database_ssl_require_failed_production",
                msg="SSL CA verification is REQUIRED in production/staging.",
            )
            raise ConfigurationError(
                "DB_SSL_CA_CERT_PATH is mandatory when DB_SSL_MODE=require in production.",
                code="insecure_database_tls",
            )
        else:
            ssl_context.check_hostname = False
            ssl_context.verify_mode = ssl.CERT_NONE
            logger.warning(
                "database_ssl_require_insecure",
                msg="SSL enabled but CA verification skipped. MitM risk!",
            )
        connect_args["ssl"] = ssl_context
        return connect_args

    # verify-ca / verify-full; Settings guarantees a CA path here.
    ssl_context = ssl.create_default_context(cafile=settings_obj.DB_SSL_CA_CERT_PATH)
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = ssl_mode == "verify-full"
    connect_args["ssl"] = ssl_context
    logger.info("database_ssl_verified", mode=ssl_mode, ca_cert=settings_obj.DB_SSL_CA_CERT_PATH)
    return connect_args


def _build_pool_config(settings_obj: Settings, effective_url: str) -> dict[str, Any]:
    pool_config: dict[str, Any] = {"echo": settings_obj.DB_ECHO}
    if "sqlite" in effective_url:
        pool_config["poolclass"] = StaticPool
    else:
        # Maintenance jobs hold exactly one connection for their whole run.
        pool_config.update(
            {"pool_size": 1, "max_overflow": 0, "pool_pre_ping": True}
        )
    return pool_config


def create_engine_from_settings(
    settings_obj: Settings | None = None, database_url: str | None = None
) -> AsyncEngine:
    """Build the async engine for DATABASE_URL (or an explicit override)."""
    settings_obj = settings_obj or get_settings()
    effective_url = database_url or settings_obj.async_database_url
    return create_async_engine(
        effective_url,
        connect_args=_build_connect_args(settings_obj, effective_url),
        **_build_pool_config(settings_obj, effective_url),
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
