"""Executor and ORM factory.

Builds a ``PostgresExecutor`` and an ``UpsertORM`` from a db.toml profile.
Everything is passed explicitly; nothing is cached at module level, so
independent ORMs (different tenants, keys or databases) can coexist.

Usage:
    from upsert_orm.factory import create_orm

    orm = create_orm("acme", "user-123", profile_name="local")
    orm.deploy(blogs)
"""

import logging
import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from urllib.parse import quote

from upsert_orm.adapters.base import DatabaseExecutor
from upsert_orm.adapters.postgres import PostgresExecutor
from upsert_orm.codec.crypto import AesGcmCipher
from upsert_orm.config.loader import load_db_config
from upsert_orm.config.models import DatabaseConfig, DatabaseProfile
from upsert_orm.orm import UpsertORM

logger = logging.getLogger(__name__)


class ProfileNotFoundError(Exception):
    """Raised when no database profile is configured."""

    pass


# ============================================================================
# Profile Resolution
# ============================================================================


def get_active_profile_name(env_prefix: str = "") -> str:
    """Get active profile name from the ``{env_prefix}DB_PROFILE`` env var.

    Raises:
        ProfileNotFoundError: If the variable is unset or empty
    """
    variable = f"{env_prefix}DB_PROFILE"
    env_profile = os.environ.get(variable)
    if env_profile:
        return env_profile

    raise ProfileNotFoundError(
        f"No database profile configured.\nSet {variable}=<name> to one of the db.toml profiles."
    )


def get_profile(config: DatabaseConfig, profile_name: str) -> DatabaseProfile:
    """Look up *profile_name* in *config*.

    Raises:
        ProfileNotFoundError: If the profile is not defined
    """
    if profile_name not in config.profiles:
        available = ", ".join(config.profiles.keys()) or "(none)"
        raise ProfileNotFoundError(
            f"Profile '{profile_name}' not found in db.toml.\nAvailable profiles: {available}"
        )
    return config.profiles[profile_name]


def resolve_url(profile: DatabaseProfile) -> str:
    """Resolve profile URL with password substitution.

    Args:
        profile: Database profile from config

    Returns:
        Connection URL with password substituted
    """
    url = profile.url
    if profile.db_password and "[YOUR-PASSWORD]" in url:
        url = url.replace("[YOUR-PASSWORD]", quote(profile.db_password, safe=""))
    return url


# ============================================================================
# Factories
# ============================================================================


def get_executor(
    profile_name: str | None = None,
    *,
    config: DatabaseConfig | None = None,
    config_path: Path | None = None,
    env_prefix: str = "",
) -> PostgresExecutor:
    """Create a ``PostgresExecutor`` for a db.toml profile.

    Args:
        profile_name: Profile to use.  Falls back to the
            ``{env_prefix}DB_PROFILE`` env var.
        config: Already-loaded configuration; loaded from *config_path*
            when omitted.
        config_path: Path to db.toml.
        env_prefix: Prefix for the profile env var (e.g. ``"APP_"``).

    Raises:
        ProfileNotFoundError: If no profile is selected or it does not exist
        ValueError: If the profile's provider is not ``postgres``
    """
    if config is None:
        config = load_db_config(config_path)
    if profile_name is None:
        profile_name = get_active_profile_name(env_prefix)
    profile = get_profile(config, profile_name)

    if profile.provider != "postgres":
        raise ValueError(
            f"Profile '{profile_name}' uses unsupported provider '{profile.provider}'"
        )

    logger.info(f"Using database profile '{profile_name}'")
    return PostgresExecutor(resolve_url(profile))


def create_orm(
    multitenancy_value: str,
    performed_by: str,
    *,
    profile_name: str | None = None,
    config_path: Path | None = None,
    env_prefix: str = "",
    executor: DatabaseExecutor | None = None,
    clock: Callable[[], datetime] | None = None,
) -> UpsertORM:
    """Create an ``UpsertORM`` configured from db.toml.

    Batch size and the encryption key come from the ``[orm]`` table.  Pass
    *executor* to reuse an existing connection pool.

    Example:
        >>> orm = create_orm("acme", "user-123", profile_name="local")
        >>> orm.save_model(blog)
    """
    config = load_db_config(config_path)
    if executor is None:
        executor = get_executor(profile_name, config=config, env_prefix=env_prefix)

    key = config.orm.encryption_key_bytes
    cipher = AesGcmCipher(key) if key is not None else None

    return UpsertORM(
        executor,
        multitenancy_value,
        performed_by,
        cipher=cipher,
        batch_size=config.orm.batch_size,
        clock=clock,
    )
