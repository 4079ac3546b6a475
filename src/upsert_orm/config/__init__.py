"""Configuration management: profiles, ORM settings, and TOML loading.

Usage:
    >>> from upsert_orm.config import load_db_config, DatabaseProfile, DatabaseConfig
"""

from upsert_orm.config.loader import load_db_config
from upsert_orm.config.models import DatabaseConfig, DatabaseProfile, OrmSettings

__all__ = ["load_db_config", "DatabaseConfig", "DatabaseProfile", "OrmSettings"]
