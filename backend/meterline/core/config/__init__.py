"""Configuration module for Meterline.

Provides centralized configuration management with type-safe enums.

Usage:
    from meterline.core.config import settings, Environment

    if settings.ENVIRONMENT == Environment.PRD:
        ...
"""

from meterline.core.config.enums import Environment, UsageRollupPolicy
from meterline.core.config.settings import Settings

__all__ = [
    "Settings",
    "Environment",
    "UsageRollupPolicy",
    "settings",
]

# Singleton settings instance
settings = Settings()
