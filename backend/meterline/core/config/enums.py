"""Configuration enums for type-safe settings.

These enums provide type safety and IDE autocomplete for configuration values.
They inherit from str to maintain JSON serialization compatibility.
"""

from enum import Enum


class Environment(str, Enum):
    """Deployment environments.

    Controls environment-specific behavior like logging and container wiring.
    """

    LOCAL = "local"
    TEST = "test"
    DEV = "dev"
    PRD = "prd"


class UsageRollupPolicy(str, Enum):
    """Whether agency-level usage reads include sub-account activity.

    AGENCY_ONLY counts only events recorded against the agency scope itself.
    INCLUDE_SUB_ACCOUNTS counts the agency's events plus every sub-account
    belonging to that agency. Sub-account reads are never rolled up.
    """

    AGENCY_ONLY = "agency_only"
    INCLUDE_SUB_ACCOUNTS = "include_sub_accounts"
