"""Application settings.

Values are read from the environment (and an optional ``.env`` file) by
pydantic-settings. Import the singleton from ``meterline.core.config``.
"""

from typing import Optional

from pydantic import Field, PostgresDsn, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict

from meterline.core.config.enums import Environment, UsageRollupPolicy


class Settings(BaseSettings):
    """Meterline settings.

    Attributes:
    ----------
        ENVIRONMENT (Environment): Deployment environment.
        LOG_LEVEL (str): Root log level for the ``meterline`` logger.
        POSTGRES_HOST (str): Database host.
        POSTGRES_PORT (int): Database port.
        POSTGRES_USER (str): Database user.
        POSTGRES_PASSWORD (str): Database password.
        POSTGRES_DB (str): Database name.
        POSTGRES_SSLMODE (str): ``disable`` turns off SSL for pooled connections.
        db_pool_size (int): Base SQLAlchemy pool size per process.
        db_pool_max_overflow (int): Extra connections allowed above the pool size.
        LEDGER_ALLOW_NEGATIVE_BALANCE (bool): Let debits drive a credit balance below zero.
        LEDGER_TX_MAX_ATTEMPTS (int): Attempts for a write unit that hits a lock conflict.
        LEDGER_TX_RETRY_WAIT_SECONDS (float): Base backoff between conflict retries.
        USAGE_ROLLUP_POLICY (UsageRollupPolicy): Agency-level usage rollup policy.
        CREDIT_DEFAULT_CURRENCY (str): Currency label stamped on new credit positions.
        JOBS_SECRET (str, optional): Shared secret for the scheduled job endpoints.
        RUN_ALEMBIC_MIGRATIONS (bool): Run migrations on API startup.
    """

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", case_sensitive=True)

    ENVIRONMENT: Environment = Environment.LOCAL
    LOG_LEVEL: str = "INFO"

    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "meterline"
    POSTGRES_PASSWORD: str = "meterline"
    POSTGRES_DB: str = "meterline"
    POSTGRES_SSLMODE: str = "prefer"

    db_pool_size: int = Field(default=20, gt=0)
    db_pool_max_overflow: int = Field(default=40, ge=0)

    LEDGER_ALLOW_NEGATIVE_BALANCE: bool = False
    LEDGER_TX_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    LEDGER_TX_RETRY_WAIT_SECONDS: float = Field(default=0.05, ge=0)

    USAGE_ROLLUP_POLICY: UsageRollupPolicy = UsageRollupPolicy.AGENCY_ONLY
    CREDIT_DEFAULT_CURRENCY: str = "CREDITS"
    CREDIT_HISTORY_MAX_LIMIT: int = Field(default=500, gt=0)

    JOBS_SECRET: Optional[str] = None
    RUN_ALEMBIC_MIGRATIONS: bool = False

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_ASYNC_DATABASE_URI(self) -> str:  # noqa: N802
        """Async connection string for the asyncpg driver."""
        return str(
            PostgresDsn.build(
                scheme="postgresql+asyncpg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_HOST,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )
