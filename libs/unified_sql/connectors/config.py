"""
Type-safe configuration classes for the backend connectors.

Settings are read from the process environment (and an optional ``.env``
file) through pydantic-settings, so every host, credential, pool size and
timeout is supplied externally.
"""

from enum import Enum
from typing import Any

from pydantic import AliasChoices, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL


class UnprefixedPolicy(str, Enum):
    """How to dispatch a statement without an ``rs.``/``ss.`` source prefix."""

    REJECT = "reject"
    SQLSERVER = "sqlserver"
    REDSHIFT = "redshift"
    HEURISTIC = "heuristic"


class SqlServerSettings(BaseSettings):
    """Connection and pool configuration for SQL Server."""

    model_config = SettingsConfigDict(
        env_prefix="SQLSERVER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    host: str = Field(default="localhost", min_length=1, description="Server host")
    port: int = Field(default=1433, ge=1, le=65535, description="Port number")
    user: str = Field(default="sa", min_length=1, description="Login name")
    password: SecretStr | None = Field(default=None, description="Login password")
    database: str = Field(default="master", min_length=1, description="Database")
    driver: str = Field(
        default="ODBC Driver 18 for SQL Server", description="ODBC driver name"
    )
    encrypt: bool = Field(default=False, description="Encrypt the connection")
    trust_server_certificate: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "SQLSERVER_TRUST_CERT", "SQLSERVER_TRUST_SERVER_CERTIFICATE"
        ),
        description="Skip server certificate validation",
    )

    pool_min: int = Field(default=10, ge=0, description="Connections kept open")
    pool_max: int = Field(default=30, ge=1, description="Maximum connections")
    pool_idle_timeout_seconds: int = Field(
        default=3600, ge=1, description="Recycle connections older than this"
    )
    pool_acquire_timeout_seconds: int = Field(
        default=600, ge=1, description="Wait for a free connection"
    )
    request_timeout_seconds: int = Field(
        default=3600, ge=0, description="Per-statement timeout, 0 disables"
    )
    connection_timeout_seconds: int = Field(
        default=60, ge=1, description="Login timeout"
    )

    @model_validator(mode="after")
    def validate_pool_bounds(self) -> "SqlServerSettings":
        """Ensure the pool can hold its minimum size."""
        if self.pool_min > self.pool_max:
            raise ValueError("pool_min cannot exceed pool_max")
        return self

    def sqlalchemy_url(self) -> URL:
        """Build the async SQLAlchemy URL for the aioodbc dialect."""
        return URL.create(
            "mssql+aioodbc",
            username=self.user,
            password=self.password.get_secret_value() if self.password else None,
            host=self.host,
            port=self.port,
            database=self.database,
            query={
                "driver": self.driver,
                "Encrypt": "yes" if self.encrypt else "no",
                "TrustServerCertificate": (
                    "yes" if self.trust_server_certificate else "no"
                ),
            },
        )

    def engine_options(self) -> dict[str, Any]:
        """Pool sizing and timeout keyword arguments for ``create_async_engine``."""
        return {
            "pool_size": self.pool_min,
            "max_overflow": self.pool_max - self.pool_min,
            "pool_timeout": self.pool_acquire_timeout_seconds,
            "pool_recycle": self.pool_idle_timeout_seconds,
            "pool_pre_ping": True,
            "connect_args": {"timeout": self.connection_timeout_seconds},
        }


class RedshiftSettings(BaseSettings):
    """Configuration for the Redshift Data API statement protocol."""

    model_config = SettingsConfigDict(
        env_prefix="REDSHIFT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    database: str = Field(default="dev", min_length=1, description="Database name")
    workgroup_name: str = Field(
        default="default-workgroup",
        min_length=1,
        description="Serverless workgroup, ignored when a cluster is set",
    )
    cluster_identifier: str | None = Field(
        default=None, description="Provisioned cluster identifier"
    )
    secret_arn: str | None = Field(
        default=None, description="Secrets Manager ARN holding credentials"
    )
    db_user: str | None = Field(
        default=None, description="Database user for temporary credentials"
    )
    region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("REDSHIFT_REGION", "AWS_REGION"),
        description="AWS region",
    )

    poll_interval_seconds: float = Field(
        default=1.0, ge=0, description="Delay between status checks"
    )
    max_wait_seconds: float = Field(
        default=60.0, gt=0, description="Polling ceiling for queries"
    )
    health_check_max_wait_seconds: float = Field(
        default=10.0, gt=0, description="Polling ceiling for health probes"
    )

    def statement_target(self) -> dict[str, str]:
        """Keyword arguments naming where ``execute_statement`` runs."""
        params = {"Database": self.database}
        if self.cluster_identifier:
            params["ClusterIdentifier"] = self.cluster_identifier
        else:
            params["WorkgroupName"] = self.workgroup_name

        if self.secret_arn:
            params["SecretArn"] = self.secret_arn
        elif self.db_user:
            params["DbUser"] = self.db_user

        return params


class FederationSettings(BaseSettings):
    """Routing and federation behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="UNIFIED_SQL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    unprefixed_policy: UnprefixedPolicy = Field(
        default=UnprefixedPolicy.REJECT,
        description="Dispatch policy for statements without a source prefix",
    )
    pushdown_predicates: bool = Field(
        default=False,
        description="Push simple single-source WHERE predicates into source pulls",
    )
