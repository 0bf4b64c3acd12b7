"""Typed configuration objects for transactions and pooled engines."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, PositiveInt

__all__ = [
    "DatabasePoolConfig",
    "DatabaseSettings",
    "IsolationLevel",
    "TransactionOptions",
]

IsolationLevel = Literal[
    "READ UNCOMMITTED",
    "READ COMMITTED",
    "REPEATABLE READ",
    "SERIALIZABLE",
]


class TransactionOptions(BaseModel):
    """Options applied when a transaction is started."""

    model_config = ConfigDict(frozen=True)

    isolation_level: IsolationLevel | None = Field(
        default=None,
        description="Isolation level for the transaction. Null keeps the server default.",
    )
    read_only: bool = Field(
        False,
        description="Start the transaction in read-only access mode.",
    )

    @property
    def is_default(self) -> bool:
        return self.isolation_level is None and not self.read_only

    def to_sql(self) -> str | None:
        """Render the standard ``SET TRANSACTION`` statement, ``None`` for defaults."""

        if self.is_default:
            return None
        modes = []
        if self.isolation_level is not None:
            modes.append(f"ISOLATION LEVEL {self.isolation_level}")
        if self.read_only:
            modes.append("READ ONLY")
        return "SET TRANSACTION " + ", ".join(modes)


class DatabasePoolConfig(BaseModel):
    """Connection pool tuning knobs for SQLAlchemy engines."""

    size: PositiveInt = Field(
        5, description="Base amount of connections to keep open."
    )
    max_overflow: int = Field(
        10,
        ge=0,
        description=(
            "Maximum amount of transient connections allowed in addition to the base pool "
            "size when the demand temporarily exceeds capacity."
        ),
    )
    timeout: float | None = Field(
        30.0,
        ge=0.0,
        description="Seconds to wait when acquiring a pooled connection before failing. Use null for unlimited wait.",
    )
    recycle: PositiveFloat = Field(
        1_800.0,
        description="Seconds after which idle connections are recycled to avoid server-side disconnects.",
    )
    use_lifo: bool = Field(
        True,
        description="Prefer returning the most recently used connection to improve cache locality.",
    )


class DatabaseSettings(BaseModel):
    """Connection string plus pool and transaction defaults for an engine."""

    dsn: str = Field(
        ..., min_length=1, description="SQLAlchemy database URL."
    )
    pool: DatabasePoolConfig = Field(default_factory=DatabasePoolConfig)
    transaction: TransactionOptions = Field(
        default_factory=TransactionOptions,
        description="Options used by transactions begun without explicit options.",
    )
    echo_statements: bool = Field(
        False,
        description="Enable SQLAlchemy statement logging. Should remain disabled in production.",
    )
