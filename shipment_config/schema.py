"""
Engine configuration schema.

``EngineConfig`` is the frozen runtime artifact produced by
``shipment_config.get_active_config()``.  YAML documents are parsed into it
by ``shipment_config.loader``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class ConfigValidationError(ValueError):
    """A configuration document is missing keys or holds invalid values."""

    def __init__(self, errors: list[str], source: str | None = None):
        self.errors = list(errors)
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(
            f"Invalid engine configuration{where}:\n"
            + "\n".join(f"  - {e}" for e in self.errors)
        )


@dataclass(frozen=True)
class StoreConfig:
    """Database location and read retry policy."""

    database_url: str = "sqlite:///shipment_engine.db"
    read_retries: int = 3
    retry_backoff_seconds: float = 0.05
    echo: bool = False


@dataclass(frozen=True)
class NegotiationConfig:
    offer_limit: int = 3


@dataclass(frozen=True)
class MatchingConfig:
    # Fast delivery needs a vehicle whose min_delivery_days is within this many days
    fast_delivery_max_days: int = 2


@dataclass(frozen=True)
class AuditConfig:
    default_list_limit: int = 100


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""

    config_id: str = "default"
    version: int = 1
    store: StoreConfig = field(default_factory=StoreConfig)
    negotiation: NegotiationConfig = field(default_factory=NegotiationConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    log_level: str = "INFO"
    checksum: str = ""

    @property
    def offer_limit(self) -> int:
        return self.negotiation.offer_limit

    @property
    def read_retries(self) -> int:
        return self.store.read_retries

    @property
    def retry_backoff_seconds(self) -> float:
        return self.store.retry_backoff_seconds

    @property
    def database_url(self) -> str:
        return self.store.database_url

    @property
    def fast_delivery_max_days(self) -> int:
        return self.matching.fast_delivery_max_days

    @property
    def audit_list_limit(self) -> int:
        return self.audit.default_list_limit
