# catsync Configuration Schema
# Pydantic models for YAML configuration validation

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from catsync.sync.batch import BatchPolicy
from catsync.sync.queue import PriorityPolicy, PriorityTier
from catsync.sync.row import Operation, ResourceKind


class RemoteConfig(BaseModel):
    """Remote catalog connection settings."""

    shop: str = Field(default="example.myshopify.com", description="Shop domain")
    api_version: str = Field(default="2023-04", description="Admin API version")
    token_env: str = Field(default="CATSYNC_ACCESS_TOKEN", description="Environment variable holding the access token")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    min_quota_headroom: int = Field(default=5, ge=0, description="Calls that must remain in the API bucket before a run")


class RetryConfig(BaseModel):
    """Retry and backoff settings."""

    max_retries: int = Field(default=3, ge=0, le=10, description="Retries after the first attempt")
    base_delay: float = Field(default=1.0, ge=0, description="Delay before the first retry in seconds")
    max_delay: float = Field(default=30.0, ge=0, description="Upper bound for computed delays")


class VolumeTier(BaseModel):
    """Batch size used up to a total item count."""

    max_items: int = Field(gt=0, description="Largest total volume this tier applies to")
    batch_size: int = Field(gt=0, description="Batch size for this tier")


class BatchingConfig(BaseModel):
    """Batch sizing and pacing."""

    rate_limit_delay: float = Field(default=0.5, ge=0, description="Minimum seconds between remote calls")
    volume_tiers: list[VolumeTier] = Field(
        default_factory=lambda: [
            VolumeTier(max_items=50, batch_size=10),
            VolumeTier(max_items=500, batch_size=50),
        ],
        description="Batch sizes for small and medium volumes",
    )
    bulk_batch_size: int = Field(default=250, gt=0, description="Batch size above the largest tier")
    max_batch_size: int = Field(default=250, gt=0, description="Ceiling for any batch size")

    @field_validator("volume_tiers")
    @classmethod
    def sort_tiers(cls, v: list[VolumeTier]) -> list[VolumeTier]:
        """Keep tiers ordered by volume."""
        return sorted(v, key=lambda tier: tier.max_items)

    def to_policy(self) -> BatchPolicy:
        """Build the batch policy used by the processor."""
        return BatchPolicy(
            rate_limit_delay=self.rate_limit_delay,
            volume_tiers=tuple((tier.max_items, tier.batch_size) for tier in self.volume_tiers),
            bulk_batch_size=self.bulk_batch_size,
            max_batch_size=self.max_batch_size,
        )


class PriorityConfig(BaseModel):
    """Priority scoring policy."""

    tier_weights: dict[PriorityTier, float] = Field(
        default_factory=lambda: {
            PriorityTier.LOW: 100.0,
            PriorityTier.NORMAL: 200.0,
            PriorityTier.HIGH: 300.0,
            PriorityTier.CRITICAL: 400.0,
        },
        description="Base score per tier",
    )
    operation_weights: dict[Operation, float] = Field(
        default_factory=lambda: {
            Operation.CREATE: 10.0,
            Operation.UPDATE: 5.0,
            Operation.MIXED: 5.0,
            Operation.DELETE: 0.0,
        },
        description="Score added per operation",
    )
    age_factor: float = Field(default=0.5, ge=0, description="Score added per minute waited")
    age_cap: float = Field(default=50.0, ge=0, description="Maximum score from waiting")
    promotion_minutes: dict[PriorityTier, float] = Field(
        default_factory=lambda: {
            PriorityTier.LOW: 30.0,
            PriorityTier.NORMAL: 60.0,
            PriorityTier.HIGH: 120.0,
        },
        description="Minutes pending before promotion by one tier",
    )

    @model_validator(mode="after")
    def tiers_dominate_operations(self) -> "PriorityConfig":
        """Tier gaps must exceed the spread of operation weights."""
        missing = [tier.value for tier in PriorityTier if tier not in self.tier_weights]
        if missing:
            raise ValueError(f"tier_weights missing: {', '.join(missing)}")

        weights = [self.tier_weights[tier] for tier in PriorityTier]
        spread = max(self.operation_weights.values(), default=0.0) - min(self.operation_weights.values(), default=0.0)
        for lower, higher in zip(weights, weights[1:]):
            if higher - lower <= spread:
                raise ValueError("tier weights must increase by more than the spread of operation weights")
        return self

    def to_policy(self) -> PriorityPolicy:
        """Build the scoring policy used by the queue."""
        return PriorityPolicy(
            tier_weights=dict(self.tier_weights),
            operation_weights=dict(self.operation_weights),
            age_factor=self.age_factor,
            age_cap=self.age_cap,
            promotion_minutes=dict(self.promotion_minutes),
        )


class DetectionConfig(BaseModel):
    """Change detection settings."""

    excluded_fields: list[str] = Field(
        default_factory=lambda: ["created_at", "updated_at"],
        description="Read-only columns left out of fingerprints",
    )


class SafetyConfig(BaseModel):
    """Guards applied before dispatch."""

    read_only_mode: bool = Field(default=False, description="Block every remote write")
    volume_alert_threshold: int = Field(default=200, ge=0, description="Warn when a run changes more rows than this")


class StorageConfig(BaseModel):
    """Local persistence settings."""

    session_store: str = Field(default="~/.config/catsync/sessions.yaml", description="Session store file")
    data_dir: str = Field(default="~/.config/catsync/data", description="Base directory for relative dataset paths")

    @field_validator("session_store", "data_dir")
    @classmethod
    def expand_paths(cls, v: str) -> str:
        """Expand ~ in paths."""
        return str(Path(v).expanduser())


class DatasetConfig(BaseModel):
    """A tabular dataset mirroring one resource kind."""

    kind: ResourceKind = Field(description="Resource kind the rows mirror")
    path: str = Field(description="CSV file path, relative to storage.data_dir unless absolute")
    description: str = Field(default="", description="Human-readable description")
    owner_kind: Optional[ResourceKind] = Field(
        default=None, description="Default owner kind for metafield rows without owner_resource"
    )
    default_tier: PriorityTier = Field(default=PriorityTier.NORMAL, description="Tier for rows without _priority")

    @field_validator("owner_kind")
    @classmethod
    def owner_must_hold_metafields(cls, v: Optional[ResourceKind]) -> Optional[ResourceKind]:
        """Only products and variants own metafields."""
        if v is not None and v not in (ResourceKind.PRODUCT, ResourceKind.VARIANT):
            raise ValueError("owner_kind must be 'product' or 'variant'")
        return v

    def resolve_path(self, data_dir: str) -> Path:
        """Absolute path of the dataset file."""
        path = Path(self.path).expanduser()
        if not path.is_absolute():
            path = Path(data_dir).expanduser() / path
        return path


class OutputConfig(BaseModel):
    """Output and logging configuration."""

    verbose: bool = Field(default=False, description="Enable verbose output")
    colored: bool = Field(default=True, description="Enable colored output")
    log_file: Optional[str] = Field(default=None, description="Path to log file")
    log_level: str = Field(default="INFO", description="Log level for the file handler")

    @field_validator("log_file")
    @classmethod
    def expand_optional_path(cls, v: Optional[str]) -> Optional[str]:
        """Expand ~ in optional paths."""
        if v is None:
            return None
        return str(Path(v).expanduser())

    @field_validator("log_level")
    @classmethod
    def known_level(cls, v: str) -> str:
        """Accept standard logging level names only."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"unknown log level: {v}")
        return level


class CatsyncConfig(BaseModel):
    """Root configuration model for catsync."""

    remote: RemoteConfig = Field(default_factory=RemoteConfig, description="Remote catalog settings")
    retry: RetryConfig = Field(default_factory=RetryConfig, description="Retry settings")
    batching: BatchingConfig = Field(default_factory=BatchingConfig, description="Batching settings")
    priority: PriorityConfig = Field(default_factory=PriorityConfig, description="Priority policy")
    detection: DetectionConfig = Field(default_factory=DetectionConfig, description="Change detection settings")
    safety: SafetyConfig = Field(default_factory=SafetyConfig, description="Safety guards")
    storage: StorageConfig = Field(default_factory=StorageConfig, description="Local persistence")
    datasets: dict[str, DatasetConfig] = Field(default_factory=dict, description="Dataset definitions")
    output: OutputConfig = Field(default_factory=OutputConfig, description="Output settings")

    def get_dataset(self, name: str) -> Optional[DatasetConfig]:
        """Get a dataset by name."""
        return self.datasets.get(name)
