"""
Pydantic models for YAML configuration validation.
Provides schema validation with clear error messages for harvest jobs.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from scroll_harvester.core.models import EntityType, DEFAULT_LIMIT
from scroll_harvester.utils.time import parse_date_bound


class TargetConfig(BaseModel):
    """One entity to harvest."""
    entity_id: str = Field(..., min_length=1, description="Post shortcode, username, tag, location or user id")
    url: str = Field("", description="Page exposing the entity (browser transport)")
    variables: Dict[str, Any] = Field(default_factory=dict, description="Extra GraphQL query variables")

    @field_validator('entity_id')
    @classmethod
    def strip_entity_id(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('entity_id cannot be blank')
        return v

    @field_validator('url')
    @classmethod
    def validate_url(cls, v):
        if v and not v.startswith(('http://', 'https://')):
            raise ValueError('url must be a valid HTTP/HTTPS URL')
        return v


class JobConfig(BaseModel):
    """Configuration for a harvesting job."""
    id: str = Field(..., description="Unique identifier for the job")
    name: str = Field(..., description="Human-readable name for the job")
    entity_type: EntityType = Field(..., description="Kind of paginated stream to walk")
    targets: List[TargetConfig] = Field(..., min_length=1, description="Entities to harvest")
    limit: int = Field(DEFAULT_LIMIT, ge=0, description="Maximum accepted records per entity")
    min_date: Optional[str] = Field(None, description="Oldest timestamp of interest (ISO or '7 days')")
    max_date: Optional[str] = Field(None, description="Newest timestamp of interest (ISO or '1 day')")
    max_iterations: int = Field(10_000, ge=1, description="Safety cap on load-more iterations per entity")

    @field_validator('min_date', 'max_date')
    @classmethod
    def validate_date_bound(cls, v):
        if v is not None:
            parse_date_bound(v)
        return v

    @model_validator(mode='after')
    def validate_window(self):
        lo = parse_date_bound(self.min_date)
        hi = parse_date_bound(self.max_date)
        if lo and hi and lo > hi:
            raise ValueError('min_date must not be later than max_date')
        return self

    @model_validator(mode='after')
    def validate_unique_targets(self):
        ids = [t.entity_id for t in self.targets]
        if len(ids) != len(set(ids)):
            raise ValueError('targets must not repeat an entity_id')
        return self


class EngineConfig(BaseModel):
    """Load-more protocol tuning."""
    transport: Literal["playwright", "graphql"] = Field("playwright", description="How pages are loaded")
    headless: bool = Field(True, description="Run the browser headless")
    max_retries: int = Field(10, ge=0, le=50, description="Retries per load-more call")
    max_clicks: int = Field(10, ge=1, le=50, description="Trigger attempts per retry")
    request_timeout_s: float = Field(1.0, gt=0, description="Wait for the triggered request")
    response_timeout_s: float = Field(100.0, gt=0, description="Wait for the matching response")
    backoff_unit_s: float = Field(1.0, ge=0, description="Seconds per backoff unit")
    navigation_timeout_s: float = Field(30.0, gt=0, description="Page navigation timeout")
    query_hash: Optional[str] = Field(None, description="GraphQL query hash (graphql transport)")
    page_size: int = Field(50, ge=1, le=200, description="Items per cursor query")
    max_workers: int = Field(1, ge=1, le=32, description="Entities harvested concurrently")
    max_stalled_iterations: int = Field(20, ge=1, description="Iterations without new records before giving up")

    @model_validator(mode='after')
    def validate_graphql(self):
        if self.transport == "graphql" and not self.query_hash:
            raise ValueError('query_hash is required when transport is "graphql"')
        return self


class SinkConfig(BaseModel):
    """Where accepted records go."""
    type: Literal["jsonl", "csv"] = Field("jsonl", description="Output format")
    path: str = Field("output/records.jsonl", description="Output file path")


class StateConfig(BaseModel):
    """Checkpointing of scroll state."""
    path: str = Field("output/state.db", description="SQLite checkpoint file")
    resume: bool = Field(True, description="Load previously checkpointed state on start")
    checkpoint_every_iterations: int = Field(1, ge=1, description="Checkpoint cadence per entity")


class ScheduleConfig(BaseModel):
    """Configuration for scheduled execution."""
    enabled: bool = Field(False, description="Whether scheduling is enabled")
    interval_hours: int = Field(24, ge=1, le=168, description="Interval between runs in hours")


class HarvestConfig(BaseModel):
    """Root configuration model for harvest jobs."""
    job: JobConfig
    engine: EngineConfig = Field(default_factory=EngineConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    state: StateConfig = Field(default_factory=StateConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)

    @model_validator(mode='after')
    def validate_config_consistency(self):
        """Validate that configuration components are consistent."""
        if self.engine.transport == "graphql" and not self.job.entity_type.is_user_list:
            raise ValueError('graphql transport only supports followers, following and likers')
        if self.engine.transport == "playwright":
            missing = [t.entity_id for t in self.job.targets if not t.url]
            if missing:
                raise ValueError(f'targets {missing} need a url for the playwright transport')
        return self


def load_and_validate_config(config_path: str) -> HarvestConfig:
    """
    Load and validate a harvest configuration from YAML file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If YAML is malformed or the configuration is invalid
    """
    import yaml

    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw_config = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {config_path}: {e}")

    try:
        return HarvestConfig(**(raw_config or {}))
    except ValidationError as e:
        # Format validation errors nicely
        error_messages = []
        for error in e.errors():
            field_path = '.'.join(str(loc) for loc in error['loc'])
            error_messages.append(f"  {field_path}: {error['msg']}")

        raise ValueError(
            f"Configuration validation failed for {config_path}:\n" +
            '\n'.join(error_messages)
        ) from e


def config_to_job_objects(config: HarvestConfig) -> tuple:
    """
    Convert validated config to the objects expected by the harvester.

    Returns:
        Tuple of (HarvestJob, schedule_config_dict)
    """
    from scroll_harvester.core.models import (
        EngineSettings,
        HarvestJob,
        HarvestTarget,
        StateSettings,
        TimeWindow,
    )

    targets = [
        HarvestTarget(entity_id=t.entity_id, url=t.url, variables=dict(t.variables))
        for t in config.job.targets
    ]

    job = HarvestJob(
        id=config.job.id,
        name=config.job.name,
        entity_type=config.job.entity_type,
        targets=targets,
        limit=config.job.limit,
        time_window=TimeWindow(
            min_date=parse_date_bound(config.job.min_date),
            max_date=parse_date_bound(config.job.max_date),
        ),
        max_iterations=config.job.max_iterations,
        engine=EngineSettings(**config.engine.model_dump()),
        state=StateSettings(**config.state.model_dump()),
        sink_config=config.sink.model_dump(),
    )

    schedule_config = config.schedule.model_dump() if config.schedule.enabled else {}
    return job, schedule_config
