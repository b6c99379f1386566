"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="taskflow-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root logging level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/taskflow",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)
    use_in_memory_store: bool = Field(
        default=False,
        description="Serve items and escalation logs from process memory instead of the database"
    )

    # ========== Escalation Scheduler ==========
    rules_config_path: Path = Field(
        default=Path("escalation_rules.yaml"),
        description="Path to escalation rules YAML file"
    )
    scheduler_enabled: bool = Field(
        default=True,
        description="Start the escalation scheduler on application startup"
    )
    evaluation_interval_seconds: int = Field(
        default=900,
        description="Seconds between escalation passes",
        ge=1
    )
    run_history_size: int = Field(
        default=100,
        description="Number of completed passes kept for status reporting",
        ge=1
    )
    status_recent_runs: int = Field(
        default=10,
        description="Number of recent passes used for rolling status figures",
        ge=1
    )
    escalation_volume_alert_threshold: int = Field(
        default=10,
        description="Escalations per trailing hour above which a pass is flagged high volume",
        ge=0
    )
    evaluation_concurrency: int = Field(
        default=8,
        description="Items evaluated concurrently within one pass",
        ge=1
    )
    external_call_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout for item store, directory and dispatcher calls",
        gt=0,
        le=120
    )
    active_statuses: List[str] = Field(
        default=["TODO", "IN_PROGRESS", "BLOCKED", "IN_REVIEW", "OPEN"],
        description="Lifecycle statuses evaluated by the escalation engine"
    )

    # ========== SLA Clock ==========
    at_risk_percent: float = Field(
        default=20.0,
        description="Remaining share of the SLA window at or below which an item is at risk",
        ge=0,
        le=100
    )
    at_risk_lookahead_minutes: Optional[int] = Field(
        default=None,
        description="Fixed lookahead (minutes) at or below which an item is at risk",
        ge=0
    )
    reminder_lead_minutes: int = Field(
        default=60,
        description="Minutes before the effective deadline at which a reminder fires",
        ge=0
    )

    # ========== Notification Webhook ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Webhook receiving escalation and reminder events"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_max_retries: int = Field(
        default=3,
        description="Attempts per notification before giving up",
        ge=1,
        le=10
    )

    # ========== Grafana OTLP Metrics ==========
    grafana_host: Optional[str] = Field(
        default=None,
        description="Grafana OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)"
    )
    grafana_api_key: Optional[str] = Field(
        default=None,
        description="Grafana API key for OTLP authentication"
    )
    grafana_instance_id: Optional[str] = Field(
        default=None,
        description="Grafana instance ID for OTLP authentication"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("active_statuses")
    @classmethod
    def validate_active_statuses(cls, v: List[str]) -> List[str]:
        """Normalise lifecycle statuses to upper case."""
        if not v:
            raise ValueError("active_statuses must not be empty")
        return [status.upper() for status in v]


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class ItemKind(str, Enum):
    """Kinds of tracked work items."""
    REQUEST = "REQUEST"
    TASK = "TASK"


class SLAStatus(str, Enum):
    """SLA clock states."""
    ON_TIME = "ON_TIME"
    AT_RISK = "AT_RISK"
    OVERDUE = "OVERDUE"
    PAUSED = "PAUSED"


class PauseReason(str, Enum):
    """Why an SLA clock was paused."""
    MEETING = "MEETING"
    CUSTOMER_VISIT = "CUSTOMER_VISIT"
    CLARIFICATION = "CLARIFICATION"
    MANUAL = "MANUAL"


class TriggerType(str, Enum):
    """Escalation trigger variants."""
    UNCONFIRMED_PAST_DURATION = "UNCONFIRMED_PAST_DURATION"
    OVERDUE_BY_DURATION = "OVERDUE_BY_DURATION"
    STATUS_STUCK_PAST_DURATION = "STATUS_STUCK_PAST_DURATION"


class RecipientStrategy(str, Enum):
    """How the recipient of an escalation is resolved."""
    ASSIGNEE = "ASSIGNEE"
    TEAM_LEADER = "TEAM_LEADER"
    ADMIN = "ADMIN"
    CATEGORY_CHAIN = "CATEGORY_CHAIN"
    CUSTOM = "CUSTOM"


class EscalationAction(str, Enum):
    """What a fired rule asks the workflow to do."""
    NOTIFY = "NOTIFY"
    REASSIGN = "REASSIGN"


class EscalationStatus(str, Enum):
    """Escalation log lifecycle."""
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    RESOLVED = "RESOLVED"


class SchedulerState(str, Enum):
    """Escalation scheduler lifecycle."""
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"


# ========== Status groups ==========

UNRESOLVED_ESCALATION_STATUSES = [EscalationStatus.PENDING, EscalationStatus.ACKNOWLEDGED]
