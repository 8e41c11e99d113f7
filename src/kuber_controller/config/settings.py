"""Strongly typed controller configuration."""

from __future__ import annotations

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..api.constants import GROUP_NAME, NAMESPACE_GATEWAY, NAMESPACE_SYSTEM


class ControllerSettings(BaseSettings):
    """Runtime configuration loaded from environment variables and `.env` files."""

    model_config = SettingsConfigDict(
        env_prefix="KUBER_", env_file=".env", env_nested_delimiter="__"
    )

    service_name: str = Field(
        default="kuber-controller", description="Component name on events and logs"
    )
    kubeconfig: str | None = Field(
        default=None, description="Kubeconfig path; in-cluster config is tried first when unset"
    )
    context: str | None = Field(default=None, description="Kubeconfig context")

    leader_election: bool = Field(default=False, description="Enable Lease based leader election")
    leader_election_id: str = Field(default=GROUP_NAME, description="Lease object name")
    leader_election_namespace: str = Field(default=NAMESPACE_SYSTEM, description="Lease namespace")
    lease_duration: float = Field(default=30.0, gt=0, description="Seconds a lease is valid")
    renew_deadline: float = Field(
        default=20.0, gt=0, description="Seconds the leader keeps retrying renewals"
    )
    retry_period: float = Field(default=2.0, gt=0, description="Seconds between election attempts")

    workers: int = Field(default=1, ge=1, description="Worker threads per controller")
    max_retries: int = Field(
        default=15, ge=0, description="Retries before a permanently failing request is dropped"
    )
    backoff_base_delay: float = Field(
        default=0.005, gt=0, description="First per-request retry delay"
    )
    backoff_max_delay: float = Field(
        default=1000.0, gt=0, description="Ceiling of the per-request retry delay"
    )

    request_timeout: float = Field(
        default=30.0, gt=0, description="Seconds applied to every API call"
    )
    watch_timeout: int = Field(default=300, ge=1, description="Seconds per watch request")
    cache_sync_timeout: float = Field(
        default=120.0, gt=0, description="Seconds to wait for informer caches"
    )

    gateway_namespace: str = Field(
        default=NAMESPACE_GATEWAY, description="Namespace of tenant gateways"
    )
    event_namespace: str = Field(
        default="default", description="Namespace for events about cluster-scoped objects"
    )

    log_level: str = Field(default="INFO", description="Application log level")
    log_json: bool = Field(default=True, description="Render logs as JSON instead of console text")

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, value: str) -> str:
        allowed = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}
        upper_value = value.upper()
        if upper_value not in allowed:
            msg = f"Invalid log level '{value}'. Choose one of: {', '.join(sorted(allowed))}."
            raise ValueError(msg)
        return upper_value

    @model_validator(mode="after")
    def _validate_election_timing(self) -> ControllerSettings:
        if not self.retry_period < self.renew_deadline < self.lease_duration:
            msg = (
                "Leader election timing must satisfy "
                "retry_period < renew_deadline < lease_duration "
                f"(got {self.retry_period} / {self.renew_deadline} / {self.lease_duration})."
            )
            raise ValueError(msg)
        return self
