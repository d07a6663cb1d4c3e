from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    field_validator,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]
BackoffPolicy = Literal["fixed", "exponential"]
HealthFailurePolicy = Literal["fatal", "warn"]

LATEST_TAG = "latest"


class ResourceQuantities(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    cpu: str = Field(..., min_length=1, examples=["250m"])
    memory: str = Field(..., min_length=1, examples=["256Mi"])


class ResourceRequirements(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    requests: ResourceQuantities = ResourceQuantities(cpu="250m", memory="256Mi")
    limits: ResourceQuantities = ResourceQuantities(cpu="500m", memory="512Mi")

    def to_manifest(self) -> dict[str, dict[str, str]]:
        return {
            "requests": self.requests.model_dump(),
            "limits": self.limits.model_dump(),
        }


class PipelineConfig(BaseModel):
    """
    Immutable configuration for one pipeline run.

    Built once (usually from Settings) and passed explicitly into every
    component; nothing below the CLI reads process environment.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    build_number: int = Field(..., ge=1)
    registry_repo: str = Field(default="notes-app", min_length=1)
    build_tag: str = Field(default="", description="Defaults to str(build_number)")
    registry_credential: str = "registry"

    namespace: str = "notes-app"
    monitoring_namespace: str = "monitoring"
    deployment_name: str = "notes-app"
    container_name: str = "notes-app"
    replica_count: int = Field(default=2, ge=0)
    resources: ResourceRequirements = ResourceRequirements()
    app_port: int = 8081
    java_opts: str = "-Xmx512m -Xms256m"
    spring_profile: str = "linux"

    rollout_timeout_seconds: int = Field(default=300, ge=1)
    rollout_poll_seconds: float = Field(default=5.0, gt=0)
    rollback_on_failure: bool = False

    health_url: str = "http://localhost:8081/actuator/health"
    metrics_url: str | None = "http://localhost:8081/actuator/prometheus"
    health_max_attempts: int = Field(default=10, ge=1)
    health_retry_delay_seconds: float = Field(default=10.0, ge=0)
    health_backoff: BackoffPolicy = "fixed"
    health_backoff_cap_seconds: float = Field(default=60.0, gt=0)
    health_probe_timeout_seconds: float = Field(default=5.0, gt=0)
    health_failure_policy: HealthFailurePolicy = "fatal"
    health_down_is_terminal: bool = True

    publish_max_attempts: int = Field(default=3, ge=1)
    publish_retry_delay_seconds: float = Field(default=2.0, ge=0)

    diagnostics_log_lines: int = Field(default=200, ge=1)

    @model_validator(mode="before")
    @classmethod
    def _default_build_tag(cls, data: object) -> object:
        if isinstance(data, dict) and not data.get("build_tag"):
            if "build_number" in data:
                return {**data, "build_tag": str(data["build_number"])}
        return data

    @field_validator("build_tag")
    @classmethod
    def _not_alias(cls, v: str) -> str:
        if v == LATEST_TAG:
            raise ValueError("build_tag must not be the mutable alias 'latest'")
        return v

    @property
    def image_ref(self) -> str:
        return f"{self.registry_repo}:{self.build_tag}"

    @property
    def latest_ref(self) -> str:
        return f"{self.registry_repo}:{LATEST_TAG}"

    @classmethod
    def from_settings(
        cls, settings: "Settings", *, build_number: int, **overrides: object
    ) -> "PipelineConfig":
        values = settings.pipeline_values()
        values.update(overrides)
        return cls(build_number=build_number, **values)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="NOTES_DEPLOY_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    run_root: Path = Field(default=Path("_runs"))
    source_dir: Path = Field(default=Path("."))
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")

    registry_username: str = ""
    registry_password: SecretStr = SecretStr("")
    registry_server: str | None = None

    kubectl: str = "kubectl"
    kube_context: str | None = None

    build_commands: list[list[str]] = Field(
        default_factory=lambda: [
            ["mvn", "-B", "clean", "compile"],
            ["mvn", "-B", "test"],
            ["mvn", "-B", "package", "-DskipTests"],
        ]
    )
    build_timeout_seconds: int = 1800

    registry_repo: str = "notes-app"
    build_tag: str = ""
    registry_credential: str = "registry"
    namespace: str = "notes-app"
    monitoring_namespace: str = "monitoring"
    deployment_name: str = "notes-app"
    container_name: str = "notes-app"
    replica_count: int = 2
    resources: ResourceRequirements = ResourceRequirements()
    app_port: int = 8081
    java_opts: str = "-Xmx512m -Xms256m"
    spring_profile: str = "linux"
    rollout_timeout_seconds: int = 300
    rollout_poll_seconds: float = 5.0
    rollback_on_failure: bool = False
    health_url: str = "http://localhost:8081/actuator/health"
    metrics_url: str | None = "http://localhost:8081/actuator/prometheus"
    health_max_attempts: int = 10
    health_retry_delay_seconds: float = 10.0
    health_backoff: BackoffPolicy = "fixed"
    health_backoff_cap_seconds: float = 60.0
    health_probe_timeout_seconds: float = 5.0
    health_failure_policy: HealthFailurePolicy = "fatal"
    health_down_is_terminal: bool = True
    publish_max_attempts: int = 3
    publish_retry_delay_seconds: float = 2.0
    diagnostics_log_lines: int = 200

    def pipeline_values(self) -> dict[str, object]:
        return {name: getattr(self, name) for name in PIPELINE_SETTINGS}


# Settings fields forwarded into PipelineConfig.
PIPELINE_SETTINGS: tuple[str, ...] = (
    "registry_repo",
    "build_tag",
    "registry_credential",
    "namespace",
    "monitoring_namespace",
    "deployment_name",
    "container_name",
    "replica_count",
    "resources",
    "app_port",
    "java_opts",
    "spring_profile",
    "rollout_timeout_seconds",
    "rollout_poll_seconds",
    "rollback_on_failure",
    "health_url",
    "metrics_url",
    "health_max_attempts",
    "health_retry_delay_seconds",
    "health_backoff",
    "health_backoff_cap_seconds",
    "health_probe_timeout_seconds",
    "health_failure_policy",
    "health_down_is_terminal",
    "publish_max_attempts",
    "publish_retry_delay_seconds",
    "diagnostics_log_lines",
)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
