"""Configuration models for the orchestrator and the audit recorder."""

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, field_validator

_AUDIT_ENV_PREFIX = "CRUDFLOW_AUDIT_"
_CONTROLLER_ENV_PREFIX = "CRUDFLOW_"


def _split_csv(value):
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


def _from_env(
    model: type[BaseModel], prefix: str, environ: Mapping[str, str] | None
) -> dict[str, str]:
    environ = os.environ if environ is None else environ
    values = {}
    for name in model.model_fields:
        key = f"{prefix}{name.upper()}"
        if key in environ:
            values[name] = environ[key]
    return values


class AuditConfig(BaseModel):
    enable: bool = Field(default=False)
    async_write: bool = Field(default=True)
    batch_size: int = Field(default=10000, ge=1)
    buffer_size: int = Field(
        default=10000,
        ge=1,
        description="Capacity of the async buffer. The oldest record is dropped when full.",
    )
    flush_interval: float = Field(default=5.0, gt=0, description="Seconds")
    exclude_operations: list[str] = Field(default_factory=lambda: ["list", "get"])
    exclude_tables: list[str] = Field(default_factory=list)
    record_request_body: bool = Field(default=True)
    record_response_body: bool = Field(default=True)
    record_old_values: bool = Field(default=True)
    record_new_values: bool = Field(default=True)
    exclude_fields: list[str] = Field(
        default_factory=lambda: [
            "password",
            "passwd",
            "pwd",
            "secret",
            "token",
            "key",
            "private_key",
        ]
    )
    max_field_length: int = Field(
        default=1000, ge=0, description="0 disables truncation"
    )
    record_query_params: bool = Field(default=True)
    record_user_agent: bool = Field(default=True)

    @field_validator(
        "exclude_operations", "exclude_tables", "exclude_fields", mode="before"
    )
    @classmethod
    def _csv(cls, value):
        return _split_csv(value)

    @field_validator("flush_interval", mode="before")
    @classmethod
    def _duration(cls, value):
        # accept "5s" / "500ms" style durations
        if isinstance(value, str):
            text = value.strip().lower()
            if text.endswith("ms"):
                return float(text[:-2]) / 1000
            if text.endswith("s"):
                return float(text[:-1])
        return value

    @classmethod
    def from_env(
        cls, prefix: str = _AUDIT_ENV_PREFIX, environ: Mapping[str, str] | None = None
    ) -> "AuditConfig":
        return cls.model_validate(_from_env(cls, prefix, environ))


class ControllerConfig(BaseModel):
    default_page_size: int = Field(default=1000, ge=1)
    max_depth: int = Field(default=99, ge=1)
    log_request: bool = Field(default=False)
    log_response: bool = Field(default=False)

    @classmethod
    def from_env(
        cls,
        prefix: str = _CONTROLLER_ENV_PREFIX,
        environ: Mapping[str, str] | None = None,
    ) -> "ControllerConfig":
        return cls.model_validate(_from_env(cls, prefix, environ))
