from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from sandbox_context.observability.domain.logging import Severity

# Config models map harness options and module YAML files to typed structures.

DEFAULT_MODULE = "default"
DEFAULT_QUEUE = "default"

_MODULE_NAME = re.compile(r"[a-z\d][a-z\d\-]{0,99}")


class ModuleConfig(BaseModel):
    # One extra emulator instance: a module name and the path of its YAML definition.
    model_config = ConfigDict(extra="forbid", frozen=True)
    name: str
    path: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        if not _MODULE_NAME.fullmatch(value):
            raise ValueError(f"module name '{value}' must match {_MODULE_NAME.pattern}")
        return value

    @field_validator("path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value:
            raise ValueError("module path must be a non-empty string")
        return value


class HandlerDecl(BaseModel):
    # Static URL handler served by a module's HTTP endpoint.
    model_config = ConfigDict(extra="forbid", frozen=True)
    url: str
    status: int = 200
    body: str = ""
    content_type: str = "text/plain; charset=utf-8"

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError("handler url must start with '/'")
        return value

    @field_validator("status")
    @classmethod
    def _check_status(cls, value: int) -> int:
        if value < 100 or value > 599:
            raise ValueError("handler status must be a valid HTTP status code")
        return value


class ModuleDefinition(BaseModel):
    # Parsed module YAML; application (when present) must match Options.app_id.
    model_config = ConfigDict(extra="forbid", frozen=True)
    application: str | None = None
    module: str | None = None
    handlers: list[HandlerDecl] = Field(default_factory=list)


class Options(BaseModel):
    # Construction-time configuration of one Context; immutable once built.
    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)
    app_id: str | None = None
    reporter: Any = None
    log_threshold: Severity = Severity.INFO
    task_queues: list[str] = Field(default_factory=list)
    modules: list[ModuleConfig] = Field(default_factory=list)
    startup_timeout: float = Field(default=5.0, gt=0)
    stop_timeout: float = Field(default=2.0, gt=0)
    start_method: Literal["spawn", "forkserver", "fork"] = "spawn"
    log_exporters: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("log_threshold", mode="before")
    @classmethod
    def _parse_threshold(cls, value: object) -> Severity:
        return Severity.parse(value)

    @field_validator("app_id")
    @classmethod
    def _check_app_id(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("app_id must be a non-empty string when provided")
        return value

    @field_validator("reporter")
    @classmethod
    def _check_reporter(cls, value: object) -> object:
        if value is not None and not callable(getattr(value, "log", None)):
            raise ValueError("reporter must provide a callable log(message)")
        return value

    @field_validator("task_queues")
    @classmethod
    def _check_queues(cls, value: list[str]) -> list[str]:
        seen: set[str] = set()
        for name in value:
            if not name:
                raise ValueError("task queue names must be non-empty strings")
            if name in seen:
                raise ValueError(f"duplicate task queue name: {name}")
            seen.add(name)
        return value

    @model_validator(mode="after")
    def _check_unique_modules(self) -> Options:
        names = [module.name for module in self.modules]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"duplicate module names: {duplicates}")
        return self

    def queue_names(self) -> list[str]:
        # Named queues plus the implicit default queue.
        names = [DEFAULT_QUEUE]
        names.extend(name for name in self.task_queues if name != DEFAULT_QUEUE)
        return names
