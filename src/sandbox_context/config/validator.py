from __future__ import annotations

from dataclasses import dataclass

from sandbox_context.config.models import DEFAULT_MODULE, ModuleDefinition, Options
from sandbox_context.errors import ConfigError

DEFAULT_APP_ID = "testapp"


@dataclass(frozen=True, slots=True)
class ModulePlan:
    # Resolved spawn plan entry: module name plus optional definition path.
    name: str
    path: str | None


def validate_options(options: Options) -> list[ModulePlan]:
    # Fail fast before anything is spawned; returns the ordered module plan.
    # Only modules beyond the default one need an application id.
    extra = [module.name for module in options.modules if module.name != DEFAULT_MODULE]
    if extra and options.app_id is None:
        declared = ", ".join(extra)
        raise ConfigError(f"app_id is required when modules are declared (modules: {declared})")

    plans = [ModulePlan(name=module.name, path=module.path) for module in options.modules]
    if not any(plan.name == DEFAULT_MODULE for plan in plans):
        plans.insert(0, ModulePlan(name=DEFAULT_MODULE, path=None))
    return plans


def effective_app_id(options: Options) -> str:
    return options.app_id or DEFAULT_APP_ID


def check_definition_application(definition: ModuleDefinition, app_id: str) -> None:
    # A module YAML that names an application must agree with the harness app id.
    if definition.application is not None and definition.application != app_id:
        raise ConfigError(
            f"module definition declares application '{definition.application}' but app_id is '{app_id}'"
        )
