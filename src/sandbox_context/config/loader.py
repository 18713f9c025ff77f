from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import ValidationError

from sandbox_context.config.models import ModuleDefinition, Options
from sandbox_context.errors import ConfigError


def load_yaml_config(path: Path) -> dict[str, object]:
    # Raw YAML mapping loader; every config error surfaces as ConfigError.
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config file '{path}': {exc.strerror or exc}") from exc
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"config file '{path}' is not valid YAML") from exc
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"config file '{path}' root must be a mapping")
    return raw


def load_module_definition(path: Path) -> ModuleDefinition:
    raw = load_yaml_config(path)
    try:
        return ModuleDefinition.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"module definition '{path}' is invalid: {exc}") from exc


def load_options(path: Path, **overrides: object) -> Options:
    # Harness options from YAML; non-serializable fields (reporter) come in as overrides.
    raw = load_yaml_config(path)
    base_dir = path.parent
    modules = raw.get("modules")
    if isinstance(modules, list):
        raw["modules"] = [_resolve_module_path(entry, base_dir) for entry in modules]
    raw.update(overrides)
    try:
        return Options.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(f"harness options '{path}' are invalid: {exc}") from exc


def _resolve_module_path(entry: object, base_dir: Path) -> object:
    # Relative module paths are anchored at the options file directory.
    if not isinstance(entry, dict):
        return entry
    module_path = entry.get("path")
    if isinstance(module_path, str) and module_path and not Path(module_path).is_absolute():
        return {**entry, "path": str(base_dir / module_path)}
    return entry
