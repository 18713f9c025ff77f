from .loader import load_module_definition, load_options, load_yaml_config
from .models import DEFAULT_MODULE, DEFAULT_QUEUE, HandlerDecl, ModuleConfig, ModuleDefinition, Options
from .validator import DEFAULT_APP_ID, ModulePlan, effective_app_id, validate_options
from sandbox_context.errors import ConfigError

__all__ = [
    "ConfigError",
    "DEFAULT_APP_ID",
    "DEFAULT_MODULE",
    "DEFAULT_QUEUE",
    "HandlerDecl",
    "ModuleConfig",
    "ModuleDefinition",
    "ModulePlan",
    "Options",
    "effective_app_id",
    "load_module_definition",
    "load_options",
    "load_yaml_config",
    "validate_options",
]
