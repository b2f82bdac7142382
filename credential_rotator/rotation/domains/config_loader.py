"""Configuration loader for credential-rotator."""
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "CREDENTIAL_ROTATOR_CONFIG"
DEFAULT_REPLICATION_WAIT_SECONDS = 10.0
DEFAULT_REPLICATION_POLL_SECONDS = 0.5

_TRUTHY_VALUES = {"1", "true", "yes", "on"}
_FALSY_VALUES = {"0", "false", "no", "off", ""}


@dataclass(frozen=True)
class RotationSettings:
    skip_database: bool = False
    replication_wait_seconds: float = DEFAULT_REPLICATION_WAIT_SECONDS
    replication_poll_seconds: float = DEFAULT_REPLICATION_POLL_SECONDS
    repair_drift: bool = False


@dataclass(frozen=True)
class SetterSettings:
    parallel: int = 1
    retry: int = 0
    retry_wait_seconds: float = 0.0


@dataclass(frozen=True)
class DiscoverySettings:
    engines: Tuple[str, ...] = ()
    addresses: Tuple[str, ...] = ()
    include_port: bool = False


@dataclass(frozen=True)
class PluginSettings:
    password_client: Optional[str] = None
    secret_setter: Optional[str] = None
    target_filter: Optional[str] = None
    event_receiver: Optional[str] = None


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"
    debug_secret: bool = False


@dataclass(frozen=True)
class RotatorSettings:
    region: Optional[str] = None
    rotation: RotationSettings = field(default_factory=RotationSettings)
    password_setter: SetterSettings = field(default_factory=SetterSettings)
    discovery: DiscoverySettings = field(default_factory=DiscoverySettings)
    plugins: PluginSettings = field(default_factory=PluginSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    source: Optional[str] = None


def default_config_path() -> Path:
    return Path.home() / ".config" / "credential-rotator" / "config.yml"


def get_config_path(path: Optional[str] = None) -> Tuple[str, str]:
    """
    Resolve the config file path.

    Priority order:
    1. Explicit path argument
    2. CREDENTIAL_ROTATOR_CONFIG environment variable
    3. Default location: ~/.config/credential-rotator/config.yml

    Returns:
        (absolute path, source) where source is "argument", "environment" or "default"

    Raises:
        ConfigError: If the selected config file doesn't exist
    """
    if path:
        candidate, source = Path(path).expanduser(), "argument"
    elif os.getenv(CONFIG_ENV_VAR):
        candidate, source = Path(os.environ[CONFIG_ENV_VAR]).expanduser(), "environment"
    else:
        candidate, source = default_config_path(), "default"

    if candidate.is_file():
        logger.info(f"Using config from {source}: {candidate}")
        return str(candidate.resolve()), source

    raise ConfigError(
        f"Configuration file not found: {candidate}\n\n"
        "Set up your config file using one of these methods:\n"
        f"1. Create the default file: {default_config_path()}\n"
        f"2. Point {CONFIG_ENV_VAR} at an existing config file\n"
        "3. Pass --config /path/to/config.yml\n"
    )


def load_config(path: Optional[str] = None) -> RotatorSettings:
    """
    Load and validate configuration from a YAML file, then apply environment overrides.

    Returns:
        RotatorSettings

    Raises:
        ConfigError: If the config file is missing, unparsable, or invalid
    """
    config_path, _source = get_config_path(path)

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML config at {config_path}: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read config file at {config_path}: {e}")

    if config is None:
        config = {}
    if not isinstance(config, dict):
        raise ConfigError(f"Config file at {config_path} must be a mapping of sections")

    settings = parse_config(config, source=config_path)
    logger.info(f"Configuration loaded successfully from {config_path}")
    return settings


def parse_config(config: Dict[str, Any], source: Optional[str] = None) -> RotatorSettings:
    """Validate a config mapping and build RotatorSettings."""
    aws = _section(config, "aws")
    rotation = _section(config, "rotation")
    setter = _section(config, "password_setter")
    discovery = _section(config, "discovery")
    plugins = _section(config, "plugins")
    log_cfg = _section(config, "logging")

    region = os.getenv("AWS_REGION") or aws.get("region")

    rotation_settings = RotationSettings(
        skip_database=_bool(
            _env_or(rotation, "skip_database", "ROTATOR_SKIP_DATABASE", False), "rotation.skip_database"),
        replication_wait_seconds=_number(
            _env_or(rotation, "replication_wait_seconds", "ROTATOR_REPLICATION_WAIT",
                    DEFAULT_REPLICATION_WAIT_SECONDS),
            "rotation.replication_wait_seconds", minimum=0, exclusive=True),
        replication_poll_seconds=_number(
            rotation.get("replication_poll_seconds", DEFAULT_REPLICATION_POLL_SECONDS),
            "rotation.replication_poll_seconds", minimum=0, exclusive=True),
        repair_drift=_bool(rotation.get("repair_drift", False), "rotation.repair_drift"),
    )

    setter_settings = SetterSettings(
        parallel=int(_number(_env_or(setter, "parallel", "ROTATOR_PARALLEL", 1),
                             "password_setter.parallel", minimum=1, integer=True)),
        retry=int(_number(_env_or(setter, "retry", "ROTATOR_RETRY", 0),
                          "password_setter.retry", minimum=0, integer=True)),
        retry_wait_seconds=_number(_env_or(setter, "retry_wait_seconds", "ROTATOR_RETRY_WAIT", 0),
                                   "password_setter.retry_wait_seconds", minimum=0),
    )

    discovery_settings = DiscoverySettings(
        engines=tuple(_string_list(discovery.get("engines", []), "discovery.engines")),
        addresses=tuple(_string_list(discovery.get("addresses", []), "discovery.addresses")),
        include_port=_bool(discovery.get("include_port", False), "discovery.include_port"),
    )

    plugin_values = {}
    for name in ("password_client", "secret_setter", "target_filter", "event_receiver"):
        value = plugins.get(name)
        if value is not None:
            _validate_import_path(value, f"plugins.{name}")
        plugin_values[name] = value

    level = str(log_cfg.get("level", "INFO")).upper()
    if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"Unsupported logging.level: {level}")

    return RotatorSettings(
        region=region,
        rotation=rotation_settings,
        password_setter=setter_settings,
        discovery=discovery_settings,
        plugins=PluginSettings(**plugin_values),
        logging=LoggingSettings(
            level=level,
            debug_secret=_bool(log_cfg.get("debug_secret", False), "logging.debug_secret"),
        ),
        source=source,
    )


def _section(config: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = config.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def _env_or(section: Dict[str, Any], key: str, env_var: str, default: Any) -> Any:
    # Environment variable first (allows override)
    env_value = os.getenv(env_var)
    if env_value is not None:
        logger.debug(f"Using {env_var} from environment")
        return env_value
    return section.get(key, default)


def _bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUTHY_VALUES:
            return True
        if lowered in _FALSY_VALUES:
            return False
    raise ConfigError(f"'{name}' must be a boolean, got {value!r}")


def _number(value: Any, name: str, minimum: float = 0, exclusive: bool = False, integer: bool = False) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be a number, got {value!r}")
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError):
        kind = "an integer" if integer else "a number"
        raise ConfigError(f"'{name}' must be {kind}, got {value!r}")
    if integer and isinstance(value, float) and value != number:
        raise ConfigError(f"'{name}' must be an integer, got {value!r}")
    if number < minimum or (exclusive and number == minimum):
        bound = "greater than" if exclusive else "at least"
        raise ConfigError(f"'{name}' must be {bound} {minimum}, got {number}")
    return number


def _string_list(value: Any, name: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ConfigError(f"'{name}' must be a list of non-empty strings")
    return value


def _validate_import_path(value: Any, name: str) -> None:
    if not isinstance(value, str) or value.count(":") != 1 or not all(value.split(":")):
        raise ConfigError(
            f"'{name}' must be an import path like 'package.module:attribute', got {value!r}"
        )
