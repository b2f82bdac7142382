"""Build a Rotator from configuration."""
import importlib
import logging
from typing import Any, Optional

import boto3

from ..domains.config_loader import RotatorSettings
from ..domains.discovery import Discovery, RDSDiscovery, StaticDiscovery
from ..domains.errors import ConfigError
from ..domains.password_client import PasswordClient
from ..domains.secret_store import SecretsManagerStore
from .password_setter import PasswordSetter
from .rotator import Rotator

logger = logging.getLogger(__name__)


def load_object(path: str) -> Any:
    """Import "package.module:attribute" and return the attribute."""
    module_name, _, attribute = path.partition(":")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import module '{module_name}' for plugin '{path}': {e}")
    try:
        return getattr(module, attribute)
    except AttributeError:
        raise ConfigError(f"Module '{module_name}' has no attribute '{attribute}' (plugin '{path}')")


def load_plugin(path: Optional[str]) -> Any:
    """Load a plugin; classes and factory functions are called with no arguments."""
    if path is None:
        return None
    obj = load_object(path)
    if callable(obj):
        obj = obj()
    logger.debug(f"Loaded plugin {path}: {type(obj).__name__}")
    return obj


def build_discovery(settings: RotatorSettings, session: Optional[boto3.session.Session] = None) -> Discovery:
    if settings.discovery.addresses:
        return StaticDiscovery(settings.discovery.addresses)
    session = session or boto3.session.Session(region_name=settings.region)
    return RDSDiscovery(
        session.client("rds"),
        engines=settings.discovery.engines,
        include_port=settings.discovery.include_port,
    )


def build_password_setter(
    settings: RotatorSettings,
    client: Optional[PasswordClient] = None,
    discovery: Optional[Discovery] = None,
    session: Optional[boto3.session.Session] = None,
) -> PasswordSetter:
    if client is None:
        if settings.plugins.password_client is None:
            raise ConfigError(
                "Missing 'plugins.password_client' in config\n"
                "Required format:\n"
                "plugins:\n"
                "  password_client: your_package.module:ClientFactory"
            )
        client = load_plugin(settings.plugins.password_client)

    include = None
    if settings.plugins.target_filter is not None:
        include = load_object(settings.plugins.target_filter)
        if not callable(include):
            raise ConfigError(f"plugins.target_filter '{settings.plugins.target_filter}' is not callable")

    return PasswordSetter(
        discovery=discovery or build_discovery(settings, session),
        client=client,
        include=include,
        parallel=settings.password_setter.parallel,
        retry=settings.password_setter.retry,
        retry_wait_seconds=settings.password_setter.retry_wait_seconds,
    )


def build_rotator(
    settings: RotatorSettings,
    client: Optional[PasswordClient] = None,
    session: Optional[boto3.session.Session] = None,
) -> Rotator:
    """Wire boto3 clients and configured plugins into a Rotator."""
    session = session or boto3.session.Session(region_name=settings.region)
    return Rotator(
        secret_store=SecretsManagerStore(session.client("secretsmanager")),
        password_setter=build_password_setter(settings, client=client, session=session),
        secret_setter=load_plugin(settings.plugins.secret_setter),
        event_receiver=load_plugin(settings.plugins.event_receiver),
        skip_database=settings.rotation.skip_database,
        replication_wait_seconds=settings.rotation.replication_wait_seconds,
        replication_poll_seconds=settings.rotation.replication_poll_seconds,
        repair_drift=settings.rotation.repair_drift,
        debug_secret=settings.logging.debug_secret,
    )
