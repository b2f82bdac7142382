"""AWS Lambda entry point.

Set the function handler to credential_rotator.lambda_function.lambda_handler and
bundle a config file (CREDENTIAL_ROTATOR_CONFIG) naming the password client plugin.
"""
import logging
from typing import Any, Dict, Optional

from credential_rotator.rotation.domains.cancel import CancelToken
from credential_rotator.rotation.domains.config_loader import load_config
from credential_rotator.rotation.workflows.factory import build_rotator
from credential_rotator.rotation.workflows.rotator import Rotator

logger = logging.getLogger(__name__)

# Built on first invocation and reused while the execution environment is warm,
# so the target snapshot taken by the first step serves the later steps.
_ROTATOR: Optional[Rotator] = None


def get_rotator() -> Rotator:
    global _ROTATOR

    if _ROTATOR is None:
        settings = load_config()
        # Lambda installs a handler on the root logger; only the level is ours
        logging.getLogger().setLevel(settings.logging.level)
        _ROTATOR = build_rotator(settings)
    return _ROTATOR


def reset_rotator() -> None:
    """Discard the cached Rotator, e.g. between tests."""
    global _ROTATOR
    _ROTATOR = None


def lambda_handler(event: Dict[str, Any], context: Any) -> Any:
    return get_rotator().handler(event, CancelToken.from_lambda_context(context))
