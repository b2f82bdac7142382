"""Credential strategies: how a secret value is rotated and read."""
import secrets
import string
from typing import Any, Dict, Mapping, Tuple

from .errors import RotationError

DEFAULT_PASSWORD_LENGTH = 20
PASSWORD_CHARS = string.ascii_letters + string.digits + "!@#$%^&*()-"


class SecretSetter:
    """
    Manages the user-specific secret value.

    The only requirement on the secret is that it is a JSON object of string
    values; the Rotator decodes it into a dict and passes it to these methods.
    A suggested minimum value is {"username": "foo", "password": "bar"}.
    """

    def init(self, event: Mapping[str, str]) -> None:
        """Called before every rotation step. Must be idempotent."""
        pass

    def handler(self, event: Dict[str, Any]) -> Any:
        """Called instead of the rotation steps when the event is not from Secrets Manager."""
        raise NotImplementedError

    def rotate(self, secret: Dict[str, str]) -> None:
        """Change the password in secret, in place."""
        raise NotImplementedError

    def credentials(self, secret: Mapping[str, str]) -> Tuple[str, str]:
        """Return (username, password) to set on the databases."""
        raise NotImplementedError


class RandomPassword(SecretSetter):
    """
    Default strategy: replaces "password" with a random string.

    Requires the secret to have "username" and "password" fields; other fields
    pass through. Does not support user-invoked rotation.
    """

    def __init__(self, length: int = DEFAULT_PASSWORD_LENGTH):
        self.length = length

    def handler(self, event: Dict[str, Any]) -> Any:
        raise RotationError("RandomPassword does not support user-invoked password rotation")

    def rotate(self, secret: Dict[str, str]) -> None:
        secret["password"] = "".join(secrets.choice(PASSWORD_CHARS) for _ in range(self.length))

    def credentials(self, secret: Mapping[str, str]) -> Tuple[str, str]:
        return secret.get("username", ""), secret.get("password", "")
