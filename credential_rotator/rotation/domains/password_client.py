"""Low-level database password client interface."""
from .cancel import CancelToken
from .models import CredentialTransition


class PasswordClient:
    """
    Changes and verifies the password on one database.

    Implementations must be safe for concurrent use by multiple worker threads
    and should not retry; the PasswordSetter retries as configured. Both
    methods raise on failure.
    """

    def change_password(self, transition: CredentialTransition, cancel: CancelToken) -> None:
        """Connect with transition.current and change the password to transition.new."""
        raise NotImplementedError

    def verify_password(self, transition: CredentialTransition, cancel: CancelToken) -> None:
        """Connect with transition.new; raise if the connection is refused."""
        raise NotImplementedError
