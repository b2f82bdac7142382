"""Exceptions raised during credential rotation."""


class RotationError(Exception):
    """Base class for all rotation errors."""
    pass


class ConfigError(RotationError):
    """Configuration error exception."""
    pass


class InvalidStepError(RotationError):
    """Event Step is not createSecret, setSecret, testSecret, or finishSecret."""

    def __init__(self, step):
        super().__init__(f"invalid Step value from event: {step!r}")
        self.step = step


class SecretNotFoundError(RotationError):
    """No secret version carries the requested staging label."""

    def __init__(self, secret_id: str, stage: str):
        super().__init__(f"secret {secret_id} has no version with stage {stage}")
        self.secret_id = secret_id
        self.stage = stage


class SecretFormatError(RotationError):
    """Secret string is not a JSON object of string values."""
    pass


class CorruptLabelsError(RotationError):
    """The current version has the same version ID as the run creating a pending version."""
    pass


class PendingConflictError(RotationError):
    """Another run's pending secret exists."""

    def __init__(self, version_id: str):
        super().__init__(
            f"another pending secret exists (version ID {version_id}); "
            "another process might be rotating this secret, or a previous rotation "
            "failed without cleaning up"
        )
        self.version_id = version_id


class CredentialMismatchError(RotationError):
    """Databases accept none of the pending, current, or previous credentials."""
    pass


class ReplicationTimeoutError(RotationError):
    """Secret replication did not reach InSync in every region before the deadline."""
    pass


class CancelledError(RotationError):
    """Cancellation or deadline observed before the work completed."""
    pass


class PasswordSetError(RotationError):
    """One or more targets failed a fan-out pass. Per-target errors stay on the targets."""

    def __init__(self, action: str, failed: int):
        super().__init__(f"{action} failed on {failed} database instances, see previous log output")
        self.action = action
        self.failed = failed


class RotationFailed(RotationError):
    """Generic failure returned after the specific cause has been logged.

    Errors are logged when they occur so log output reads in order; the invoker
    logs the returned error last.
    """

    def __init__(self, message: str = "Password rotation failed, see previous log output"):
        super().__init__(message)


class RollbackFailed(RotationFailed):
    """Rollback itself failed; passwords across targets are in an unknown state."""
    pass
