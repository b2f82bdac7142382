"""Secrets Manager four-step rotation: createSecret, setSecret, testSecret, finishSecret."""
import logging
import time
from typing import Any, Dict, Mapping, Optional, Tuple

from ..domains.cancel import CancelToken
from ..domains.config_loader import DEFAULT_REPLICATION_POLL_SECONDS, DEFAULT_REPLICATION_WAIT_SECONDS
from ..domains.errors import (
    CorruptLabelsError,
    CredentialMismatchError,
    InvalidStepError,
    PasswordSetError,
    PendingConflictError,
    ReplicationTimeoutError,
    RollbackFailed,
    RotationFailed,
    SecretNotFoundError,
)
from ..domains.events import (
    EVENT_BEGIN_PASSWORD_ROLLBACK,
    EVENT_BEGIN_PASSWORD_ROTATION,
    EVENT_BEGIN_PASSWORD_VERIFICATION,
    EVENT_BEGIN_ROTATION,
    EVENT_END_PASSWORD_ROTATION,
    EVENT_END_PASSWORD_VERIFICATION,
    EVENT_END_ROTATION,
    EVENT_ERROR,
    EVENT_NEW_PASSWORD_IS_CURRENT,
    EventReceiver,
    NullEventReceiver,
    RotationEvent,
)
from ..domains.models import (
    AWSCURRENT,
    AWSPENDING,
    AWSPREVIOUS,
    CREATE_SECRET,
    FINISH_SECRET,
    SET_SECRET,
    TEST_SECRET,
    Credential,
    CredentialTransition,
    SecretVersion,
)
from ..domains.secret_setter import RandomPassword, SecretSetter
from ..domains.secret_store import SecretStore, decode_secret, encode_secret
from .password_setter import PasswordSetter
from .timing import log_call

logger = logging.getLogger(__name__)

EVENT_KEYS = ("ClientRequestToken", "SecretId", "Step")


def invoked_by_secrets_manager(event: Mapping[str, Any]) -> bool:
    """True if the event carries the token, secret id, and step Secrets Manager sends."""
    return all(key in event for key in EVENT_KEYS)


class Rotator:
    """
    Handles Secrets Manager rotation events.

    Secrets Manager invokes each step separately and may retry any of them, so
    every step is idempotent: a step reads the staging labels to tell a first
    attempt from a retry of this run (same ClientRequestToken) or a conflicting
    run (different token).

    Only the secret string is used, and it must be a JSON object of string values.
    """

    def __init__(
        self,
        secret_store: SecretStore,
        password_setter: PasswordSetter,
        secret_setter: Optional[SecretSetter] = None,
        event_receiver: Optional[EventReceiver] = None,
        skip_database: bool = False,
        replication_wait_seconds: float = DEFAULT_REPLICATION_WAIT_SECONDS,
        replication_poll_seconds: float = DEFAULT_REPLICATION_POLL_SECONDS,
        repair_drift: bool = False,
        debug_secret: bool = False,
    ):
        self.secret_store = secret_store
        self.password_setter = password_setter
        self.secret_setter = secret_setter or RandomPassword()
        self.event_receiver = event_receiver or NullEventReceiver()
        self.skip_database = skip_database
        self.replication_wait_seconds = replication_wait_seconds
        self.replication_poll_seconds = replication_poll_seconds
        self.repair_drift = repair_drift
        self.debug_secret = debug_secret
        # --
        self.client_request_token = ""
        self.secret_id = ""
        self.start_time: Optional[float] = None

    def handler(self, event: Dict[str, Any], cancel: Optional[CancelToken] = None) -> Any:
        """
        Entry point for every invocation.

        Events not from Secrets Manager go to the SecretSetter's handler and
        nothing else runs.
        """
        if not invoked_by_secrets_manager(event):
            logger.debug(f"user event: {sorted(event)}")
            return self.secret_setter.handler(event)

        cancel = cancel or CancelToken()
        step = event["Step"]
        logger.debug(f"Secrets Manager event: step={step} secret={event['SecretId']}")

        # Both must be idempotent: we don't know if this process already ran a step
        self.secret_setter.init(event)
        self.password_setter.init(event)

        self.client_request_token = event["ClientRequestToken"]
        self.secret_id = event["SecretId"]

        steps = {
            CREATE_SECRET: self.create_secret,
            SET_SECRET: self.set_secret,
            TEST_SECRET: self.test_secret,
            FINISH_SECRET: self.finish_secret,
        }
        if step not in steps:
            raise InvalidStepError(step)

        try:
            steps[step](cancel)
        except Exception as e:
            self._emit(EVENT_ERROR, step, error=e)
            raise
        return None

    # ----------------------------------------------------------------------
    # Steps
    # ----------------------------------------------------------------------

    def create_secret(self, cancel: Optional[CancelToken] = None) -> None:
        """
        Step 1: create the pending secret from rotated current values.

        Cases besides "current only, no pending":
        1. Current also has AWSPENDING (removing it after a run is optional): rotate.
        2. Pending exists with our version ID: this is a retry, nothing to do.
           Rotating again would produce different values and put_secret_value
           is only idempotent with identical values.
        3. Pending exists with another version ID: another rotation is running
           or a previous one failed without cleaning up. Error.
        4. Current has our version ID: labels are corrupt. Error.
        """
        with log_call(logger, "CreateSecret"):
            self._emit(EVENT_BEGIN_ROTATION, CREATE_SECRET)
            self.start_time = None

            current, current_values = self._get_secret(AWSCURRENT)

            if current.version_id == self.client_request_token:
                raise CorruptLabelsError(
                    f"new and current secret have the same version ID: {self.client_request_token}; "
                    "expected different values"
                )

            if current.has_stage(AWSPENDING):
                logger.debug("current secret has AWSPENDING stage")
            else:
                try:
                    pending = self.secret_store.get_secret(self.secret_id, AWSPENDING)
                except SecretNotFoundError:
                    logger.debug("no pending secret, will rotate current secret")
                else:
                    if pending.version_id == self.client_request_token:
                        logger.debug("using pending secret, will not rotate")
                        return
                    logger.debug(f"pending secret has different version id = {pending.version_id}")
                    raise PendingConflictError(pending.version_id)

            logger.debug("rotating current secret")
            # Copy: the SecretSetter modifies the dict in place
            new_values = dict(current_values)
            self.secret_setter.rotate(new_values)
            self._debug_secret(f"new secret values: {new_values}")

            self.secret_store.put_pending(self.secret_id, self.client_request_token, encode_secret(new_values))

    def set_secret(self, cancel: Optional[CancelToken] = None) -> None:
        """Step 2: set the pending password on the databases, rolling back on failure."""
        cancel = cancel or CancelToken()
        with log_call(logger, "SetSecret"):
            if self.skip_database:
                logger.info("SkipDatabase is enabled, not rotating password on database")
                return

            transition = self._transition()

            if self.repair_drift:
                transition = self._repair_transition(transition, cancel)
                if transition is None:
                    return

            self.start_time = time.monotonic()
            self._emit(EVENT_BEGIN_PASSWORD_ROTATION, SET_SECRET)
            try:
                self.password_setter.set_password(transition, cancel)
            except Exception as e:
                # Roll back so every database has the same password for the user
                logger.error(f"SetPassword failed, rollback: {e}")
                self._emit(EVENT_BEGIN_PASSWORD_ROLLBACK, SET_SECRET)
                self._rollback(transition, "SetSecret", cancel)
            self._emit(EVENT_END_PASSWORD_ROTATION, SET_SECRET)

    def test_secret(self, cancel: Optional[CancelToken] = None) -> None:
        """Step 3: verify the pending password on the databases, rolling back on failure."""
        cancel = cancel or CancelToken()
        with log_call(logger, "TestSecret"):
            if self.skip_database:
                logger.info("SkipDatabase is enabled, not verifying password on database")
                return

            transition = self._transition()

            self._emit(EVENT_BEGIN_PASSWORD_VERIFICATION, TEST_SECRET)
            try:
                self.password_setter.verify_password(transition, cancel)
            except Exception as e:
                logger.error(f"VerifyPassword failed, rollback: {e}")
                self._emit(EVENT_BEGIN_PASSWORD_ROLLBACK, TEST_SECRET)
                self._rollback(transition, "TestSecret", cancel)
            self._emit(EVENT_END_PASSWORD_VERIFICATION, TEST_SECRET)

    def finish_secret(self, cancel: Optional[CancelToken] = None) -> None:
        """Step 4: make the pending secret current, wait for replication, drop AWSPENDING."""
        cancel = cancel or CancelToken()
        with log_call(logger, "FinishSecret"):
            current, _ = self._get_secret(AWSCURRENT)
            pending, _ = self._get_secret(AWSPENDING)

            # Moving AWSCURRENT also makes Secrets Manager label the old version AWSPREVIOUS
            logger.debug(f"moving AWSCURRENT from version id = {current.version_id} "
                         f"to version id = {pending.version_id}")
            self.secret_store.move_stage(
                self.secret_id, AWSCURRENT, to_version=pending.version_id, from_version=current.version_id,
            )
            self._emit(EVENT_NEW_PASSWORD_IS_CURRENT, FINISH_SECRET)
            if self.start_time is not None:
                logger.info(f"password downtime: {(time.monotonic() - self.start_time) * 1000:.0f}ms")
                self.start_time = None

            # A second update_secret_version_stage before replicas converge can leave
            # replication stuck indefinitely
            self._wait_for_replication(cancel)

            logger.debug(f"removing AWSPENDING from version id = {pending.version_id}")
            try:
                self.secret_store.move_stage(self.secret_id, AWSPENDING, from_version=pending.version_id)
            except Exception as e:
                # Not fatal: the next createSecret sees AWSPENDING on current and rotates
                logger.warning(f"failed to remove AWSPENDING from version id = {pending.version_id}: {e}")

            self._emit(EVENT_END_ROTATION, FINISH_SECRET)

    # ----------------------------------------------------------------------

    def _get_secret(self, stage: str) -> Tuple[SecretVersion, Dict[str, str]]:
        version = self.secret_store.get_secret(self.secret_id, stage)
        logger.debug(f"{self.secret_id} stage {stage} version {version.version_id}")
        values = decode_secret(version)
        self._debug_secret(f"{stage} secret values: {values}")
        return version, values

    def _credential(self, values: Dict[str, str]) -> Credential:
        username, password = self.secret_setter.credentials(values)
        return Credential(username=username, password=password)

    def _transition(self) -> CredentialTransition:
        """Current credentials to pending credentials, as plumbed into the PasswordSetter."""
        _, new_values = self._get_secret(AWSPENDING)
        _, current_values = self._get_secret(AWSCURRENT)
        transition = CredentialTransition(
            current=self._credential(current_values),
            new=self._credential(new_values),
        )
        self._debug_secret(f"db credentials: current user {transition.current.username} "
                           f"password {transition.current.password}, new user {transition.new.username} "
                           f"password {transition.new.password}")
        return transition

    def _repair_transition(
        self, transition: CredentialTransition, cancel: CancelToken,
    ) -> Optional[CredentialTransition]:
        """
        Find which password the databases use now.

        Returns None if they already use the pending password, the transition to
        set otherwise. The returned transition's current credential is the one
        the databases actually accept, so a rollback restores it.
        """
        try:
            self.password_setter.verify_password(transition, cancel)
            logger.info("databases already use the pending password, not setting it again")
            return None
        except PasswordSetError as e:
            logger.info(f"pending password not set on all databases: {e}")

        current = transition.current
        try:
            self.password_setter.verify_password(CredentialTransition(current, current), cancel)
            return transition
        except PasswordSetError as e:
            logger.info(f"current password not set on all databases: {e}")

        try:
            _, previous_values = self._get_secret(AWSPREVIOUS)
        except SecretNotFoundError:
            raise CredentialMismatchError(
                "databases accept neither the pending nor the current password and there is no previous secret"
            )
        previous = self._credential(previous_values)
        try:
            self.password_setter.verify_password(CredentialTransition(previous, previous), cancel)
        except PasswordSetError as e:
            raise CredentialMismatchError(
                f"databases accept none of the pending, current, or previous passwords: {e}"
            ) from e
        logger.warning("databases use the previous password, setting pending password from previous")
        return CredentialTransition(current=previous, new=transition.new)

    def _rollback(self, transition: CredentialTransition, step_name: str, cancel: CancelToken) -> None:
        """Roll back databases and Secrets Manager, then raise RotationFailed. Always raises."""
        try:
            self.password_setter.rollback(transition, cancel)
        except Exception as e:
            logger.error(f"Rollback failed: {e}")
            raise RollbackFailed() from e

        # Remove the pending label so the next rotation starts clean
        try:
            pending = self.secret_store.get_secret(self.secret_id, AWSPENDING)
            logger.debug(f"removing AWSPENDING from version id = {pending.version_id}")
            self.secret_store.move_stage(self.secret_id, AWSPENDING, from_version=pending.version_id)
        except Exception as e:
            logger.error(f"failed to remove pending secret: {e}")
            raise RollbackFailed() from e

        logger.info(f"{step_name} failed but rollback was successful")
        raise RotationFailed()

    def _wait_for_replication(self, cancel: CancelToken) -> None:
        """Poll until every replica region is InSync. Timeout is a hard failure."""
        wait_seconds = self.replication_wait_seconds
        if wait_seconds <= 0:
            logger.warning(f"replication wait of {wait_seconds}s is not positive, "
                           f"using {DEFAULT_REPLICATION_WAIT_SECONDS}s")
            wait_seconds = DEFAULT_REPLICATION_WAIT_SECONDS
        poll_seconds = self.replication_poll_seconds
        if poll_seconds <= 0:
            poll_seconds = DEFAULT_REPLICATION_POLL_SECONDS

        logger.info("checking secret replication status")
        deadline = time.monotonic() + wait_seconds
        while True:
            statuses = self.secret_store.replication_status(self.secret_id)
            pending_regions = [s for s in statuses if not s.in_sync]
            for status in pending_regions:
                logger.info(f"replication status still {status.status} in region {status.region}, expecting InSync")
            if not pending_regions:
                logger.info("secret replication sync completed successfully")
                return
            if time.monotonic() >= deadline:
                break
            if cancel.wait(poll_seconds):
                raise cancel.error()
        raise ReplicationTimeoutError(
            f"timeout waiting {wait_seconds}s for secret {self.secret_id} replication to be InSync"
        )

    def _emit(self, name: str, step: str, error: Optional[BaseException] = None) -> None:
        self.event_receiver.receive(RotationEvent(name=name, step=step, error=error))

    def _debug_secret(self, message: str) -> None:
        # Secret values are logged only when explicitly enabled
        if self.debug_secret and logger.isEnabledFor(logging.DEBUG):
            logger.debug(message)
