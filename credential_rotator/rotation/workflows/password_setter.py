"""Fan-out password changes across every discovered database."""
import functools
import logging
from typing import Callable, List, Mapping, Optional

from ..domains.cancel import CancelToken
from ..domains.discovery import Discovery
from ..domains.errors import PasswordSetError
from ..domains.models import (
    ACTION_ROLLBACK,
    ACTION_SET,
    ACTION_VERIFY,
    Candidate,
    CredentialTransition,
    Target,
)
from ..domains.password_client import PasswordClient
from .executor import BoundedExecutor
from .retry import run_with_retry
from .timing import log_call

logger = logging.getLogger(__name__)


class PasswordSetter:
    """
    Sets, verifies, and rolls back a password on every database.

    Databases are discovered once, on the first init(), and the filtered list
    is kept for the life of this object. Rotation has to act on a point-in-time
    snapshot: a database provisioned between steps must not get only the later
    steps.

    Each target's outcome slots are written only by the worker handling that
    target; failures are counted after all workers have finished.
    """

    def __init__(
        self,
        discovery: Discovery,
        client: PasswordClient,
        include: Optional[Callable[[Candidate], bool]] = None,
        parallel: int = 1,
        retry: int = 0,
        retry_wait_seconds: float = 0.0,
    ):
        self.discovery = discovery
        self.client = client
        self.include = include
        self.parallel = max(parallel, 1)
        self.tries = 1 + max(retry, 0)
        self.retry_wait_seconds = retry_wait_seconds
        self._executor = BoundedExecutor(self.parallel, name="password")
        self._targets: List[Target] = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def targets(self) -> List[Target]:
        return list(self._targets)

    def init(self, event: Optional[Mapping[str, str]] = None) -> None:
        """Discover and filter databases. Only the first successful call does any work."""
        if self._initialized:
            return

        with log_call(logger, "Init"):
            targets = []
            line = "databases:"
            for candidate in self.discovery.discover():
                if not candidate.address:
                    logger.warning(f"{candidate.identifier} has no endpoint address, skipping "
                                   "(database instance is being provisioned or decommissioned)")
                    continue
                if self.include is not None and not self.include(candidate):
                    line += f" {candidate.address} (filtered out)"
                    continue
                targets.append(Target(address=candidate.address, name=candidate.identifier))
                line += f" {candidate.address}"
            logger.info(line)

            self._targets = targets
            self._initialized = True

    def set_password(self, transition: CredentialTransition, cancel: Optional[CancelToken] = None) -> None:
        """Change the password from transition.current to transition.new on every target."""
        with log_call(logger, "SetPassword"):
            # A stale error from a previous pass must not fail this one
            for target in self._targets:
                target.reset()
            self._run(ACTION_SET, transition, self._targets, cancel)

    def verify_password(self, transition: CredentialTransition, cancel: Optional[CancelToken] = None) -> None:
        """Connect to every target with transition.new. Does not require a prior set."""
        with log_call(logger, "VerifyPassword"):
            for target in self._targets:
                target.reset(ACTION_VERIFY)
            self._run(ACTION_VERIFY, transition, self._targets, cancel)

    def rollback(self, transition: CredentialTransition, cancel: Optional[CancelToken] = None) -> None:
        """Change the password back to transition.current on targets the last set pass changed."""
        with log_call(logger, "Rollback"):
            targets = []
            for target in self._targets:
                target.reset(ACTION_ROLLBACK)
                if not target.set.succeeded:
                    logger.info(f"{target.address}: new password was not set, skip rollback")
                    continue
                targets.append(target)
            self._run(ACTION_ROLLBACK, transition.swapped(), targets, cancel)

    def _run(
        self,
        action: str,
        transition: CredentialTransition,
        targets: List[Target],
        cancel: Optional[CancelToken],
    ) -> None:
        cancel = cancel or CancelToken()
        logger.info(f"{action} password on {len(targets)} databases, {self.parallel} in parallel...")

        def work(target: Target) -> None:
            target.outcome(action).attempted = True
            creds = transition.at(target.address)
            method = self.client.verify_password if action == ACTION_VERIFY else self.client.change_password
            run_with_retry(functools.partial(method, creds, cancel), self.tries, self.retry_wait_seconds, cancel,
                           description=f"{target.address}: {action} password")

        def record(target: Target, error: Optional[BaseException]) -> None:
            outcome = target.outcome(action)
            outcome.succeeded = error is None
            outcome.error = error
            if error is None:
                logger.info(f"{target.address}: success {action} password")

        self._executor.run(targets, work, cancel=cancel, record=record, label=lambda t: t.address)

        failed = sum(1 for target in targets if not target.outcome(action).succeeded)
        if failed:
            raise PasswordSetError(action, failed)
