"""Domain models for credential rotation."""
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

# Secrets Manager staging labels
AWSCURRENT = "AWSCURRENT"
AWSPENDING = "AWSPENDING"
AWSPREVIOUS = "AWSPREVIOUS"

# Rotation steps, in the order Secrets Manager invokes them
CREATE_SECRET = "createSecret"
SET_SECRET = "setSecret"
TEST_SECRET = "testSecret"
FINISH_SECRET = "finishSecret"
STEPS = (CREATE_SECRET, SET_SECRET, TEST_SECRET, FINISH_SECRET)

# Replica status reported by describe_secret when a region is converged
IN_SYNC = "InSync"

# Fan-out actions
ACTION_SET = "set"
ACTION_VERIFY = "verify"
ACTION_ROLLBACK = "rollback"


@dataclass(frozen=True)
class Credential:
    """One set of database credentials. Address is stamped per target."""
    username: str
    password: str
    address: str = ""

    def __repr__(self) -> str:
        # Never render the password
        return f"Credential(username={self.username!r}, address={self.address!r})"


@dataclass(frozen=True)
class CredentialTransition:
    """Current and new credentials, the unit passed through set/verify/rollback."""
    current: Credential
    new: Credential

    def swapped(self) -> "CredentialTransition":
        """Return the rollback transition: new back to current."""
        return CredentialTransition(current=self.new, new=self.current)

    def at(self, address: str) -> "CredentialTransition":
        """Return a copy with both credentials pointed at one target address."""
        return CredentialTransition(
            current=replace(self.current, address=address),
            new=replace(self.new, address=address),
        )


@dataclass
class Outcome:
    """Result of one action on one target during the most recent pass."""
    attempted: bool = False
    succeeded: bool = False
    error: Optional[BaseException] = None


@dataclass
class Target:
    """A database endpoint whose password is changed and tracked independently."""
    address: str
    name: str = ""
    set: Outcome = field(default_factory=Outcome)
    verify: Outcome = field(default_factory=Outcome)
    rollback: Outcome = field(default_factory=Outcome)

    def outcome(self, action: str) -> Outcome:
        if action == ACTION_SET:
            return self.set
        if action == ACTION_VERIFY:
            return self.verify
        if action == ACTION_ROLLBACK:
            return self.rollback
        raise ValueError(f"invalid fan-out action: {action}")

    def reset(self, action: Optional[str] = None) -> None:
        """Clear one outcome slot, or all of them when action is None."""
        if action is None:
            self.set = Outcome()
            self.verify = Outcome()
            self.rollback = Outcome()
            return
        self.outcome(action)
        setattr(self, action, Outcome())


@dataclass
class Candidate:
    """A database endpoint as returned by discovery, before filtering."""
    identifier: str
    address: Optional[str] = None
    port: Optional[int] = None
    engine: str = ""
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SecretVersion:
    """One version of a secret as fetched by staging label."""
    version_id: str
    stages: List[str]
    secret_string: Optional[str]

    def has_stage(self, stage: str) -> bool:
        return stage in self.stages


@dataclass
class ReplicaStatus:
    """Replication status of a secret in one replica region."""
    region: str
    status: str
    message: str = ""

    @property
    def in_sync(self) -> bool:
        return self.status == IN_SYNC
