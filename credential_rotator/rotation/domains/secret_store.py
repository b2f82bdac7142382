"""Secret store interface and AWS Secrets Manager client wrapper."""
import json
import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

from .errors import SecretFormatError, SecretNotFoundError
from .models import AWSPENDING, ReplicaStatus, SecretVersion

logger = logging.getLogger(__name__)

SECRET_FORMAT_HINT = "it must be valid JSON like '{\"username\":\"foo\",\"password\":\"bar\"}'"


class SecretStore:
    """Versioned secret storage with staging labels."""

    def get_secret(self, secret_id: str, stage: str) -> SecretVersion:
        """Return the version carrying stage. Raises SecretNotFoundError if none does."""
        raise NotImplementedError

    def put_pending(self, secret_id: str, token: str, secret_string: str) -> None:
        """Create version token carrying only the AWSPENDING label."""
        raise NotImplementedError

    def move_stage(
        self,
        secret_id: str,
        stage: str,
        to_version: Optional[str] = None,
        from_version: Optional[str] = None,
    ) -> None:
        """Atomically move stage from from_version to to_version; either may be None."""
        raise NotImplementedError

    def replication_status(self, secret_id: str) -> List[ReplicaStatus]:
        raise NotImplementedError


class SecretsManagerStore(SecretStore):
    """Wrapper around the boto3 Secrets Manager client."""

    def __init__(self, client=None, region_name: Optional[str] = None):
        self._client = client
        self.region_name = region_name

    @property
    def client(self):
        """Lazy-initialize client."""
        if self._client is None:
            self._client = boto3.client("secretsmanager", region_name=self.region_name)
        return self._client

    def get_secret(self, secret_id: str, stage: str) -> SecretVersion:
        try:
            response = self.client.get_secret_value(SecretId=secret_id, VersionStage=stage)
        except ClientError as e:
            if _error_code(e) == "ResourceNotFoundException":
                raise SecretNotFoundError(secret_id, stage) from e
            raise
        return SecretVersion(
            version_id=response["VersionId"],
            stages=list(response.get("VersionStages") or []),
            secret_string=response.get("SecretString"),
        )

    def put_pending(self, secret_id: str, token: str, secret_string: str) -> None:
        response = self.client.put_secret_value(
            SecretId=secret_id,
            ClientRequestToken=token,
            SecretString=secret_string,
            VersionStages=[AWSPENDING],
        )
        logger.info(f"new pending secret: version {response.get('VersionId')} stages {response.get('VersionStages')}")

    def move_stage(
        self,
        secret_id: str,
        stage: str,
        to_version: Optional[str] = None,
        from_version: Optional[str] = None,
    ) -> None:
        params = {"SecretId": secret_id, "VersionStage": stage}
        if to_version:
            params["MoveToVersionId"] = to_version
        if from_version:
            params["RemoveFromVersionId"] = from_version
        self.client.update_secret_version_stage(**params)

    def replication_status(self, secret_id: str) -> List[ReplicaStatus]:
        response = self.client.describe_secret(SecretId=secret_id)
        if response is None:
            raise ValueError(f"expected a non-null description for secret {secret_id}")
        statuses = []
        for status in response.get("ReplicationStatus") or []:
            if not status:
                continue
            statuses.append(ReplicaStatus(
                region=status.get("Region", ""),
                status=status.get("Status", ""),
                message=status.get("StatusMessage", ""),
            ))
        return statuses


def decode_secret(version: SecretVersion) -> Dict[str, str]:
    """Decode a secret string as a JSON object of string values."""
    if not version.secret_string:
        raise SecretFormatError(f"secret string is nil or empty string; {SECRET_FORMAT_HINT}")
    try:
        values = json.loads(version.secret_string)
    except json.JSONDecodeError as e:
        raise SecretFormatError(f"secret string is not valid JSON: {e}; {SECRET_FORMAT_HINT}") from e
    if values is None:
        raise SecretFormatError(f"secret string is 'null' literal; {SECRET_FORMAT_HINT}")
    if not isinstance(values, dict):
        raise SecretFormatError(f"secret string is not a JSON object; {SECRET_FORMAT_HINT}")
    for key, value in values.items():
        if not isinstance(value, str):
            raise SecretFormatError(f"secret field {key!r} is not a string; {SECRET_FORMAT_HINT}")
    return values


def encode_secret(values: Dict[str, str]) -> str:
    return json.dumps(values)


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")
