"""Database discovery: the candidate targets for a rotation."""
import logging
import time
from typing import Iterable, List, Optional

from .models import Candidate

logger = logging.getLogger(__name__)


class Discovery:
    """Lists every candidate database. Filtering happens in the PasswordSetter."""

    def discover(self) -> List[Candidate]:
        raise NotImplementedError


class StaticDiscovery(Discovery):
    """Fixed list of addresses, e.g. from configuration."""

    def __init__(self, addresses: Iterable[str]):
        self.addresses = list(addresses)

    def discover(self) -> List[Candidate]:
        return [Candidate(identifier=address, address=address) for address in self.addresses]


class RDSDiscovery(Discovery):
    """Lists RDS instances with describe_db_instances."""

    def __init__(self, rds_client, engines: Optional[Iterable[str]] = None, include_port: bool = False):
        self.rds_client = rds_client
        self.engines = set(engines or [])
        self.include_port = include_port

    def discover(self) -> List[Candidate]:
        t0 = time.monotonic()
        candidates = []
        paginator = self.rds_client.get_paginator("describe_db_instances")
        for page in paginator.paginate():
            for instance in page.get("DBInstances", []):
                candidate = self._candidate(instance)
                if self.engines and candidate.engine not in self.engines:
                    logger.debug(f"{candidate.identifier}: engine {candidate.engine} not selected")
                    continue
                candidates.append(candidate)
        logger.info(f"RDS.DescribeDBInstances response time: {(time.monotonic() - t0) * 1000:.0f}ms")
        return candidates

    def _candidate(self, instance: dict) -> Candidate:
        # While an instance is being created or deleted, Endpoint is missing
        endpoint = instance.get("Endpoint") or {}
        address = endpoint.get("Address")
        port = endpoint.get("Port")
        if address and self.include_port and port:
            address = f"{address}:{port}"
        return Candidate(
            identifier=instance.get("DBInstanceIdentifier", ""),
            address=address,
            port=port,
            engine=instance.get("Engine", ""),
            raw=instance,
        )
