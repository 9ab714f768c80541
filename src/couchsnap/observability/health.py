"""Health probes for the CouchDB server and target database."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from couchsnap.sources.couchdb.client import CouchClient, CouchError

logger = structlog.get_logger()


class Status(StrEnum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass
class ComponentHealth:
    name: str
    status: Status = Status.UNKNOWN
    detail: str = ""


@dataclass
class ServerHealth:
    components: list[ComponentHealth] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return all(c.status == Status.HEALTHY for c in self.components)

    @property
    def summary(self) -> dict[str, str]:
        return {c.name: c.status.value for c in self.components}


async def check_server(client: CouchClient) -> ComponentHealth:
    """Probe the server welcome endpoint."""
    try:
        info = await client.server_info()
        version = info.get("version", "unknown")
        vendor = info.get("vendor", {}).get("name", "couchdb")
        return ComponentHealth(
            name="server", status=Status.HEALTHY, detail=f"{vendor} {version}"
        )
    except CouchError as exc:
        return ComponentHealth(name="server", status=Status.UNHEALTHY, detail=str(exc))


async def check_database(client: CouchClient, database: str) -> ComponentHealth:
    """Probe the database info endpoint."""
    name = f"db:{database}"
    try:
        info = await client.database_info(database)
        return ComponentHealth(
            name=name,
            status=Status.HEALTHY,
            detail=f"{info.get('doc_count', '?')} doc(s)",
        )
    except CouchError as exc:
        return ComponentHealth(name=name, status=Status.UNHEALTHY, detail=str(exc))


async def check_health(
    client: CouchClient, database: str | None = None
) -> ServerHealth:
    """Run all health checks and return the aggregated result."""
    components = [await check_server(client)]
    if database:
        components.append(await check_database(client, database))
    result = ServerHealth(components=components)
    logger.debug("health.checked", summary=result.summary)
    return result
