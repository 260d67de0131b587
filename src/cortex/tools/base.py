"""Protocol shared by Cortex's upstream API clients."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class ToolManifest:
    """Static description of an upstream client.

    Attributes:
        name: Registry key (e.g. "gemini", "notion").
        version: Wrapper version string.
        description: One-line summary for the health endpoint.
        capabilities: What the client provides ("generation", "web_search",
            "workspace_search", "workspace_read").
        config_keys: Environment variables the client reads.
    """

    name: str
    version: str
    description: str
    capabilities: frozenset[str]
    config_keys: frozenset[str]

    def describe(self, configured: bool) -> dict[str, object]:
        return {
            "version": self.version,
            "capabilities": sorted(self.capabilities),
            "configured": configured,
        }


@runtime_checkable
class Tool(Protocol):
    """What the registry and health checks need from a client.

    Request methods differ per client (``open_stream()``, ``search()``,
    ``read_folder()``) and are called directly by the services.
    An unconfigured client stays registered; services treat its
    capability as absent.
    """

    @property
    def name(self) -> str: ...

    @property
    def capabilities(self) -> frozenset[str]: ...

    @property
    def configured(self) -> bool: ...

    def manifest(self) -> ToolManifest: ...

    async def health_check(self) -> bool: ...
