"""Registry of upstream clients, looked up by capability."""

import logging

from cortex.tools.base import Tool

logger = logging.getLogger(__name__)


class CapabilityError(Exception):
    """No registered client provides a capability a service needs."""


class ToolRegistry:
    """Holds one client per name and indexes them by capability.

    The first client registered for a capability answers lookups for it.
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._providers: dict[str, list[Tool]] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' already registered")
        self._tools[tool.name] = tool
        for capability in tool.capabilities:
            self._providers.setdefault(capability, []).append(tool)
        logger.debug(f"Registered {tool.name}: {sorted(tool.capabilities)} (configured: {tool.configured})")

    def get_by_name(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def get_by_capability(self, capability: str) -> Tool | None:
        providers = self._providers.get(capability)
        return providers[0] if providers else None

    def require(self, capability: str) -> Tool:
        """Return the client for ``capability``.

        Raises:
            CapabilityError: If nothing registered provides it
        """
        tool = self.get_by_capability(capability)
        if tool is None:
            raise CapabilityError(f"Missing required capability: {capability}")
        return tool

    def get_all(self) -> list[Tool]:
        return list(self._tools.values())

    def unconfigured(self) -> list[str]:
        """Names of registered clients that have no credentials."""
        return [name for name, tool in self._tools.items() if not tool.configured]

    def describe(self) -> dict[str, dict[str, object]]:
        """Manifest summary per client, for the health endpoint."""
        return {name: tool.manifest().describe(tool.configured) for name, tool in self._tools.items()}

    async def health_check_all(self) -> dict[str, bool]:
        """Run every client's health check; one that raises counts as unhealthy."""
        results: dict[str, bool] = {}
        for name, tool in self._tools.items():
            try:
                results[name] = await tool.health_check()
            except Exception as e:
                logger.warning(f"Health check for {name} raised: {e}")
                results[name] = False
        return results
