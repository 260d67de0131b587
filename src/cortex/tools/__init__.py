"""External integrations and API wrappers."""

from cortex.tools.base import Tool, ToolManifest
from cortex.tools.gemini import GeminiClient, GenerationConfig
from cortex.tools.notion import NotionClient
from cortex.tools.perplexity import PerplexityClient
from cortex.tools.registry import CapabilityError, ToolRegistry

__all__ = [
    "CapabilityError",
    "GeminiClient",
    "GenerationConfig",
    "NotionClient",
    "PerplexityClient",
    "Tool",
    "ToolManifest",
    "ToolRegistry",
]
