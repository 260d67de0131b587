"""AI chat request models."""

from pydantic import BaseModel, Field

from cortex.models.summary import CamelModel


class ChatMessage(BaseModel):
    """One turn of the browser-side conversation."""

    role: str = "user"
    content: str = ""


class ChatRequest(BaseModel):
    """Body of ``POST /chat``."""

    messages: list[ChatMessage] = Field(min_length=1)

    @property
    def latest_message(self) -> str:
        return self.messages[-1].content


class ChatStatus(CamelModel):
    """Which enrichment sources are available to the caller."""

    has_notion: bool = False
    has_web: bool = False
