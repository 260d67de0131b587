"""Stock movement explanation models."""

import datetime

from pydantic import BaseModel, Field

from cortex.models.summary import CamelModel


class MovementRequest(CamelModel):
    """Body of ``POST /stocks/explain-movement``."""

    symbol: str = Field(min_length=1)
    change_percent: float
    date: datetime.date


class MovementExplanation(BaseModel):
    explanation: str
