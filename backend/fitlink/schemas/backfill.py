from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SummaryType = Literal["activities", "dailies", "sleeps"]


class BackfillInitiateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    months_back: int | None = Field(None, ge=1)
    summary_types: list[SummaryType] = Field(default_factory=lambda: ["activities"], min_length=1)


class ManualBackfillRequest(BaseModel):
    """One explicit period (at most one chunk long)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start: datetime
    end: datetime
    summary_types: list[SummaryType] = Field(default_factory=lambda: ["activities"], min_length=1)
