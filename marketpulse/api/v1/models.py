"""Pydantic request models."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from marketpulse.core.data.types import PropertyType


class AddMarketRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    zip: str | int | None = None
    property_type: PropertyType = Field(PropertyType.SFH, alias="propertyType")


class HideMarketRequest(BaseModel):
    id: str


class RefreshCoreRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    market_ids: list[str] | None = Field(None, alias="marketIds")
