from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CustomerUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loyalty_points: Optional[int] = Field(default=None, alias="loyaltyPoints")
    notes: Optional[str] = Field(default=None, max_length=2000)
