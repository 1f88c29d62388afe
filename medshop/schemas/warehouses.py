from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class WarehouseCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(min_length=1, max_length=20)
    name: str = Field(min_length=1, max_length=255)
    address: Optional[str] = None
    phone: Optional[str] = Field(default=None, max_length=20)
    is_active: bool = Field(default=True, alias="isActive")
