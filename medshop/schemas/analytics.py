from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SalesReportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start_date: datetime = Field(alias="startDate")
    end_date: datetime = Field(alias="endDate")


class ReportExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    report_type: Literal["sales", "inventory", "customers"] = Field(alias="reportType")
