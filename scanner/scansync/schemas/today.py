"""
Schémas de la réponse GET /api/attendance/today.
"""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field


class TodaySummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int = 0
    present: int = 0
    late: int = 0
    on_time: int = Field(default=0, alias="onTime")


class TodayAttendance(BaseModel):
    attendance: List[Dict[str, Any]] = Field(default_factory=list)
    summary: TodaySummary = Field(default_factory=TodaySummary)
