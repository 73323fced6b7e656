"""
Database Schemas for SageExcel

Each Pydantic model represents a MongoDB collection (lowercased class name).
References between collections are stored as ObjectIds.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ChartType(str, Enum):
    bar = "bar"
    line = "line"
    pie = "pie"
    doughnut = "doughnut"
    radar = "radar"
    scatter = "scatter"
    bar3d = "bar3d"
    scatter3d = "scatter3d"
    surface3d = "surface3d"

    @property
    def is_3d(self) -> bool:
        return self in (ChartType.bar3d, ChartType.scatter3d, ChartType.surface3d)


class User(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    email: str = Field(..., description="Unique login email")
    password: str = Field(..., description="bcrypt hash")
    isAdmin: bool = False
    uploadedFiles: List[ObjectId] = Field(default_factory=list)
    savedAnalyses: List[ObjectId] = Field(default_factory=list)


class File(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    filename: str
    uploadDate: datetime = Field(default_factory=_now)
    headers: List[str] = Field(default_factory=list, description="Column names from the header row")
    size: int
    uploadedBy: ObjectId
    contentType: str
    data: bytes
    analyses: List[ObjectId] = Field(default_factory=list)


class Analysis(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True, use_enum_values=True)

    userId: ObjectId
    fileId: ObjectId
    chartTitle: Optional[str] = None
    chartType: ChartType
    selectedFields: List[Optional[str]] = Field(..., description="[x, y, z, groupBy]")
    chartOptions: Dict[str, Any] = Field(default_factory=dict)
    filters: Dict[str, Any] = Field(default_factory=dict)
    summary: List[str] = Field(default_factory=list, description="AI insight lines")
    createdAt: datetime = Field(default_factory=_now)
