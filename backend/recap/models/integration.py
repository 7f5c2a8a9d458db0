from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field

from recap.models.base import utc_column, utcnow


class Integration(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    owner_id: str = Field(index=True)
    type: str  # slack|email
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    is_enabled: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
