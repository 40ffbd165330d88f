# --- START OF FILE: src/nexustrack/interfaces/api/schemas.py ---
from __future__ import annotations
from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime


def _to_str(v: Any) -> str | None:
    if v is None: return None
    if hasattr(v, "value"): return str(v.value)
    return str(v)


class TrackIn(BaseModel):
    type: str = Field(description="game | mod | collection | user")
    entity: str = Field(description="Game domain, mod link or UID, collection link or domain:slug, user id or name")
    owner: Optional[str] = None
    crosspost: bool = False
    compact: bool = False
    message: Optional[str] = Field(default=None, max_length=2000)
    nsfw: Optional[bool] = None
    sfw: Optional[bool] = None
    show_new: Optional[bool] = None
    show_updates: Optional[bool] = None

    def options(self) -> dict:
        return self.model_dump(exclude={"type", "entity", "owner"}, exclude_none=True)


class ItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    type: str
    entityid: str
    title: str
    owner: str | None = None
    last_update: datetime
    error_count: int = 0
    last_status: str | None = None
    crosspost: bool = False
    compact: bool = False
    message: str | None = None
    nsfw: bool | None = None
    sfw: bool | None = None
    show_new: bool | None = None
    show_updates: bool | None = None

    @field_validator("type", mode="before")
    def _v_type(cls, v): return _to_str(v) or ""

    @classmethod
    def from_item(cls, item) -> "ItemOut":
        # `type` is a class attribute on the domain variants, so read attributes rather than fields.
        return cls.model_validate(item, from_attributes=True)


class UntrackIn(BaseModel):
    item_ids: List[int] = Field(min_length=1)


class UntrackOut(BaseModel):
    deleted: List[int]
    channel_deleted: bool


class TriggerIn(BaseModel):
    date: Optional[str] = Field(default=None, description="YYYY-MM-DD")
    time: Optional[str] = Field(default=None, description="HH:MM")
    timezone: Optional[str] = Field(default=None, description="Offset such as +00:00")


class TriggerOut(BaseModel):
    since: datetime
    refreshed: int
    delivered: int
    first_error: str | None = None


class CycleOut(BaseModel):
    started_at: datetime
    finished_at: datetime | None = None
    channels: int
    items: int
    delivered: int
    errors: int
    first_error: str | None = None


class StatusOut(BaseModel):
    started: bool
    paused: bool
    running: bool
    poll_interval: float
    next_run_at: datetime | None = None
    last_cycle: CycleOut | None = None
# --- END OF FILE ---
