"""Trigger and event ingestion schemas."""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TriggerCreate(BaseModel):
    workflow_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1, description="e.g. invoice.created")
    name: str = ""
    conditions: Dict[str, Any] = Field(
        default_factory=dict,
        description="Payload field -> value or {operator, value}",
    )
    is_active: bool = True


class TriggerUpdate(BaseModel):
    event_type: Optional[str] = Field(default=None, min_length=1)
    name: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class TriggerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    owner_id: Optional[str] = None
    name: str
    event_type: str
    conditions: Optional[Dict[str, Any]] = None
    is_active: bool
    created_at: datetime


class EventIngest(BaseModel):
    """A business event (invoice created, client updated, ...)."""

    event_type: str = Field(min_length=1)
    entity_id: str = Field(min_length=1)
    entity_type: str = Field(min_length=1)
    payload: Dict[str, Any] = Field(default_factory=dict, description="Changed fields")
