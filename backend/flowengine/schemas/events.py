"""Pydantic models for run events."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator


class RunEventOut(BaseModel):
    event_id: int
    run_id: str
    # validation_alias reads the ORM "ts" column but serialises as "created_at"
    created_at: datetime = Field(validation_alias="ts")
    event_type: str
    node_id: str | None = None
    message: str | None = None
    payload: dict[str, Any] | None = None

    model_config = {"from_attributes": True, "populate_by_name": True}

    @model_validator(mode="before")
    @classmethod
    def _parse_payload(cls, data: Any) -> Any:
        if hasattr(data, "payload_json"):
            raw = data.payload_json
            return {
                "event_id": data.event_id,
                "run_id": data.run_id,
                "ts": data.ts,
                "event_type": data.event_type,
                "node_id": data.node_id,
                "message": data.message,
                "payload": json.loads(raw) if isinstance(raw, str) else raw,
            }
        return data
