from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import BaseModel, Field
from momentcart.schema.full_schema import SurfaceType


class CreateLinkInput(BaseModel):
    offer_id: UUID
    surface: SurfaceType
    name: Optional[str] = Field(default=None, max_length=255)
    expires_at: Optional[datetime] = None
    max_clicks: Optional[int] = Field(default=None, ge=1)

    platform: Optional[str] = Field(default=None, max_length=32)
    live_session_id: Optional[str] = None
    stream_id: Optional[str] = None
    replay_id: Optional[str] = None
    moment_id: Optional[str] = None
    campaign: Optional[str] = None
    source: Optional[str] = None
    medium: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def attribution_values(self) -> Dict[str, Any]:
        values = self.model_dump(
            include={"platform", "live_session_id", "stream_id", "replay_id", "moment_id", "campaign", "source", "medium"},
        )
        values["meta"] = self.metadata
        return values
