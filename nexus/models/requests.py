"""Request models for API endpoints."""

from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict


class PluginUpdateRequest(BaseModel):
    """Partial descriptor update applied to a persisted plugin."""

    changes: Dict[str, Any] = Field(..., description="Descriptor fields to change")

    @field_validator('changes')
    @classmethod
    def changes_not_empty(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        if not v:
            raise ValueError('changes cannot be empty')
        return v

    class Config:
        json_schema_extra = {
            "examples": [
                {
                    "summary": "Feature a plugin",
                    "value": {"changes": {"featured": True, "tags": ["media", "images"]}}
                },
                {
                    "summary": "Bump version",
                    "value": {"changes": {"version": "1.1.0", "description": "Faster thumbnails for uploads"}}
                }
            ]
        }
