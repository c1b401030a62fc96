"""Pydantic schemas for the channels module."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

CHANNEL_NAME_PATTERN = r"^[\w\s-]{1,50}$"


class ChannelCreate(BaseModel):
    """Request body for creating a channel."""
    name: str = Field(..., min_length=1, max_length=50, pattern=CHANNEL_NAME_PATTERN)
    description: Optional[str] = Field(default="", max_length=500)
    isPrivate: bool = False

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Channel name is required")
        return value


class UserRef(BaseModel):
    """Brief user info embedded in channel responses."""
    id: str
    username: Optional[str] = None
    displayName: Optional[str] = None
    avatarUrl: Optional[str] = None


class ChannelSummary(BaseModel):
    """Channel as listed by GET /api/channels."""
    id: str
    name: str
    isPrivate: bool
    memberCount: int
    createdBy: Optional[UserRef] = None
    createdAt: datetime


class ChannelDetail(ChannelSummary):
    """Channel with description and member list."""
    description: str = ""
    members: List[UserRef] = Field(default_factory=list)
