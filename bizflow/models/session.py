"""Authenticated remote session"""

from typing import Optional

from pydantic import BaseModel, Field


class Session(BaseModel):
    """Hosted backend session; owner_id scopes every remote row"""

    owner_id: str = Field(..., min_length=1, description="Authenticated owner identifier")
    access_token: Optional[str] = Field(None, description="Bearer token for the hosted backend")
    email: Optional[str] = Field(None, description="Account email, informational")
