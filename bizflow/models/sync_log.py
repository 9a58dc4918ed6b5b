"""Spreadsheet sync log entry data model"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from bizflow.constants import SyncStatus


class SyncLogEntry(BaseModel):
    """One spreadsheet sync attempt or configuration change"""

    timestamp: datetime = Field(default_factory=datetime.now, description="When the entry was recorded")
    action: str = Field(..., description="Logical operation, e.g. export_transactions")
    status: SyncStatus = Field(..., description="info, success or error")
    details: Optional[str] = Field(None, description="Free-text detail")

    model_config = {
        "use_enum_values": True,
        "json_schema_extra": {
            "example": {
                "timestamp": "2025-02-06T10:00:05",
                "action": "export_customers",
                "status": "error",
                "details": "[direct] HTTP 403 from endpoint"
            }
        }
    }
