from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field

SyncDirectionName = Literal["from_external", "to_external", "bidirectional"]

class SyncRequest(BaseModel):
    direction: SyncDirectionName = "bidirectional"
    force: bool = False
    skip_conflicts: bool = False

class SyncResult(BaseModel):
    success: bool
    changes: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)
    message: str = ""
    error: str | None = None
    duration_ms: int = 0

class BidirectionalSyncResult(BaseModel):
    success: bool
    from_external: SyncResult
    to_external: SyncResult
    total_changes: int
    changes: list[str] = Field(default_factory=list)
    conflicts: list[str] = Field(default_factory=list)

class BulkSyncIn(BaseModel):
    principal_ids: list[str] = Field(..., max_length=500)

class BulkSyncResult(BaseModel):
    total: int
    success_count: int
    error_count: int
    results: dict[str, SyncResult]

class SyncHistoryItem(BaseModel):
    direction: Literal["from_external", "to_external"]
    changes: list[str]
    conflicts: list[str]
    success: bool
    error: str | None = None
    duration_ms: int = 0
    timestamp: datetime

class SyncStatus(BaseModel):
    history: list[SyncHistoryItem]
    last_sync: datetime | None = None
    total_syncs: int
