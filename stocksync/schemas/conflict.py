from datetime import datetime
from typing import Any, Dict, List, Optional

from stocksync.core.enums import ResolutionStrategy
from stocksync.schemas.base import BaseSchema


class ConflictRead(BaseSchema):
    id: int
    conflict_type: str
    product_id: int
    store_id: int
    central_value: Optional[Dict[str, Any]] = None
    store_value: Optional[Dict[str, Any]] = None
    resolution_strategy: str
    resolved: bool
    resolved_value: Optional[Dict[str, Any]] = None
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime


class ResolveConflictRequest(BaseSchema):
    strategy: ResolutionStrategy
    actor: str = "api"
    propagate: bool = True


class BatchResolveRequest(BaseSchema):
    conflict_ids: List[int]
    strategy: ResolutionStrategy
    actor: str = "api"
