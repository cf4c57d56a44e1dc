"""
Pydantic schemas for the sync backend API.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScanSessionRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, max_length=128)


class ScanSessionResponse(BaseModel):
    id: str
    hostId: str
    createdAt: float
    lastSeenAt: float
    status: str


class ScanSubmitRequest(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=256)


class ScanEventResponse(BaseModel):
    id: str
    productId: str
    timestamp: float
    scannedBy: Optional[str] = None


class ScanListResponse(BaseModel):
    session_id: str
    scans: List[ScanEventResponse]


class ProductPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    reference: Optional[str] = None
    brand: Optional[str] = None
    stock: float = 0
    purchasePrice: Optional[float] = None
    price: Optional[float] = None


class StockUpdateResponse(BaseModel):
    product_id: str
    created: bool


class AdjustStockRequest(BaseModel):
    delta: float


class ImportProductsRequest(BaseModel):
    products: List[ProductPayload]


class ImportProductsResponse(BaseModel):
    success: bool
    total: int
    created: int
    updated: int
    errors: List[dict] = []


class BulkIdsRequest(BaseModel):
    ids: List[str]
    collection: str = "products"


class BulkResponse(BaseModel):
    success: bool
    processed: int
    message: str


class MigrationResponse(BaseModel):
    updated: int


class SyncTriggerResponse(BaseModel):
    queued: bool
    pending: int


class SyncPendingResponse(BaseModel):
    pending: int
    doc_ids: List[str]


class LowStockRunResponse(BaseModel):
    lowStockProducts: int
    notificationCreated: bool
    error: Optional[str] = None


class ExportResponse(BaseModel):
    collection: str
    key: str
    url: str
    count: int
