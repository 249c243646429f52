"""Pydantic models for the OMS Assist API."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatContextOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    includeLineItems: bool = False
    includeShipments: bool = False
    includeFiles: bool = False
    maxOrders: Optional[int] = Field(default=None, ge=1, le=50)
    preferFreshData: bool = False


class ChatRequest(BaseModel):
    message: Optional[str] = Field(default=None, description="End-user question about orders")
    sessionId: Optional[str] = Field(default=None, max_length=128)
    # Free-form string context from older clients carries no options.
    context: Optional[Union[ChatContextOptions, str]] = None


class ChatAnalytics(BaseModel):
    totalResults: int = 0
    dataSource: str = ""
    processingTime: float = 0.0
    confidence: str = "low"
    searchStrategy: str = ""


class ChatMetadata(BaseModel):
    queryProcessed: str = ""
    timestamp: str = ""
    strategy: str = ""
    sessionId: str = ""


class ChatResponse(BaseModel):
    success: bool
    message: str
    orders: List[Dict[str, Any]] = Field(default_factory=list)
    analytics: ChatAnalytics = Field(default_factory=ChatAnalytics)
    metadata: ChatMetadata = Field(default_factory=ChatMetadata)
    structuredResponse: Optional[Dict[str, Any]] = None
    details: Optional[str] = None


class ErrorResponse(BaseModel):
    success: bool = False
    message: str
    details: Optional[str] = None
    correlation_id: Optional[str] = None


class ComponentHealth(BaseModel):
    model_config = ConfigDict(extra="allow")

    healthy: bool
    error: Optional[str] = None


class HealthResponse(BaseModel):
    overall: bool
    components: Dict[str, ComponentHealth]
    timestamp: str
    responseTime: float


class SyncResponse(BaseModel):
    success: bool
    newVectors: int
    updatedVectors: int
    deletedVectors: int
    unchangedVectors: int
    totalProcessed: int
    processingTime: float
    errors: List[str] = Field(default_factory=list)


class TrackerResetResponse(BaseModel):
    success: bool = True
    cleared: bool
