"""Pydantic models describing HTTP response bodies."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PageResponse(BaseModel):
    """One page of rows from a GET endpoint."""
    count: int = Field(description="Rows in this page")
    value: List[Dict[str, Any]] = Field(default_factory=list)
    nextLink: Optional[str] = Field(default=None, description="Link to the next page, null on the last page")


class WriteResponse(BaseModel):
    """Result of a POST, PUT or DELETE dispatched to a stored procedure."""
    success: bool = True
    message: str
    result: Any = None


class WebhookResponse(BaseModel):
    message: str
    id: int


class ErrorResponse(BaseModel):
    error: str
    error_code: Optional[str] = None
    success: bool = False
    retryable: Optional[bool] = None


class HealthResponse(BaseModel):
    status: str
    version: str
