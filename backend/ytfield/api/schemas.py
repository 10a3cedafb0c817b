"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# Health
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    authorized: bool
    token_state: str
    scheduler: Dict[str, Optional[Union[str, int, float, bool]]]


# =============================================================================
# OAuth
# =============================================================================

class OAuthStatusResponse(BaseModel):
    """Authorization status for the settings screen."""
    status: str = Field(..., description="error, authorize or authorized")
    message: str
    auth_url: Optional[str] = None
    email: Optional[str] = None


class OAuthCallbackRequest(BaseModel):
    """Authorization code returned by Google."""
    code: str = Field(..., description="One-time authorization code")


class OAuthCallbackResponse(BaseModel):
    """Result of the authorization code exchange."""
    status: str
    message: str


# =============================================================================
# Uploads
# =============================================================================

class FieldConfig(BaseModel):
    """Per-field upload settings."""
    category_id: Optional[str] = Field(None, description="YouTube category id")
    tags: Optional[str] = Field(None, description="Comma-separated tags")
    privacy_status: Optional[str] = Field(None, description="private, public or unlisted")
    made_for_kids: Optional[bool] = None


class UploadSessionRequest(BaseModel):
    """Metadata for a browser-side upload."""
    title: str = Field(..., description="Video title")
    excerpt: Optional[str] = Field(None, description="Video description")
    field: FieldConfig = Field(default_factory=FieldConfig)


class UploadSessionResponse(BaseModel):
    """Negotiated resumable upload session."""
    upload_url: str


class UploadJobRequest(BaseModel):
    """Server-side upload of a local file."""
    file_path: str = Field(..., description="Path to local video file")
    title: str = Field(..., description="Video title")
    excerpt: Optional[str] = Field(None, description="Video description")
    field: FieldConfig = Field(default_factory=FieldConfig)


class UploadJobResponse(BaseModel):
    """Upload job response."""
    id: int
    status: str
    file_path: str
    title: str
    progress: float
    message: Optional[str]
    video_id: Optional[str]
    result: Optional[str]
    error: Optional[str]
    error_kind: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class DiscoverRequest(BaseModel):
    """Look up a video whose upload response was unreadable."""
    upload_id: str = Field(..., description="Client-side upload identifier, for logging")


class DiscoverResponse(BaseModel):
    video_id: Optional[str]


# =============================================================================
# Catalog
# =============================================================================

class CatalogItemResponse(BaseModel):
    id: str
    title: str
    privacy_status: Optional[str] = None
    published_at: Optional[str] = None


class CatalogPageResponse(BaseModel):
    """One page of playlists or playlist videos."""
    items: List[CatalogItemResponse]
    next_page_token: Optional[str] = None


class VideoExistsResponse(BaseModel):
    video_id: str
    exists: bool


class VideoUpdateRequest(BaseModel):
    """Fields to overlay on the current video snippet."""
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None


class VideoUpdateResponse(BaseModel):
    video_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None


class VideoDeleteResponse(BaseModel):
    video_id: str
    deleted: bool
