from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class FileUpdateRequest(BaseModel):
    """PATCH body for a file; only the fields sent are changed."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    visibility: Optional[str] = None
    password: Optional[str] = None
    max_views: Optional[int] = None
    expires_at: Optional[str] = None


class FolderCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    files: list[str] = Field(default_factory=list)
    is_public: bool = Field(default=False, alias="isPublic")


class FolderUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = None
    is_public: Optional[bool] = Field(default=None, alias="isPublic")


class FolderFilesRequest(BaseModel):
    files: list[str]
