# Pydantic schemas returned by the API

from typing import Optional, List
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from datetime import datetime


# JobOut is the wire shape of a Job (/api/files, /api/files/{id}); field names are camelCase
class JobOut(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: str
    original_name: str
    stored_name: str
    output_name: Optional[str] = None
    size: int
    category: str
    input_format: str
    output_format: str
    status: str
    progress: int
    error: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# POST /api/files/upload
class UploadResponse(BaseModel):
    success: bool
    files: List[JobOut]


# POST /api/files/{id}/start
class StartResponse(BaseModel):
    ok: bool = True
    status: Optional[str] = None
