from pydantic import BaseModel, ConfigDict, Field

INITIATE_PATH = "/api/uploads/initiate"
PRESIGN_PART_PATH = "/api/uploads/presign-part"
COMPLETE_PATH = "/api/uploads/complete"
ABORT_PATH = "/api/uploads/abort"
PRESIGN_DIRECT_PATH = "/api/uploads/presign"

UPLOAD_PATHS = (INITIATE_PATH, PRESIGN_PART_PATH, COMPLETE_PATH, ABORT_PATH, PRESIGN_DIRECT_PATH)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InitiateRequest(CamelModel):
    file_name: str = Field(alias="fileName", min_length=1)
    content_type: str = Field(alias="contentType", min_length=1)


class InitiateResponse(CamelModel):
    upload_id: str = Field(alias="uploadId")


class PresignPartRequest(CamelModel):
    file_name: str = Field(alias="fileName", min_length=1)
    upload_id: str = Field(alias="uploadId", min_length=1)
    part_number: int = Field(alias="partNumber", ge=1, le=10000)


class PresignPartResponse(CamelModel):
    url: str


class CompletedPart(CamelModel):
    etag: str = Field(min_length=1)
    part_number: int = Field(alias="partNumber", ge=1, le=10000)


class CompleteRequest(CamelModel):
    file_name: str = Field(alias="fileName", min_length=1)
    upload_id: str = Field(alias="uploadId", min_length=1)
    parts: list[CompletedPart] = Field(min_length=1)


class CompleteResponse(CamelModel):
    public_url: str = Field(alias="publicUrl")
    location: str | None = None


class AbortRequest(CamelModel):
    file_name: str = Field(alias="fileName", min_length=1)
    upload_id: str = Field(alias="uploadId", min_length=1)


class PresignDirectRequest(CamelModel):
    file_name: str = Field(alias="fileName", min_length=1)
    content_type: str = Field(alias="contentType", min_length=1)


class PresignDirectResponse(CamelModel):
    url: str
    public_url: str = Field(alias="publicUrl")


class ErrorResponse(BaseModel):
    detail: str
    error_code: str
    request_id: str | None = None
    trace_id: str | None = None
