from pydantic import BaseModel, ConfigDict, Field


class UploadResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_name: str = Field(..., alias="fileName")
    bucket_name: str = Field(..., alias="bucketName")


class FileDetails(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_name: str = Field(..., min_length=1, alias="fileName")
    presigned_url: str = Field(..., min_length=1, alias="presignedUrl")
