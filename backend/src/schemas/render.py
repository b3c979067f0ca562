from pydantic import BaseModel, ConfigDict, Field


class HardwareInfo(BaseModel):
    type: str
    available: bool


class EditVideoData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    job_id: str = Field(..., alias="jobId")
    mode: str  # single_pass | batched
    hardware: HardwareInfo


class EditVideoResponse(BaseModel):
    success: bool = True
    message: str = "Video processed successfully"
    data: EditVideoData


class UploadVideoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    file_url: str = Field(..., alias="fileUrl")
