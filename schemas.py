# schemas.py
# JSON 請求的格式。型別故意放寬，詳細的檢查 (長度、範圍、格式) 在 services 裡做，
# 這樣不管從哪裡呼叫 service 都會得到同樣的驗證結果。
from pydantic import AliasChoices, BaseModel, Field


class AssignmentRequestCreate(BaseModel):
    course_name: str | None = None
    course_code: str | None = None
    assignment_type: str | None = None
    num_pages: int | str | None = None
    deadline: str | None = None
    estimated_cost: float | str | None = None


class RatingCreate(BaseModel):
    rated_id: int | str | None = None
    assignment_request_id: int | str | None = None
    # 舊版前端送的是 "rating"
    score: int | str | None = Field(default=None, validation_alias=AliasChoices("score", "rating"))
    comment: str | None = None


class WriterProfileUpdate(BaseModel):
    university_stream: str | None = None
    writer_status: str | None = None
    whatsapp_number: str | None = None


class WhatsappUpdate(BaseModel):
    whatsapp_number: str | None = None


class DeleteAccountRequest(BaseModel):
    confirmDelete: str | None = None
