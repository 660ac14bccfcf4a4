"""
app.schemas
~~~~~~~~~~~
Pydantic schemas and models for the API and the chat room core.
"""
from app.schemas.api_response import ApiResponse
from app.schemas.chat import (
    Attachment,
    AttachmentMessage,
    DestroyResult,
    FileDescriptor,
    JoinResult,
    Message,
    ReplySnapshot,
    SystemMessage,
    TextMessage,
    TypingEvent,
)
from app.schemas.rooms import RoomCreatedData, UploadResultData

# Call model_rebuild to resolve forward references in generic Pydantic models.
ApiResponse.model_rebuild()
