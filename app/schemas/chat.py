"""
app.schemas.chat
~~~~~~~~~~~~~~~~

聊天室核心层使用的 Pydantic 模型。

消息按 ``type`` 字段区分为三种形态（文本 / 附件 / 系统），
每种只携带自己需要的字段。所有消息模型都是 frozen 的：
一旦写入房间历史就不可再修改。
"""
from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["host", "guest"]
AttachmentKind = Literal["image", "file"]


class ReplySnapshot(BaseModel):
    """被引用消息在回复创建时刻的只读快照。"""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="被引用消息的 ID")
    sender: Role = Field(..., description="被引用消息的发送者角色")
    sender_label: str = Field(..., description="被引用消息的发送者名称")
    type: Literal["text", "image", "file"] = Field(..., description="被引用消息的类型")
    preview: str = Field(..., description="截断后的预览文本")


class Attachment(BaseModel):
    """已上传文件的对外描述。"""

    model_config = ConfigDict(frozen=True)

    original_name: str = Field(..., description="原始文件名")
    mime_type: str = Field(..., description="媒体类型")
    size: int = Field(..., ge=0, description="文件大小（字节）")
    url: str = Field(..., description="下载地址")


class TextMessage(BaseModel):
    """参与者发送的文本消息。"""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    id: str
    sender: Role
    sender_label: str
    timestamp: int = Field(..., description="创建时间（毫秒时间戳）")
    text: str
    reply_to: ReplySnapshot | None = None


class AttachmentMessage(BaseModel):
    """参与者上传的图片或文件。"""

    model_config = ConfigDict(frozen=True)

    type: AttachmentKind
    id: str
    sender: Role
    sender_label: str
    timestamp: int = Field(..., description="创建时间（毫秒时间戳）")
    attachment: Attachment
    reply_to: ReplySnapshot | None = None


class SystemMessage(BaseModel):
    """系统通知，没有发送者。"""

    model_config = ConfigDict(frozen=True)

    type: Literal["system"] = "system"
    id: str
    timestamp: int = Field(..., description="创建时间（毫秒时间戳）")
    text: str


Message = Annotated[
    Union[TextMessage, AttachmentMessage, SystemMessage],
    Field(discriminator="type"),
]


class FileDescriptor(BaseModel):
    """上传中间件交给核心层的已存储文件描述。"""

    model_config = ConfigDict(frozen=True)

    original_name: str
    mime_type: str
    size: int = Field(..., ge=0)
    storage_ref: str = Field(..., description="文件在磁盘上的路径，房间销毁时据此删除")


class JoinResult(BaseModel):
    """``join`` 成功后返回给传输层的数据。"""

    room_id: str
    role: Role
    role_label: str
    participants_count: int
    history: list[Message] = Field(default_factory=list)
    notice_to_self: SystemMessage | None = Field(
        default=None, description="只发给新加入连接的提示（第一位参与者）",
    )
    notice_to_room: SystemMessage | None = Field(
        default=None, description="广播给整个房间的提示（第二位参与者）",
    )


class TypingEvent(BaseModel):
    """输入状态变化，只转发给对方参与者。"""

    room_id: str
    connection_id: str
    role: Role
    role_label: str
    is_typing: bool


class DestroyResult(BaseModel):
    """房间销毁结果，传输层据此通知并断开每个连接。"""

    room_id: str
    connection_ids: list[str]
    reason: str
    initiator_connection_id: str | None = None
