"""
app.services.messages
~~~~~~~~~~~~~~~~~~~~~

消息构造工具 —— 生成各类 frozen 消息模型以及引用回复快照。
"""
from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable

from app.prompts.notices import ATTACHMENT_PREVIEW_FALLBACK, role_label
from app.schemas.chat import (
    Attachment,
    AttachmentMessage,
    FileDescriptor,
    Message,
    ReplySnapshot,
    Role,
    SystemMessage,
    TextMessage,
)

UPLOADS_URL_PREFIX: str = "/uploads"


def new_message_id() -> str:
    return str(uuid.uuid4())


def timestamp_ms(clock: Callable[[], float] = time.time) -> int:
    return int(clock() * 1000)


def build_reply_snapshot(original: Message | None, preview_length: int) -> ReplySnapshot | None:
    """为被引用的消息构造只读快照。

    文本消息截取前 ``preview_length`` 个字符；图片 / 文件使用原始文件名；
    系统消息和不存在的消息不产生快照。
    """
    if isinstance(original, TextMessage):
        return ReplySnapshot(
            id=original.id,
            sender=original.sender,
            sender_label=original.sender_label,
            type="text",
            preview=original.text[:preview_length],
        )
    if isinstance(original, AttachmentMessage):
        return ReplySnapshot(
            id=original.id,
            sender=original.sender,
            sender_label=original.sender_label,
            type=original.type,
            preview=original.attachment.original_name or ATTACHMENT_PREVIEW_FALLBACK,
        )
    return None


def build_text_message(
    sender: Role,
    text: str,
    reply_to: ReplySnapshot | None = None,
    clock: Callable[[], float] = time.time,
) -> TextMessage:
    return TextMessage(
        id=new_message_id(),
        sender=sender,
        sender_label=role_label(sender),
        timestamp=timestamp_ms(clock),
        text=text,
        reply_to=reply_to,
    )


def build_attachment_message(
    sender: Role,
    descriptor: FileDescriptor,
    clock: Callable[[], float] = time.time,
) -> AttachmentMessage:
    """按媒体类型决定 ``image`` / ``file``，下载地址指向 ``/uploads/<文件名>``。"""
    kind = "image" if descriptor.mime_type.startswith("image/") else "file"
    return AttachmentMessage(
        type=kind,
        id=new_message_id(),
        sender=sender,
        sender_label=role_label(sender),
        timestamp=timestamp_ms(clock),
        attachment=Attachment(
            original_name=descriptor.original_name,
            mime_type=descriptor.mime_type,
            size=descriptor.size,
            url=f"{UPLOADS_URL_PREFIX}/{os.path.basename(descriptor.storage_ref)}",
        ),
    )


def build_system_message(text: str, clock: Callable[[], float] = time.time) -> SystemMessage:
    return SystemMessage(id=new_message_id(), timestamp=timestamp_ms(clock), text=text)
