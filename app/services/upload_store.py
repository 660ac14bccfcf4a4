"""
app.services.upload_store
~~~~~~~~~~~~~~~~~~~~~~~~~

上传文件的磁盘存储 —— 接收 ``UploadFile``、限制大小、生成安全文件名，
并为核心层提供 ``FileDescriptor`` 和删除能力。
"""
from __future__ import annotations

import asyncio
import os
import re
import time
from pathlib import Path

from fastapi import UploadFile

from app.core.logging import get_logger
from app.schemas.chat import FileDescriptor

logger = get_logger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_CHUNK_SIZE: int = 64 * 1024


class FileTooLarge(Exception):
    """上传文件超过大小上限。"""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        super().__init__(f"文件太大。最大允许: {max_size // (1024 * 1024)}MB。")


def safe_file_name(original_name: str) -> str:
    """把原始文件名中的非安全字符替换为下划线。"""
    return _UNSAFE_CHARS.sub("_", original_name or "file")


class UploadStore:
    """上传目录管理。

    Attributes:
        directory: 文件存放目录。
        max_size: 单个文件的大小上限（字节）。
    """

    def __init__(self, directory: str | Path, max_size: int) -> None:
        self.directory = Path(directory)
        self.max_size = max_size

    def ensure_directory(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)

    async def save(self, upload: UploadFile) -> FileDescriptor:
        """把上传内容分块写入磁盘。

        Raises:
            FileTooLarge: 写入量超过上限，已写入的部分文件会被删除。
        """
        await asyncio.to_thread(self.ensure_directory)
        original_name = upload.filename or "file"
        target = self.directory / f"{int(time.time() * 1000)}-{safe_file_name(original_name)}"

        # 磁盘读写都放到线程池，不阻塞事件循环
        size = 0
        fh = await asyncio.to_thread(open, target, "wb")
        try:
            try:
                while chunk := await upload.read(_CHUNK_SIZE):
                    size += len(chunk)
                    if size > self.max_size:
                        raise FileTooLarge(self.max_size)
                    await asyncio.to_thread(fh.write, chunk)
            finally:
                await asyncio.to_thread(fh.close)
        except BaseException:
            target.unlink(missing_ok=True)
            raise

        return FileDescriptor(
            original_name=original_name,
            mime_type=upload.content_type or "application/octet-stream",
            size=size,
            storage_ref=str(target),
        )

    def resolve(self, file_name: str) -> Path | None:
        """按文件名定位已存储的文件，拒绝目录穿越。"""
        if not file_name or os.path.basename(file_name) != file_name:
            return None
        path = self.directory / file_name
        return path if path.is_file() else None

    async def delete(self, storage_ref: str) -> None:
        """删除一个已存储的文件。文件已不存在视为成功。"""
        await asyncio.to_thread(Path(storage_ref).unlink, missing_ok=True)

    async def clear(self) -> int:
        """启动时清空上传目录中遗留的文件，返回删除数量。"""
        if not self.directory.is_dir():
            return 0
        removed = 0
        for entry in self.directory.iterdir():
            if not entry.is_file():
                continue
            try:
                await asyncio.to_thread(entry.unlink)
                removed += 1
            except OSError as e:
                logger.warning("清理遗留上传文件失败 | file=%s | %s", entry.name, e)
        if removed:
            logger.info("已清理遗留上传文件 %d 个", removed)
        return removed
