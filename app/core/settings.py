"""
app.core.settings
~~~~~~~~~~~~~~~~~

集中式配置管理，基于 pydantic-settings 自动从 ``.env`` 文件加载。

支持多环境配置（dev / test / prod），加载顺序为:
  1. 环境变量（最高优先级）
  2. ``.env.{ENVIRONMENT}`` 环境专属文件
  3. ``.env`` 基础文件
  4. 字段默认值（最低优先级）
"""
from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# 项目根目录（app/ 的上一级）
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent

# 读取当前环境标识（在 Settings 类定义之前，用于决定加载哪个 .env 文件）
_CURRENT_ENV: str = os.getenv("ENVIRONMENT", "dev")


class Settings(BaseSettings):
    """全局配置对象，字段值按如下优先级加载：环境变量 > .env.{env} > .env > 默认值。"""

    # ── 基础 ──────────────────────────────────────────────────────────
    PROJECT_NAME: str = Field(default="Duo Chat", description="项目名称")
    VERSION: str = Field(default="0.1.0", description="版本号")
    ENVIRONMENT: Literal["dev", "test", "prod"] = Field(
        default="dev",
        description="运行环境：dev / test / prod",
    )

    # ── 服务 ──────────────────────────────────────────────────────────
    HOST: str = Field(default="0.0.0.0", description="服务监听地址")
    PORT: int = Field(default=3000, description="服务监听端口")
    LOG_LEVEL: str = Field(default="INFO", description="日志级别（可被环境属性覆盖）")
    PUBLIC_BASE_URL: str | None = Field(
        default=None,
        description="对外公开的基础地址，设置后邀请链接优先使用此地址",
    )

    # ── 聊天室 ────────────────────────────────────────────────────────
    MAX_MESSAGE_LENGTH: int = Field(default=2000, ge=1, description="单条文本消息最大长度")
    REPLY_PREVIEW_LENGTH: int = Field(default=120, ge=1, description="引用回复预览的最大字符数")
    ROOM_TTL_SECONDS: float = Field(
        default=60 * 60,
        gt=0,
        description="房间闲置超过该秒数后自动销毁",
    )
    ROOM_CLEANUP_INTERVAL_SECONDS: float = Field(
        default=60,
        gt=0,
        description="闲置房间巡检间隔（秒）",
    )

    # ── 上传 ──────────────────────────────────────────────────────────
    UPLOADS_DIR: str = Field(
        default=str(PROJECT_ROOT / "uploads"),
        description="上传文件的存放目录",
    )
    MAX_FILE_SIZE: int = Field(default=20 * 1024 * 1024, ge=1, description="上传文件大小上限（字节）")

    # ── 限流 ──────────────────────────────────────────────────────────
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="是否启用 HTTP 接口限流")
    WS_RATE_LIMIT_INTERVAL: float = Field(
        default=0.2,
        ge=0,
        description="同一连接两条聊天消息之间的最小间隔（秒）",
    )

    # ── Pydantic Settings ─────────────────────────────────────────────
    # 元组中靠后的文件优先，.env.{env} 覆盖 .env
    model_config = SettingsConfigDict(
        env_file=(".env", f".env.{_CURRENT_ENV}"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── 环境判断 ──────────────────────────────────────────────────────

    @property
    def is_prod(self) -> bool:
        """当前是否为生产环境。"""
        return self.ENVIRONMENT == "prod"

    @property
    def is_dev(self) -> bool:
        """当前是否为开发环境。"""
        return self.ENVIRONMENT == "dev"

    # ── 环境差异化行为 ────────────────────────────────────────────────

    @property
    def debug(self) -> bool:
        """是否开启 debug 模式。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def reload(self) -> bool:
        """是否开启热重载。仅 dev 环境开启。"""
        return self.is_dev

    @property
    def effective_log_level(self) -> str:
        """根据环境自动推断日志级别。

        - dev  → INFO
        - test → DEBUG（方便排查测试失败）
        - prod → WARNING（减少噪音）

        如果环境变量中显式设置了 LOG_LEVEL，会覆盖此默认推断。
        """
        env_log = os.getenv("LOG_LEVEL")
        if env_log:
            return env_log
        return {
            "dev": "INFO",
            "test": "DEBUG",
            "prod": "WARNING",
        }.get(self.ENVIRONMENT, "INFO")


@lru_cache
def get_settings() -> Settings:
    """获取全局 Settings 单例（带缓存，避免重复解析 .env）。"""
    return Settings()


settings: Settings = get_settings()
