from fastapi import Request

from app.services.chat_system import ChatSystem
from app.services.connection import ConnectionHub
from app.services.upload_store import UploadStore


def get_chat_system(request: Request) -> ChatSystem:
    return request.app.state.chat_system


def get_connection_hub(request: Request) -> ConnectionHub:
    return request.app.state.connection_hub


def get_upload_store(request: Request) -> UploadStore:
    return request.app.state.upload_store
