from typing import Annotated

from fastapi import Depends, Request, WebSocket

from src.api.websocket import WebSocketManager
from src.render.pipeline import OverlayRenderPipeline
from src.services.storage_service import LocalStorageService


def get_pipeline(request: Request) -> OverlayRenderPipeline:
    return request.app.state.pipeline


def get_storage(request: Request) -> LocalStorageService:
    return request.app.state.storage


def get_ws_manager(websocket: WebSocket) -> WebSocketManager:
    return websocket.app.state.broadcaster.manager


PipelineDep = Annotated[OverlayRenderPipeline, Depends(get_pipeline)]
StorageDep = Annotated[LocalStorageService, Depends(get_storage)]
