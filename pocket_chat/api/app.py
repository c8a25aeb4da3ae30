from __future__ import annotations

import json
from typing import Literal

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..core.backend_config import BackendConfig, backend_config_loader, use_mocks

app = FastAPI()


class ChatRequest(BaseModel):
    message: str
    backend: str | None = None
    stream: bool | None = None
    api_shape: Literal["chat", "completion"] | None = None


def _backend(name: str | None) -> BackendConfig:
    config = backend_config_loader.get_backend(name)
    if config is None:
        raise HTTPException(status_code=404, detail=f"Unknown backend: {name}")
    if not config.is_available(use_mocks()):
        raise HTTPException(
            status_code=400, detail=f"{config.api_key_env} not found in environment"
        )
    return config


@app.get("/api/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/api/backends")
def list_backends() -> dict:
    mocks = use_mocks()
    backends = []
    for name, config in backend_config_loader.backends.items():
        backends.append(
            {
                "name": name,
                "kind": config.kind,
                "model": config.model,
                "description": config.description,
                "streaming": config.streaming,
                "available": config.is_available(mocks),
            }
        )
    return {"backends": backends, "default": backend_config_loader.default_backend}


@app.get("/api/backends/{name}/status")
async def backend_status(name: str) -> dict:
    config = _backend(name)
    async with config.create_adapter(use_mocks()) as adapter:
        connected, message = await adapter.check_connection()
    return {"backend": name, "connected": connected, "message": message}


@app.get("/api/backends/{name}/models")
async def backend_models(name: str) -> dict:
    config = _backend(name)
    async with config.create_adapter(use_mocks()) as adapter:
        models = await adapter.list_models()
    # an empty list means the backend could not tell us, not that it has none
    return {"backend": name, "models": models, "known": bool(models)}


@app.get("/api/backends/{name}/info")
async def backend_info(name: str) -> dict:
    config = _backend(name)
    async with config.create_adapter(use_mocks()) as adapter:
        info = await adapter.get_model_info()
    return {"backend": name, "model": config.model, "info": info}


@app.post("/api/chat")
async def chat(req: ChatRequest) -> StreamingResponse:
    """Stream the reply as NDJSON events: partial*, then one final or error."""
    config = _backend(req.backend)
    options = config.default_options.merged(use_streaming=req.stream, api_shape=req.api_shape)
    adapter = config.create_adapter(use_mocks())

    async def _events():
        try:
            async for event in adapter.send_message(req.message, options=options):
                yield json.dumps(event.to_dict(), ensure_ascii=False) + "\n"
        finally:
            await adapter.aclose()

    return StreamingResponse(_events(), media_type="application/x-ndjson")
