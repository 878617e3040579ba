from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .errors import NotFoundError, ServiceError, StoreError, ValidationError
from .facade import ConfigService
from .models import Config, EffectiveProxy
from .store import JsonEntityStore, default_store_path

STATUS_BY_CODE = {
    ValidationError.code: 422,
    NotFoundError.code: 404,
    StoreError.code: 500,
}

logger = logging.getLogger(__name__)
router = APIRouter()


def _config_payload(config: Config) -> Dict[str, Any]:
    return config.model_dump(mode="json", context={"reveal_secrets": True})


def _effective_payload(effective: EffectiveProxy) -> Dict[str, Any]:
    data = effective.model_dump(mode="json", context={"reveal_secrets": True})
    data["url"] = effective.url
    return data


async def ensure_startup(app: FastAPI) -> None:
    async with app.state.startup_lock:
        if not getattr(app.state, "initialized", False):
            await app.state.service.startup()
            app.state.initialized = True


async def get_service(request: Request) -> ConfigService:
    await ensure_startup(request.app)
    return request.app.state.service


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content={"error": exc.to_payload()})


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return await _service_error_handler(request, ValidationError.from_errors(exc.errors()))


@router.get("/health")
async def health() -> Dict[str, str]:
    return {"status": "ok"}


@router.get("/configs")
async def list_configs(
    provider_id: Optional[str] = None, service: ConfigService = Depends(get_service)
) -> List[Dict[str, Any]]:
    configs = await service.get_configs(provider_id)
    return [_config_payload(config) for config in configs]


@router.post("/configs", status_code=201)
async def create_config(payload: Dict, service: ConfigService = Depends(get_service)) -> Dict:
    config = await service.create_config(payload)
    return _config_payload(config)


@router.get("/configs/{config_id}")
async def read_config(config_id: str, service: ConfigService = Depends(get_service)) -> Dict:
    return _config_payload(await service.get_config(config_id))


@router.patch("/configs/{config_id}")
async def update_config(
    config_id: str, payload: Dict, service: ConfigService = Depends(get_service)
) -> Dict:
    config = await service.update_config(config_id, payload)
    return _config_payload(config)


@router.delete("/configs/{config_id}", status_code=204, response_class=Response)
async def delete_config(config_id: str, service: ConfigService = Depends(get_service)) -> Response:
    await service.delete_config(config_id)
    return Response(status_code=204)


@router.post("/configs/{config_id}/default", status_code=204, response_class=Response)
async def set_default_config(config_id: str, service: ConfigService = Depends(get_service)) -> Response:
    await service.set_default_config(config_id)
    return Response(status_code=204)


@router.get("/providers/{provider_id}/default")
async def read_default_config(
    provider_id: str, service: ConfigService = Depends(get_service)
) -> Optional[Dict]:
    config = await service.get_default_config(provider_id)
    return _config_payload(config) if config is not None else None


@router.get("/proxy/global")
async def read_global_proxy(service: ConfigService = Depends(get_service)) -> Dict:
    proxy = await service.get_global_proxy()
    return proxy.model_dump(mode="json", context={"reveal_secrets": True})


@router.put("/proxy/global", status_code=204, response_class=Response)
async def write_global_proxy(payload: Dict, service: ConfigService = Depends(get_service)) -> Response:
    await service.set_global_proxy(payload)
    return Response(status_code=204)


@router.get("/configs/{config_id}/proxy")
async def read_config_proxy(config_id: str, service: ConfigService = Depends(get_service)) -> Dict:
    effective = await service.get_config_proxy(config_id)
    return _effective_payload(effective)


@router.put("/configs/{config_id}/proxy", status_code=204, response_class=Response)
async def write_config_proxy(
    config_id: str, payload: Dict, service: ConfigService = Depends(get_service)
) -> Response:
    await service.set_config_proxy(config_id, payload)
    return Response(status_code=204)


@router.delete("/configs/{config_id}/proxy", status_code=204, response_class=Response)
async def clear_config_proxy(config_id: str, service: ConfigService = Depends(get_service)) -> Response:
    await service.set_config_proxy(config_id, None)
    return Response(status_code=204)


def create_app(service: Optional[ConfigService] = None) -> FastAPI:
    """Build the HTTP app around ``service``; a JSON-file backed one by default."""
    if service is None:
        service = ConfigService(JsonEntityStore(default_store_path()))

    app = FastAPI(title="llmcfg service", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"]
    )
    app.state.service = service
    app.state.startup_lock = asyncio.Lock()
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(router)

    @app.on_event("startup")
    async def on_startup() -> None:  # pragma: no cover - executed by ASGI runtime
        await ensure_startup(app)
        logger.info("config service started with store at %s", getattr(service.store, "path", "<memory>"))

    return app


app = create_app()
