import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Dict, List, Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from .config import Settings, setup_logging
from .errors import ClientDisconnected, ClientInputError, ProxyError
from .models import ChatRequest, ChatResponse, GenerateRequest, MeshRequest
from .proxy import JobProxy
from .remote import RemoteJobService
from .variants import build_input, build_variants, mesh_locked_fields

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 2 * 1024 * 1024


def get_proxy(request: Request) -> JobProxy:
    return request.app.state.proxy


def _log_proxy_error(request: Request, exc: ProxyError) -> None:
    if exc.status_code < 500:
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    else:
        logger.error(
            "%s %s -> %d %s detail=%r",
            request.method, request.url.path, exc.status_code, exc.message, exc.detail,
        )


def _validation_detail(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


async def _watch_disconnect(request: Request) -> None:
    # the body is already read, the next message is the disconnect
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _run_for_client(request: Request, job: Awaitable[Any]) -> Any:
    """Run a proxy coroutine, abandoning it if the caller goes away first."""
    task = asyncio.ensure_future(job)
    watcher = asyncio.ensure_future(_watch_disconnect(request))
    try:
        done, _ = await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        watcher.cancel()
        raise

    if task in done:
        watcher.cancel()
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    watcher.result()
    raise ClientDisconnected("Client disconnected before the job finished")


def create_app(settings: Optional[Settings] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(application: FastAPI):
        if not settings.has_credential:
            logger.warning("REPLICATE_API_TOKEN not set, job routes will answer 500")

        client = httpx.AsyncClient(
            base_url=settings.remote_base_url,
            timeout=settings.request_timeout,
            transport=transport,
        )
        remote = RemoteJobService(client, settings.api_token, timeout=settings.request_timeout)
        application.state.proxy = JobProxy(
            remote,
            settings.api_token,
            poll_retries=settings.poll_retries,
            retry_backoff=settings.retry_backoff,
        )
        logger.info("DreamyBot API ready (remote=%s)", settings.remote_base_url)
        try:
            yield
        finally:
            await client.aclose()

    app = FastAPI(title="DreamyBot API", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.variants = build_variants(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def limit_body_size(request: Request, call_next):
        length = request.headers.get("content-length", "")
        try:
            too_large = int(length) > MAX_BODY_BYTES
        except ValueError:
            too_large = False
        if too_large:
            return Response(status_code=413, content="request body too large")
        return await call_next(request)

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        _log_proxy_error(request, exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_body())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = ClientInputError("Invalid request body", _validation_detail(exc))
        _log_proxy_error(request, error)
        if request.url.path == "/chat":
            body = ChatResponse(ok=False, error=error.message, detail=error.detail)
            return JSONResponse(status_code=error.status_code, content=body.model_dump(exclude_none=True))
        return JSONResponse(status_code=error.status_code, content=error.to_body())

    @app.get("/health", response_class=PlainTextResponse)
    def health():
        return "ok"

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "DreamyBot API ready"

    @app.post("/generate")
    async def generate(
        request: Request,
        payload: Optional[GenerateRequest] = None,
        proxy: JobProxy = Depends(get_proxy),
    ):
        payload = payload or GenerateRequest()
        variant = app.state.variants["generate"].with_model(payload.model)
        result = await _run_for_client(request, proxy.proxy_job(variant, payload.input))
        if payload.inline:
            inline = await _run_for_client(request, proxy.inline_output(result))
            return inline.model_dump()
        return JSONResponse(content=result)

    @app.post("/mesh")
    async def mesh(
        request: Request,
        payload: Optional[MeshRequest] = None,
        proxy: JobProxy = Depends(get_proxy),
    ):
        if payload is None or not payload.imageUrl:
            raise ClientInputError("Provide imageUrl")
        variant = app.state.variants["mesh"]
        job_input = build_input(variant, payload.extra_params(), mesh_locked_fields(payload.imageUrl))
        result = await _run_for_client(request, proxy.proxy_job(variant, job_input))
        return JSONResponse(content=result)

    @app.post("/chat")
    async def chat(
        request: Request,
        payload: Optional[ChatRequest] = None,
        proxy: JobProxy = Depends(get_proxy),
    ):
        try:
            if payload is None or not payload.messages:
                raise ClientInputError("Missing 'messages' in request body")
            variant = app.state.variants["chat"]
            result = await _run_for_client(request, proxy.run_sync(variant, {"messages": payload.messages}))
        except ProxyError as exc:
            _log_proxy_error(request, exc)
            body = ChatResponse(ok=False, error=exc.message, detail=exc.detail)
            return JSONResponse(status_code=exc.status_code, content=body.model_dump(exclude_none=True))
        return {"ok": True, "output": result.get("output")}

    return app


def run() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        access_log=settings.access_log,
    )


if __name__ == "__main__":
    run()
