import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.datastructures import UploadFile
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import FileResponse, JSONResponse, Response
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket, WebSocketState

from botpanel.local.broadcast import Event, LogEvent
from botpanel.local.config import effective_settings as config
from botpanel.local.errors import BAD_ARCHIVE_FORMAT, MISSING_FIELD, BotPanelError, InvalidInputError
from botpanel.local.supervisor import BotSupervisor
from botpanel.local.supervisor.startup import setup_initial_environment
from botpanel.web.middleware import SecurityHeadersMiddleware

log = logging.getLogger("asgi_server")

LIFECYCLE_ACTIONS = {
    "start": "Bot started",
    "stop": "Bot stopping",
    "restart": "Bot restarting",
    "install": "Install process started.",
    "delete": "Bot deleted",
}


def _supervisor(request) -> BotSupervisor:
    return request.app.state.supervisor


#* --- Error rendering ---
async def handle_botpanel_error(request: Request, exc: BotPanelError) -> JSONResponse:
    """Renders an operation failure as a structured JSON error."""
    log.info(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


#* --- HTTP endpoints ---
async def index(request: Request) -> Response:
    return FileResponse(config.TEMPLATES_DIR / "index.html")


async def list_bots(request: Request) -> JSONResponse:
    units = await run_in_threadpool(_supervisor(request).list_units)
    return JSONResponse(units)


async def upload_bot(request: Request) -> JSONResponse:
    """Accepts a multipart upload with the archive in the 'botfile' field."""
    form = await request.form()
    upload = form.get("botfile")
    if not isinstance(upload, UploadFile) or not upload.filename:
        raise InvalidInputError(MISSING_FIELD, None, "No file uploaded.")

    max_bytes = int(config.MAX_UPLOAD_SIZE_MB) * 1024 * 1024
    too_large = InvalidInputError(BAD_ARCHIVE_FORMAT, None, f"Upload exceeds {config.MAX_UPLOAD_SIZE_MB} MB.")
    if upload.size is not None and upload.size > max_bytes:
        raise too_large

    archive_bytes = await upload.read()
    if len(archive_bytes) > max_bytes:
        raise too_large

    name = await run_in_threadpool(_supervisor(request).deploy, archive_bytes, upload.filename)
    return JSONResponse({"status": "success", "name": name, "message": f"{name} uploaded and extracted."}, status_code=201)


def lifecycle_endpoint(action: str):
    """Builds the endpoint forwarding `/api/<action>/<name>` to the supervisor operation."""
    message = LIFECYCLE_ACTIONS[action]

    async def endpoint(request: Request) -> JSONResponse:
        name = request.path_params["name"]
        await run_in_threadpool(getattr(_supervisor(request), action), name)
        return JSONResponse({"status": "success", "name": name, "message": message})

    endpoint.__name__ = f"{action}_bot"
    return endpoint


async def get_env(request: Request) -> JSONResponse:
    name = request.path_params["name"]
    env = await run_in_threadpool(_supervisor(request).get_env, name)
    return JSONResponse({"name": name, "env": env})


async def env_var(request: Request) -> JSONResponse:
    """PUT sets a variable from a JSON body {"value": "..."}; DELETE removes it."""
    name = request.path_params["name"]
    key = request.path_params["key"]
    supervisor = _supervisor(request)

    if request.method == "DELETE":
        await run_in_threadpool(supervisor.delete_env_var, name, key)
        return JSONResponse({"status": "success", "name": name, "message": f"'{key}' deleted."})

    try:
        payload = await request.json()
    except ValueError:
        raise InvalidInputError(MISSING_FIELD, name, "Invalid JSON body.")
    value = payload.get("value") if isinstance(payload, dict) else None
    if value is None:
        raise InvalidInputError(MISSING_FIELD, name, "'value' is required.")

    await run_in_threadpool(supervisor.set_env_var, name, key, value)
    return JSONResponse({"status": "success", "name": name, "message": f"'{key}' set."})


#* --- Observer stream ---
def serialize_event(event: Event) -> Dict[str, Any]:
    if isinstance(event, LogEvent):
        return {
            "type": "log",
            "unit": event.unit,
            "text": event.text,
            "isError": event.is_error,
            "line": f"[{event.unit}]: {event.text}",
        }
    return {"type": "status_update"}


def _offer(queue: "asyncio.Queue[Event]", event: Event) -> None:
    """Queues an event for one observer, dropping it if that observer is too far behind."""
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        log.debug("Observer queue full; dropping event.")


async def _pump_events(websocket: WebSocket, queue: "asyncio.Queue[Event]") -> None:
    while True:
        event = await queue.get()
        await websocket.send_json(serialize_event(event))


async def log_stream(websocket: WebSocket) -> None:
    """Streams bot output and status updates to one connected observer."""
    await websocket.accept()
    client = websocket.client.host if websocket.client else "unknown"
    log.info(f"Panel user connected from {client}")

    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=config.OBSERVER_QUEUE_SIZE)
    subscription = websocket.app.state.supervisor.broadcaster.subscribe(
        lambda event: loop.call_soon_threadsafe(_offer, queue, event)
    )
    await websocket.send_json({"type": "welcome", "text": config.WELCOME_MESSAGE})
    pump = asyncio.create_task(_pump_events(websocket, queue))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
    finally:
        subscription.close()
        pump.cancel()
        try:
            await pump
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug(f"Observer stream for {client} ended: {e}")
        if websocket.client_state != WebSocketState.DISCONNECTED:
            await websocket.close()
        log.info(f"Panel user from {client} disconnected.")


#* --- Application Instance Creation ---
def create_app(supervisor: Optional[BotSupervisor] = None) -> Starlette:
    """
    Builds the ASGI application around a supervisor.

    :param supervisor: The supervisor to expose. Built from settings when omitted.
    """
    supervisor = supervisor or BotSupervisor.from_settings()

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await run_in_threadpool(setup_initial_environment, supervisor)
        log.info("Bot panel ready.")
        yield
        log.info("Bot panel shutting down. Stopping all bots...")
        await run_in_threadpool(supervisor.shutdown, config.GRACEFUL_SHUTDOWN_TIMEOUT)

    routes = [
        Route("/", endpoint=index, methods=["GET"]),
        Route("/api/bots", endpoint=list_bots, methods=["GET"]),
        Route("/api/upload", endpoint=upload_bot, methods=["POST"]),
        Route("/api/env/{name}", endpoint=get_env, methods=["GET"]),
        Route("/api/env/{name}/{key}", endpoint=env_var, methods=["PUT", "DELETE"]),
        WebSocketRoute("/ws", endpoint=log_stream),
    ]
    routes += [
        Route(f"/api/{action}/{{name}}", endpoint=lifecycle_endpoint(action), methods=["GET", "POST"])
        for action in LIFECYCLE_ACTIONS
    ]

    app = Starlette(
        debug=False,
        routes=routes,
        middleware=[Middleware(SecurityHeadersMiddleware)],
        exception_handlers={BotPanelError: handle_botpanel_error},
        lifespan=lifespan,
    )
    app.state.supervisor = supervisor
    return app
