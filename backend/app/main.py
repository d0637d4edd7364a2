import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .connections import ConnectionTracker
from .db import build_quiz_store, settings
from .events import EventStore, SocketHub
from .game import GameController
from .registry import SessionRegistry
from .schemas import DisconnectIn, PublicSessionOut, ResultsOut
from .timers import TimerScheduler

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

quiz_store = build_quiz_store(settings)
scheduler = TimerScheduler()
registry = SessionRegistry(quiz_store, scheduler)
event_store = EventStore(max_events=settings.EVENT_LOG_LIMIT)
hub = SocketHub(event_store)
tracker = ConnectionTracker(scheduler, settings.palette, grace_period=settings.HOST_GRACE_PERIOD_SEC)
controller = GameController(registry, hub, tracker, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Session engine starting with %d quiz(zes)", len(quiz_store.list()))
    try:
        yield
    finally:
        await registry.shutdown()
        logger.info("Session engine stopped")


app = FastAPI(title="Quiz Session Engine", lifespan=lifespan)

origins = settings.cors_origins
origin_regex = settings.CORS_ORIGIN_REGEX or None

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_origin_regex=origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def require_admin(x_admin_key: Optional[str] = Header(default=None)):
    if x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=401, detail="Invalid admin key")


@app.get("/api/health")
async def health():
    return {"ok": True, "sessions": len(registry)}


@app.get("/api/session/{code}", response_model=PublicSessionOut)
async def get_session(code: str):
    s = registry.get_by_code(code)
    if not s:
        raise HTTPException(404, "Session not found")
    return controller.describe(s)


@app.get("/api/session/{code}/events")
async def list_events(code: str, after: int | None = None, limit: int = 200):
    s = registry.get_by_code(code)
    if not s:
        raise HTTPException(404, "Session not found")
    events = event_store.list(s.code, after=after, limit=limit)
    latest_seq = events[-1]["seq"] if events else after
    return {"events": events, "latest_seq": latest_seq}


@app.get("/api/session/{code}/results", response_model=ResultsOut)
async def get_results(code: str, _: None = Depends(require_admin)):
    s = registry.get_by_code(code)
    if not s or s.final_results is None:
        raise HTTPException(404, "Results not available")
    return ResultsOut(code=s.code, leaderboard=s.final_results.leaderboard, stats=s.final_results.stats)


async def _pump(ws: WebSocket, queue: asyncio.Queue):
    while True:
        message = await queue.get()
        await ws.send_json(message)


@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket):
    await ws.accept()
    connection_id = uuid.uuid4().hex
    queue = hub.register(connection_id)
    writer = asyncio.create_task(_pump(ws, queue))
    logger.info("[ws] connected %s", connection_id)

    hub.emit_to_connection(connection_id, "connected", {"connection_id": connection_id})
    try:
        while True:
            frame = await ws.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            await controller.handle_text(connection_id, frame.get("text"))
    except WebSocketDisconnect:
        logger.info("[ws] disconnected %s", connection_id)
    finally:
        await controller.handle(connection_id, DisconnectIn())
        hub.unregister(connection_id)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
