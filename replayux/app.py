from fastapi import FastAPI, Body, Depends, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import logging
import redis

from . import config
from .events import UploadBatch
from .heatmap import aggregate_heatmap_points, available_screens, available_versions
from .store import SessionStore, connect

log = logging.getLogger(__name__)

app = FastAPI(title="replayux collector", version="0.1.0")

# the capture SDK and the replay UI post from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Connect to Redis once at startup
r = connect()


def get_store() -> SessionStore:
    return SessionStore(r)


def _authorized(api_key: Optional[str]) -> bool:
    return not config.API_KEY or api_key == config.API_KEY


@app.get("/health")
def health(store: SessionStore = Depends(get_store)):
    redis_ok = False
    try:
        store.r.ping()
        redis_ok = True
    except redis.RedisError as e:
        log.warning("redis ping failed: %s", e)
    return {"ok": True, "service": "replayux-collector", "redis": redis_ok}


@app.post(config.INGEST_PATH)
def ingest(
    batch: UploadBatch = Body(...),
    x_api_key: Optional[str] = Header(None),
    store: SessionStore = Depends(get_store),
):
    """
    Accept one capture batch and merge it into the stored session.
    Frames/taps/scrolls/navigations are appended; device size keeps the latest value.
    """
    if not _authorized(x_api_key):
        return JSONResponse(status_code=401, content={"error": "invalid api key"})
    try:
        doc = store.ingest(batch)
    except redis.RedisError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    return {"ok": True, "sessionId": doc.session_id, "frames": len(doc.frames)}


@app.get("/sessions")
def list_sessions(store: SessionStore = Depends(get_store)):
    try:
        return [s.wire() for s in store.list_sessions()]
    except redis.RedisError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})


@app.get("/sessions/{session_id}")
def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    try:
        doc = store.get(session_id)
    except redis.RedisError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    if doc is None:
        return JSONResponse(status_code=404, content={"error": "Not found"})
    return doc.wire()


@app.get("/heatmap")
def heatmap(
    screen: str = Query(..., description="screen / route name the taps were recorded on"),
    app_version: str = Query(..., alias="appVersion"),
    width: Optional[float] = Query(None, description="normalization width for taps without normalized coords"),
    height: Optional[float] = Query(None, description="normalization height"),
    store: SessionStore = Depends(get_store),
):
    try:
        sessions = store.all()
    except redis.RedisError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    points = aggregate_heatmap_points(sessions, screen, app_version, width, height)
    return {
        "sessions": len(sessions),
        "points": [p.wire() for p in points],
    }


@app.get("/heatmap/options")
def heatmap_options(store: SessionStore = Depends(get_store)):
    try:
        sessions = store.all()
    except redis.RedisError as e:
        return JSONResponse(status_code=503, content={"error": str(e)})
    return {"screens": available_screens(sessions), "versions": available_versions(sessions)}


def main():
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    main()
