from __future__ import annotations
import os
import uuid
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

# ---------- Collector ----------
REDIS_HOST = os.getenv("REPLAYUX_REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REPLAYUX_REDIS_PORT", "6379"))
REDIS_DB = int(os.getenv("REPLAYUX_REDIS_DB", "0"))
HOST = os.getenv("REPLAYUX_HOST", "127.0.0.1")
PORT = int(os.getenv("REPLAYUX_PORT", "8123"))
# empty key disables the x-api-key check (local dev)
API_KEY = os.getenv("REPLAYUX_API_KEY", "")
CORS_ORIGINS: List[str] = [o for o in os.getenv("REPLAYUX_CORS_ORIGINS", "*").split(",") if o]

API_KEY_HEADER = "x-api-key"
INGEST_PATH = "/ingest"


def _uuid() -> str:
    return str(uuid.uuid4())


class CaptureOptions(BaseModel):
    """Per-session capture settings. Times are milliseconds."""
    session_id: str = Field(default_factory=_uuid)
    user_id: Optional[str] = Field(None, validate_default=True)
    endpoint_url: str = "http://localhost:8123"
    api_key: str = ""
    sampling_rate: float = Field(0.1, ge=0.0, le=1.0)
    max_frames: int = Field(500, ge=0)
    throttle_ms: int = Field(200, ge=0)
    image_quality: float = Field(0.1, gt=0.0, le=1.0)
    image_width: Optional[int] = None
    image_height: Optional[int] = None
    device: str = "unknown"
    app_version: str = "0.0.0"
    flush_interval_ms: int = Field(10_000, gt=0)
    periodic_capture_ms: int = Field(1_000, ge=0)   # 0 disables background capture
    idle_timeout_ms: int = Field(10_000, ge=0)      # 0 disables idle detection

    @field_validator("user_id")
    @classmethod
    def _anonymous(cls, v: Optional[str]) -> str:
        return v or f"anon-{_uuid()}"

    @property
    def ingest_url(self) -> str:
        return self.endpoint_url.rstrip("/") + INGEST_PATH
