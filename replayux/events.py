from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict, Literal

NavigationTrigger = Literal["push", "back-button", "swipe-back", "tab", "pop", "replace", "unknown"]
TapSource = Literal["auto", "explicit"]


class _Wire(BaseModel):
    # camelCase on the wire, snake_case in python
    model_config = ConfigDict(populate_by_name=True)

    def wire(self) -> Dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class Frame(_Wire):
    timestamp: int = Field(..., description="capture time, epoch ms")
    image: str = Field(..., description="base64 encoded jpeg")


class TapEvent(_Wire):
    x: float
    y: float
    timestamp: int
    normalized_x: Optional[float] = Field(None, alias="normalizedX")
    normalized_y: Optional[float] = Field(None, alias="normalizedY")
    screen: Optional[str] = None
    label: Optional[str] = None
    category: Optional[str] = None
    source: Optional[TapSource] = None

    @property
    def is_normalized(self) -> bool:
        return self.normalized_x is not None and self.normalized_y is not None


class ScrollEvent(_Wire):
    offset_y: float = Field(..., alias="offsetY")
    timestamp: int


class NavigationEvent(_Wire):
    timestamp: int
    from_screen: Optional[str] = Field(None, alias="from")
    to_screen: Optional[str] = Field(None, alias="to")
    trigger: NavigationTrigger = "unknown"


class DeviceInfo(_Wire):
    device_width: float = Field(..., alias="deviceWidth", gt=0)
    device_height: float = Field(..., alias="deviceHeight", gt=0)


class UploadBatch(_Wire):
    """One flush worth of buffered data, tagged with session identity."""
    session_id: str = Field(..., alias="sessionId", min_length=1)
    user_id: Optional[str] = Field(None, alias="userId")
    device: Optional[str] = None
    app_version: Optional[str] = Field(None, alias="appVersion")
    device_width: Optional[float] = Field(None, alias="deviceWidth")
    device_height: Optional[float] = Field(None, alias="deviceHeight")
    frames: List[Frame] = Field(default_factory=list)
    taps: List[TapEvent] = Field(default_factory=list)
    scrolls: List[ScrollEvent] = Field(default_factory=list)
    navigations: List[NavigationEvent] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.frames or self.taps or self.scrolls or self.navigations)


class SessionDoc(UploadBatch):
    """Stored session: every batch for one session id merged together."""

    def merge(self, batch: UploadBatch) -> "SessionDoc":
        # arrays append, device dims take the latest non-empty value
        return self.model_copy(update={
            "user_id": batch.user_id or self.user_id,
            "device": batch.device or self.device,
            "app_version": batch.app_version or self.app_version,
            "device_width": batch.device_width or self.device_width,
            "device_height": batch.device_height or self.device_height,
            "frames": [*self.frames, *batch.frames],
            "taps": [*self.taps, *batch.taps],
            "scrolls": [*self.scrolls, *batch.scrolls],
            "navigations": [*self.navigations, *batch.navigations],
        })

    def summary(self) -> "SessionSummary":
        return SessionSummary(
            id=self.session_id,
            device=self.device or "-",
            app_version=self.app_version or "-",
            user_id=self.user_id or "-",
            frame_count=len(self.frames),
            tap_count=len(self.taps),
            scroll_count=len(self.scrolls),
            navigation_count=len(self.navigations),
        )


class SessionSummary(_Wire):
    id: str
    device: str
    app_version: str = Field(..., alias="appVersion")
    user_id: str = Field(..., alias="userId")
    frame_count: int = Field(0, alias="frameCount")
    tap_count: int = Field(0, alias="tapCount")
    scroll_count: int = Field(0, alias="scrollCount")
    navigation_count: int = Field(0, alias="navigationCount")


class HeatmapPoint(_Wire):
    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)


class TrackingEvent(_Wire):
    """Signal emitted onto the tracking bus by tracked handlers and navigators."""
    type: Literal["press", "navigation"]
    timestamp: int
    source: Optional[TapSource] = None
    label: Optional[str] = None
    category: Optional[str] = None
    metadata: Optional[Dict] = None
    coordinates: Optional[Dict[str, float]] = None
    screen: Optional[str] = None
    from_screen: Optional[str] = Field(None, alias="fromScreen")
    navigation_trigger: Optional[NavigationTrigger] = Field(None, alias="navigationTrigger")
