from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DeviceType = Literal["mobile", "tablet", "desktop"]
SourceType = Literal["direct", "organic", "social", "email", "referral", "paid"]
EventKind = Literal["pageView", "interaction", "trafficSource", "location"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Record(BaseModel):
    # wire format is camelCase, python side is snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Session(Record):
    session_id: str
    started_at: datetime = Field(default_factory=utcnow)
    entry_page: str = "/"
    referrer: str = ""
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    ended_at: Optional[datetime] = None


class PageView(Record):
    session_id: str
    page_path: str
    page_title: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    duration_seconds: int = 0
    scroll_depth_percent: int = 0
    exit_page: bool = False
    device_type: Optional[DeviceType] = None
    browser: Optional[str] = None
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None


class InteractionEvent(Record):
    model_config = ConfigDict(frozen=True)

    session_id: str
    event_type: Literal["click", "move", "scroll"]
    element_selector: str = ""
    element_text: str = Field("", max_length=100)
    x_position: int
    y_position: int
    viewport_width: Optional[int] = None
    viewport_height: Optional[int] = None
    timestamp: datetime = Field(default_factory=utcnow)
    page_path: str


class TrafficSource(Record):
    session_id: str
    source_type: SourceType
    source_name: str
    medium: str = "none"
    campaign: Optional[str] = None
    referrer_url: Optional[str] = None
    landing_page: str
    timestamp: datetime = Field(default_factory=utcnow)


class LocationSignal(Record):
    session_id: Optional[str] = None
    ip_address_hash: Optional[str] = None
    country_code: str = "unknown"
    country_name: str = "unknown"
    region: str = "unknown"
    city: str = "unknown"
    latitude: float = 0
    longitude: float = 0
    timezone: str = "unknown"
    isp: str = "unknown"
    organization: str = "unknown"
    is_vpn: bool = False
    is_mobile: bool = False
    timestamp: Optional[datetime] = None


class PageExit(Record):
    """Body of the unload beacon sent to /api/analytics/track."""

    session_id: str
    page_path: str
    duration_seconds: int
    scroll_depth_percent: int
    exit_page: bool = True


RECORD_TYPES = {
    "pageView": PageView,
    "interaction": InteractionEvent,
    "trafficSource": TrafficSource,
    "location": LocationSignal,
}


class EventEnvelope(BaseModel):
    type: EventKind
    data: Dict[str, Any]
    timestamp: float = Field(..., description="epoch milliseconds at enqueue time")

    def record(self) -> Record:
        """Validate ``data`` against the record shape for ``type``."""
        return RECORD_TYPES[self.type].model_validate(self.data)


class BatchPayload(BaseModel):
    events: List[Dict[str, Any]]


class HeatmapPoint(BaseModel):
    x: float
    y: float
    intensity: float = Field(1.0, gt=0)


class HeatmapResponse(BaseModel):
    page_path: str
    device_type: str = "all"
    points: List[HeatmapPoint] = []
    total_points: int = 0
    date_range: Dict[str, Optional[str]] = {}
