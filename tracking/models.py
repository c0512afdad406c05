import os
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Tuple

InteractionKind = Literal["click", "move", "scroll", "hover"]
SessionEventKind = Literal[
    "click", "keypress", "scroll", "resize", "focus", "blur", "input", "form", "navigation"
]


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value in (None, ""):
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ViewportInfo:
    width: int
    height: int
    scroll_x: float = 0
    scroll_y: float = 0
    device_pixel_ratio: float = 1.0


@dataclass(frozen=True)
class ElementInfo:
    tag_name: str
    selector: str
    position: Dict[str, float]
    id: Optional[str] = None
    class_name: Optional[str] = None
    text_content: Optional[str] = None


@dataclass(frozen=True)
class InteractionSample:
    """One heatmap point."""
    x: float
    y: float
    kind: InteractionKind
    captured_at: int
    viewport: ViewportInfo
    session_id: str
    target_selector: Optional[str] = None
    target_excerpt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    captured_at: int
    payload: Dict[str, Any] = field(default_factory=dict)
    target: Optional[ElementInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionMetadata:
    device: str
    browser: str
    os: str
    referrer: str = ""
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None
    lead_score: Optional[int] = None
    user_type: Optional[str] = None


@dataclass
class SessionRecording:
    """A recorded browsing session; sealed once ``ended_at`` is set."""
    session_id: str
    started_at: int
    page_url: str
    user_agent: str
    viewport: ViewportInfo
    metadata: SessionMetadata
    anonymous_user_id: Optional[str] = None
    ended_at: Optional[int] = None
    events: List[SessionEvent] = field(default_factory=list)

    @property
    def sealed(self) -> bool:
        return self.ended_at is not None

    def duration_ms(self, now_ms: Optional[int] = None) -> int:
        end = self.ended_at if self.ended_at is not None else now_ms
        if end is None:
            return 0
        return max(0, end - self.started_at)

    def snapshot(self) -> "SessionRecording":
        return replace(self, events=list(self.events))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionHistoryRecord:
    """Lightweight per-session diagnostics entry kept in the bounded history."""
    session_id: str
    timestamp: int
    event_count: int
    heatmap_count: int
    duration: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SessionSummary:
    session_id: str
    duration: int
    event_count: int
    heatmap_count: int
    is_recording: bool = False
    is_heatmapping: bool = False
    top_elements: Tuple[Dict[str, Any], ...] = ()
    scroll_depth: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["top_elements"] = list(self.top_elements)
        return data


@dataclass(frozen=True)
class HeatmapConfig:
    enabled: bool = True
    sample_rate: float = 0.3
    track_clicks: bool = True
    track_movement: bool = True
    track_scrolling: bool = True
    track_hovers: bool = True
    max_events: int = 5000
    debounce_ms: int = 100
    hover_dwell_ms: int = 1000
    cleanup_interval_ms: int = 5 * 60 * 1000
    retention_ms: int = 60 * 60 * 1000

    @classmethod
    def from_env(cls) -> "HeatmapConfig":
        defaults = cls()
        return cls(
            enabled=_env_bool("HEATMAP_ENABLED", defaults.enabled),
            sample_rate=_env_float("HEATMAP_SAMPLE_RATE", defaults.sample_rate),
            max_events=_env_int("HEATMAP_MAX_EVENTS", defaults.max_events),
            debounce_ms=_env_int("HEATMAP_DEBOUNCE_MS", defaults.debounce_ms),
        )


DEFAULT_EXCLUDED_ELEMENTS = ('input[type="password"]', ".sensitive-data", ".private-content")


@dataclass(frozen=True)
class RecordingConfig:
    enabled: bool = True
    sample_rate: float = 0.1
    max_duration_minutes: float = 30
    capture_inputs: bool = False
    capture_clicks: bool = True
    capture_scrolls: bool = True
    capture_keystrokes: bool = False
    exclude_elements: Tuple[str, ...] = DEFAULT_EXCLUDED_ELEMENTS
    history_limit: int = 10

    @property
    def max_duration_ms(self) -> int:
        return int(self.max_duration_minutes * 60 * 1000)

    @classmethod
    def from_env(cls) -> "RecordingConfig":
        defaults = cls()
        return cls(
            enabled=_env_bool("RECORDING_ENABLED", defaults.enabled),
            sample_rate=_env_float("RECORDING_SAMPLE_RATE", defaults.sample_rate),
            max_duration_minutes=_env_float("RECORDING_MAX_DURATION_MINUTES", defaults.max_duration_minutes),
            capture_inputs=_env_bool("RECORDING_CAPTURE_INPUTS", defaults.capture_inputs),
            capture_keystrokes=_env_bool("RECORDING_CAPTURE_KEYSTROKES", defaults.capture_keystrokes),
        )


@dataclass(frozen=True)
class StorageKeys:
    """Keys the capture layer reads and writes in the persistent store."""
    consent: str
    user_id: str
    sessions: str

    @classmethod
    def with_prefix(cls, prefix: Optional[str] = None) -> "StorageKeys":
        prefix = prefix or os.getenv("TRACKING_STORAGE_PREFIX", "funnel")
        return cls(
            consent=f"{prefix}-cookie-preferences",
            user_id=f"{prefix}_user_id",
            sessions=f"{prefix}_sessions",
        )

    @staticmethod
    def lead_score(user_id: str) -> str:
        return f"lead_score_{user_id}"

    @staticmethod
    def lead_profile(user_id: str) -> str:
        return f"lead_profile_{user_id}"
