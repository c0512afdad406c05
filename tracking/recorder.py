import json
from typing import Callable, List, Optional, Sequence

from loguru import logger

from tools.analytics import AnalyticsEvent, AnalyticsSink
from tracking.capabilities import (
    Clock,
    EventSource,
    PersistentStore,
    Scheduler,
    TimerHandle,
    Unsubscribe,
    guarded,
)
from tracking.dom import DomEvent, describe_element, matches_any
from tracking.export import build_summary
from tracking.models import (
    RecordingConfig,
    SessionEvent,
    SessionHistoryRecord,
    SessionRecording,
    SessionSummary,
    StorageKeys,
)
from tracking.probes import Page, max_scroll_extent, session_metadata, viewport_info

NAMED_KEYS = {"Enter", "Tab", "Escape", "Backspace", "Delete", "ArrowUp", "ArrowDown", "ArrowLeft", "ArrowRight"}
DEFAULT_HISTORY_LIMIT = 10


def load_session_history(store: PersistentStore, key: str) -> List[dict]:
    try:
        raw = store.get(key)
        history = json.loads(raw) if raw else []
    except (ValueError, TypeError) as e:
        logger.error(f"Session history under {key} is unreadable, starting over: {e}")
        return []
    return history if isinstance(history, list) else []


def append_session_history(
    store: PersistentStore,
    key: str,
    record: SessionHistoryRecord,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> List[dict]:
    """Append to the bounded history, keeping only the most recent ``limit`` entries."""
    history = load_session_history(store, key)
    history.append(record.to_dict())
    recent = history[-limit:]
    store.set(key, json.dumps(recent))
    return recent


class SessionRecorder:
    """Ordered event log for one sampled page load.

    The recording ends on ``stop()``, on page unload, or once it has run for
    the configured maximum duration, whichever comes first.
    """

    def __init__(
        self,
        session_id: str,
        events: EventSource,
        page: Page,
        clock: Clock,
        scheduler: Scheduler,
        store: PersistentStore,
        analytics: AnalyticsSink,
        config: Optional[RecordingConfig] = None,
        user_id: Optional[str] = None,
        heatmap_samples: Optional[Callable[[str], Sequence]] = None,
        keys: Optional[StorageKeys] = None,
    ):
        self.session_id = session_id
        self.config = config or RecordingConfig()
        self.user_id = user_id
        self.keys = keys or StorageKeys.with_prefix()
        self._events = events
        self._page = page
        self._clock = clock
        self._scheduler = scheduler
        self._store = store
        self._analytics = analytics
        self._heatmap_samples = heatmap_samples or (lambda session_id: [])

        self._recording: Optional[SessionRecording] = None
        self._summary: Optional[SessionSummary] = None
        self._unsubscribers: List[Unsubscribe] = []
        self._duration_timer: Optional[TimerHandle] = None

    @property
    def is_recording(self) -> bool:
        return self._recording is not None and not self._recording.sealed

    @property
    def recording(self) -> Optional[SessionRecording]:
        return self._recording.snapshot() if self._recording else None

    @property
    def summary(self) -> Optional[SessionSummary]:
        return self._summary

    def start(self) -> SessionRecording:
        if self._recording is not None:
            return self._recording

        self._recording = SessionRecording(
            session_id=self.session_id,
            anonymous_user_id=self.user_id,
            started_at=self._clock.now_ms(),
            page_url=self._page.url,
            user_agent=self._page.user_agent,
            viewport=viewport_info(self._page),
            metadata=session_metadata(self._page, self._store, self.user_id),
        )
        self._attach_listeners()
        self._duration_timer = self._scheduler.call_later(self.config.max_duration_ms, self._expire)

        logger.info(f"Session recording started for {self.session_id}")
        return self._recording

    def stop(self) -> Optional[SessionRecording]:
        """Seal the session and persist its summary. Later calls are no-ops."""
        recording = self._recording
        if recording is None or recording.sealed:
            return recording

        recording.ended_at = self._clock.now_ms()
        self._detach()

        try:
            self._summary = self._persist(recording)
        except Exception as e:
            logger.error(f"Failed to save session data for {self.session_id}: {e}")

        logger.info(
            f"Session recording ended for {self.session_id}: "
            f"duration={recording.duration_ms()}ms events={len(recording.events)}"
        )
        return recording

    def record(self, event: SessionEvent) -> None:
        recording = self._recording
        if recording is None or recording.sealed:
            return
        recording.events.append(event)

        if event.captured_at - recording.started_at > self.config.max_duration_ms:
            logger.info(f"Session {self.session_id} exceeded {self.config.max_duration_minutes} minutes")
            self.stop()

    def _expire(self) -> None:
        self._duration_timer = None
        if self.is_recording:
            self.stop()

    def _detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._duration_timer is not None:
            self._duration_timer.cancel()
            self._duration_timer = None

    def _persist(self, recording: SessionRecording) -> SessionSummary:
        summary = build_summary(
            self.session_id,
            list(self._heatmap_samples(self.session_id)),
            recording,
            self._page,
            recording.ended_at,
        )
        duration = summary.duration
        heatmap_count = summary.heatmap_count

        append_session_history(
            self._store,
            self.keys.sessions,
            SessionHistoryRecord(
                session_id=self.session_id,
                timestamp=recording.ended_at,
                event_count=summary.event_count,
                heatmap_count=heatmap_count,
                duration=duration,
            ),
            limit=self.config.history_limit,
        )

        self._analytics.track(AnalyticsEvent(
            name="session_recorded",
            parameters={
                "session_id": self.session_id,
                "duration_minutes": round(duration / 60000),
                "event_count": summary.event_count,
                "heatmap_count": heatmap_count,
                "user_id": self.user_id,
            },
            value=summary.event_count,
        ))
        return summary

    def _listen(self, event_type: str, handler: Callable[[DomEvent], None]) -> None:
        listener = guarded(f"recording:{event_type}", handler)
        self._unsubscribers.append(self._events.add_listener(event_type, listener))

    def _attach_listeners(self) -> None:
        config = self.config
        if config.capture_clicks:
            self._listen("click", self._on_click)
        if config.capture_inputs:
            self._listen("input", self._on_input)
        if config.capture_keystrokes:
            self._listen("keydown", self._on_keydown)
        self._listen("submit", self._on_submit)
        if config.capture_scrolls:
            self._listen("scroll", self._on_scroll)
        self._listen("resize", self._on_resize)
        self._listen("focus", self._on_window_focus)
        self._listen("blur", self._on_window_focus)
        self._listen("popstate", self._on_navigation)
        self._listen("hashchange", self._on_navigation)
        self._listen("beforeunload", lambda event: self.stop())

    def _event(self, kind: str, payload: dict, target=None) -> SessionEvent:
        return SessionEvent(
            kind=kind,
            captured_at=self._clock.now_ms(),
            payload=payload,
            target=describe_element(target) if target is not None else None,
        )

    def _on_click(self, event: DomEvent) -> None:
        self.record(self._event(
            "click",
            {"x": event.client_x, "y": event.client_y, "button": event.button},
            event.target,
        ))

    def _on_input(self, event: DomEvent) -> None:
        target = event.target
        if target is None or matches_any(target, self.config.exclude_elements):
            return
        # Only the length of the value is kept, never its content
        self.record(self._event(
            "input",
            {
                "input_type": target.input_type,
                "value_length": len(target.value or ""),
                "placeholder": target.get_attribute("placeholder"),
            },
            target,
        ))

    def _on_keydown(self, event: DomEvent) -> None:
        target = event.target
        if target is not None and matches_any(target, self.config.exclude_elements):
            return
        key = event.key or ""
        self.record(self._event(
            "keypress",
            {"key": key if key in NAMED_KEYS else "*"},
            target,
        ))

    def _on_submit(self, event: DomEvent) -> None:
        form = event.target
        if form is None:
            return
        self.record(self._event(
            "form",
            {
                "form_id": form.id or None,
                "action": form.get_attribute("action") or self._page.url,
                "method": (form.get_attribute("method") or "get").lower(),
                "field_count": len(form.form_fields),
            },
            form,
        ))

    def _on_scroll(self, event: DomEvent) -> None:
        self.record(self._event(
            "scroll",
            {
                "scroll_x": self._page.scroll_x,
                "scroll_y": self._page.scroll_y,
                "max_scroll_y": max_scroll_extent(self._page),
            },
        ))

    def _on_resize(self, event: DomEvent) -> None:
        self.record(self._event("resize", {"viewport": viewport_info(self._page)}))

    def _on_window_focus(self, event: DomEvent) -> None:
        if event.target is not None:
            # Element focus changes are not recorded
            return
        self.record(self._event(event.type, {"window_focused": event.type == "focus"}))

    def _on_navigation(self, event: DomEvent) -> None:
        self.record(self._event("navigation", {"url": self._page.url, "trigger": event.type}))
