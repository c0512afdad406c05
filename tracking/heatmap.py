import math
from typing import Callable, List, Optional

from loguru import logger

from tools.analytics import AnalyticsEvent, AnalyticsSink
from tracking.capabilities import (
    Clock,
    EventSource,
    Scheduler,
    TimerHandle,
    TrailingWindow,
    Unsubscribe,
    guarded,
)
from tracking.dom import DomEvent, element_selector, matches_any, text_excerpt
from tracking.models import HeatmapConfig, InteractionSample
from tracking.probes import Page, viewport_info

SIGNIFICANT_SELECTORS = (
    "button", "a", ".cta", ".btn", ".pricing", ".demo", ".contact",
    "[data-track]", ".track-click", 'input[type="submit"]', "form",
)
UNTRACKABLE_SELECTORS = ("script", "style", "meta", "head", "title")

EVICTION_RATIO = 0.9
CLICK_EXCERPT_LENGTH = 100
HOVER_EXCERPT_LENGTH = 50


class HeatmapCollector:
    """Buffers click, movement, scroll and hover samples for one page load."""

    def __init__(
        self,
        session_id: str,
        events: EventSource,
        page: Page,
        clock: Clock,
        scheduler: Scheduler,
        analytics: AnalyticsSink,
        config: Optional[HeatmapConfig] = None,
    ):
        self.session_id = session_id
        self.config = config or HeatmapConfig()
        self._events = events
        self._page = page
        self._clock = clock
        self._scheduler = scheduler
        self._analytics = analytics

        self._samples: List[InteractionSample] = []
        self._active = False
        self._unsubscribers: List[Unsubscribe] = []
        self._timers: List[TimerHandle] = []
        self._hover_timer: Optional[TimerHandle] = None
        self._move_window: Optional[TrailingWindow] = None
        self._scroll_window: Optional[TrailingWindow] = None

    @property
    def active(self) -> bool:
        return self._active

    @property
    def samples(self) -> List[InteractionSample]:
        return list(self._samples)

    def samples_for(self, session_id: str) -> List[InteractionSample]:
        return [sample for sample in self._samples if sample.session_id == session_id]

    def __len__(self) -> int:
        return len(self._samples)

    def start(self) -> None:
        if self._active:
            return
        self._active = True
        config = self.config

        if config.track_clicks:
            self._listen("click", self._on_click)
        if config.track_movement:
            self._move_window = TrailingWindow(self._scheduler, config.debounce_ms, self._emit_move)
            self._listen("mousemove", self._move_window.push)
        if config.track_scrolling:
            self._scroll_window = TrailingWindow(self._scheduler, config.debounce_ms, self._emit_scroll)
            self._listen("scroll", self._scroll_window.push)
        if config.track_hovers:
            self._listen("mouseenter", self._on_hover_enter, capture=True)
            self._listen("mouseleave", self._on_hover_leave, capture=True)

        self._timers.append(self._scheduler.call_every(config.cleanup_interval_ms, self.prune))
        logger.info(f"Heatmap tracking started for {self.session_id}")

    def stop(self) -> None:
        """Detach listeners and cancel timers; safe to call repeatedly."""
        if not self._active:
            return
        self._active = False

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

        for timer in self._timers:
            timer.cancel()
        self._timers.clear()
        self._cancel_hover()
        for window in (self._move_window, self._scroll_window):
            if window is not None:
                window.cancel()

        logger.info(f"Heatmap tracking stopped for {self.session_id} ({len(self._samples)} samples)")

    def record(self, sample: InteractionSample) -> None:
        """Append a sample, evicting the oldest in bulk once over the cap."""
        self._samples.append(sample)
        limit = self.config.max_events
        if len(self._samples) > limit:
            keep = max(1, math.floor(limit * EVICTION_RATIO))
            self._samples = self._samples[-keep:]
            logger.debug(f"Heatmap buffer trimmed to {keep} samples")

    def prune(self, now_ms: Optional[int] = None) -> int:
        """Drop samples older than the retention window; returns how many went."""
        now_ms = self._clock.now_ms() if now_ms is None else now_ms
        cutoff = now_ms - self.config.retention_ms
        before = len(self._samples)
        self._samples = [sample for sample in self._samples if sample.captured_at > cutoff]
        removed = before - len(self._samples)
        if removed:
            logger.debug(f"Pruned {removed} heatmap samples older than {self.config.retention_ms}ms")
        return removed

    def _listen(self, event_type: str, handler: Callable[[DomEvent], None], capture: bool = False) -> None:
        listener = guarded(f"heatmap:{event_type}", handler)
        self._unsubscribers.append(self._events.add_listener(event_type, listener, capture))

    def _sample(self, kind: str, x: float, y: float, target=None, excerpt_length: int = CLICK_EXCERPT_LENGTH) -> InteractionSample:
        return InteractionSample(
            x=x,
            y=y,
            kind=kind,
            captured_at=self._clock.now_ms(),
            viewport=viewport_info(self._page),
            session_id=self.session_id,
            target_selector=element_selector(target) if target is not None else None,
            target_excerpt=text_excerpt(target, excerpt_length) if target is not None else None,
        )

    def _on_click(self, event: DomEvent) -> None:
        if not self._active:
            return
        sample = self._sample("click", event.client_x, event.client_y, event.target)
        self.record(sample)

        if matches_any(event.target, SIGNIFICANT_SELECTORS):
            self._analytics.track(AnalyticsEvent(
                name="heatmap_significant_click",
                parameters={
                    "element_selector": sample.target_selector,
                    "element_text": sample.target_excerpt,
                    "x": sample.x,
                    "y": sample.y,
                    "session_id": self.session_id,
                },
            ))

    def _emit_move(self, event: DomEvent) -> None:
        if self._active:
            self.record(self._sample("move", event.client_x, event.client_y))

    def _emit_scroll(self, event: DomEvent) -> None:
        if self._active:
            self.record(self._sample("scroll", self._page.inner_width / 2, self._page.scroll_y))

    def _on_hover_enter(self, event: DomEvent) -> None:
        if not self._active or event.target is None:
            return
        if matches_any(event.target, UNTRACKABLE_SELECTORS):
            return

        self._cancel_hover()

        def dwell() -> None:
            self._hover_timer = None
            if self._active:
                self.record(self._sample(
                    "hover", event.client_x, event.client_y, event.target, HOVER_EXCERPT_LENGTH,
                ))

        self._hover_timer = self._scheduler.call_later(self.config.hover_dwell_ms, dwell)

    def _on_hover_leave(self, event: DomEvent) -> None:
        self._cancel_hover()

    def _cancel_hover(self) -> None:
        if self._hover_timer is not None:
            self._hover_timer.cancel()
            self._hover_timer = None
