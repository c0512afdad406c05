import asyncio
import json
import random
import uuid
from typing import Any, Dict, Optional

from loguru import logger

from tools.analytics import AnalyticsSink
from tracking.capabilities import (
    AsyncioScheduler,
    Clock,
    EventSource,
    PersistentStore,
    Scheduler,
    SystemClock,
)
from tracking.consent import ConsentGate, Cohort, SamplingGate
from tracking.export import build_summary, visualization_points
from tracking.heatmap import HeatmapCollector
from tracking.models import HeatmapConfig, RecordingConfig, SessionSummary, StorageKeys
from tracking.probes import Page
from tracking.recorder import SessionRecorder


def new_session_id(now_ms: int) -> str:
    return f"session_{now_ms}_{uuid.uuid4().hex[:12]}"


class BehaviorTracker:
    """Heatmap and session recording for one page load.

    Nothing is captured at construction time. The host calls
    ``initialize()``, which waits for analytics consent, samples the visitor
    into the heatmap and/or recording cohorts and starts the matching
    collectors; ``stop_tracking()`` tears everything down.
    """

    def __init__(
        self,
        events: EventSource,
        page: Page,
        clock: Clock,
        scheduler: Scheduler,
        store: PersistentStore,
        analytics: AnalyticsSink,
        rng: Optional[random.Random] = None,
        heatmap_config: Optional[HeatmapConfig] = None,
        recording_config: Optional[RecordingConfig] = None,
        session_id: Optional[str] = None,
        keys: Optional[StorageKeys] = None,
    ):
        self.events = events
        self.page = page
        self.clock = clock
        self.scheduler = scheduler
        self.store = store
        self.analytics = analytics
        self.heatmap_config = heatmap_config or HeatmapConfig()
        self.recording_config = recording_config or RecordingConfig()
        self.keys = keys or StorageKeys.with_prefix()
        self.session_id = session_id or new_session_id(clock.now_ms())
        self.user_id: Optional[str] = None

        self.consent = ConsentGate(store, self.keys.consent, scheduler)
        self.sampling = SamplingGate(
            self.heatmap_config.sample_rate,
            self.recording_config.sample_rate,
            rng,
        )
        self.heatmap: Optional[HeatmapCollector] = None
        self.recorder: Optional[SessionRecorder] = None
        self._initialized = False
        self._stopped = False

    @property
    def is_heatmapping(self) -> bool:
        return self.heatmap is not None and self.heatmap.active

    @property
    def is_recording(self) -> bool:
        return self.recorder is not None and self.recorder.is_recording

    def initialize(self, poll: bool = False) -> None:
        """Wait for consent, then start capture. Only the first call counts."""
        if self._initialized:
            return
        self._initialized = True
        if poll:
            self.consent.await_consent(self._start_capture)
        else:
            self.consent.subscribe(self._start_capture)

    def stop_tracking(self) -> None:
        self._stopped = True
        self.consent.cancel()
        if self.heatmap is not None:
            self.heatmap.stop()
        if self.recorder is not None:
            self.recorder.stop()

    def update_config(
        self,
        heatmap_config: Optional[HeatmapConfig] = None,
        recording_config: Optional[RecordingConfig] = None,
    ) -> None:
        """Swap configs; collectors that are already running keep theirs."""
        if heatmap_config is not None:
            self.heatmap_config = heatmap_config
            self.sampling.heatmap_rate = heatmap_config.sample_rate
        if recording_config is not None:
            self.recording_config = recording_config
            self.sampling.recording_rate = recording_config.sample_rate

    def remember_lead_score(self, lead_score: Any) -> None:
        """Store the visitor's lead score so later sessions carry it in their metadata."""
        if not self.user_id:
            logger.debug("No anonymous user id, lead score not remembered")
            return
        payload = lead_score.to_dict() if hasattr(lead_score, "to_dict") else dict(lead_score)
        self.store.set(StorageKeys.lead_score(self.user_id), json.dumps(payload))
        self.store.set(StorageKeys.lead_profile(self.user_id), json.dumps({"priority": payload.get("priority")}))

    def generate_heatmap_visualization(self, element_selector: Optional[str] = None) -> str:
        samples = self.heatmap.samples if self.heatmap else []
        return json.dumps(visualization_points(samples, element_selector))

    def summary(self) -> SessionSummary:
        return build_summary(
            self.session_id,
            self.heatmap.samples if self.heatmap else [],
            self.recorder.recording if self.recorder else None,
            self.page,
            self.clock.now_ms(),
            is_recording=self.is_recording,
            is_heatmapping=self.is_heatmapping,
        )

    def export_session_data(self) -> Dict[str, Any]:
        samples = self.heatmap.samples if self.heatmap else []
        recording = self.recorder.recording if self.recorder else None
        return {
            "heatmap": [sample.to_dict() for sample in samples],
            "session": recording.to_dict() if recording else None,
            "summary": self.summary().to_dict(),
        }

    def _start_capture(self) -> None:
        if self._stopped:
            return
        try:
            self.user_id = self.store.get(self.keys.user_id)
        except Exception as e:
            logger.error(f"Could not read anonymous user id: {e}")
            self.user_id = None

        cohort: Cohort = self.sampling.decide()

        if cohort.heatmap and self.heatmap_config.enabled:
            self.heatmap = HeatmapCollector(
                self.session_id, self.events, self.page, self.clock,
                self.scheduler, self.analytics, self.heatmap_config,
            )
            self.heatmap.start()

        if cohort.recording and self.recording_config.enabled:
            self.recorder = SessionRecorder(
                self.session_id, self.events, self.page, self.clock, self.scheduler,
                self.store, self.analytics, self.recording_config,
                user_id=self.user_id,
                heatmap_samples=self._heatmap_samples_for,
                keys=self.keys,
            )
            self.recorder.start()

        logger.info(
            f"Behavior tracking initialized: heatmapping={self.is_heatmapping} "
            f"recording={self.is_recording} session={self.session_id}"
        )

    def _heatmap_samples_for(self, session_id: str):
        return self.heatmap.samples_for(session_id) if self.heatmap else []


def create_tracker(
    events: EventSource,
    page: Page,
    store: PersistentStore,
    analytics: AnalyticsSink,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> BehaviorTracker:
    """Tracker on wall-clock time and an asyncio loop, configured from the environment."""
    return BehaviorTracker(
        events,
        page,
        SystemClock(),
        AsyncioScheduler(loop),
        store,
        analytics,
        heatmap_config=HeatmapConfig.from_env(),
        recording_config=RecordingConfig.from_env(),
    )
