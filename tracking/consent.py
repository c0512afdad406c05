import json
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from tracking.capabilities import PersistentStore, Scheduler, TimerHandle

DEFAULT_POLL_INTERVAL_MS = 1000
DEFAULT_POLL_TIMEOUT_MS = 30000


class ConsentGate:
    """Holds capture back until the visitor has granted analytics consent.

    The gate resolves at most once. Hosts either call ``notify_changed``
    (or ``save_preferences``) when the cookie banner is answered, or use
    ``await_consent`` to poll the stored preferences for a while. A poll that
    times out closes the gate for good.
    """

    def __init__(self, store: PersistentStore, key: str, scheduler: Optional[Scheduler] = None):
        self._store = store
        self._key = key
        self._scheduler = scheduler
        self._subscribers: List[Callable[[], None]] = []
        self._granted = False
        self._closed = False
        self._poll: Optional[TimerHandle] = None
        self._deadline: Optional[TimerHandle] = None

    @property
    def granted(self) -> bool:
        return self._granted

    def is_granted(self) -> bool:
        """Read the stored preferences; any failure means no consent yet."""
        try:
            raw = self._store.get(self._key)
            if not raw:
                return False
            preferences = json.loads(raw)
            return bool(isinstance(preferences, dict) and preferences.get("analytics"))
        except Exception as e:
            logger.error(f"Failed to check consent under {self._key}: {e}")
            return False

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once consent is granted (immediately if it already is)."""
        if self._granted:
            callback()
            return
        if self._closed:
            return
        self._subscribers.append(callback)
        self.notify_changed()

    def notify_changed(self) -> bool:
        if self._granted:
            return True
        if self._closed:
            return False
        if not self.is_granted():
            return False
        self._resolve()
        return True

    def save_preferences(self, preferences: Dict[str, Any]) -> bool:
        self._store.set(self._key, json.dumps(preferences))
        logger.info(f"Cookie preferences saved: {preferences}")
        return self.notify_changed()

    def await_consent(
        self,
        callback: Callable[[], None],
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
    ) -> bool:
        """Poll for consent; gives up silently after ``timeout_ms``.

        Returns True when consent was already there.
        """
        if self._closed:
            return False
        self._subscribers.append(callback)
        if self.notify_changed():
            return True
        if self._scheduler is None:
            raise RuntimeError("await_consent needs a scheduler")

        self.cancel()
        self._poll = self._scheduler.call_every(poll_interval_ms, self.notify_changed)
        self._deadline = self._scheduler.call_later(timeout_ms, self._give_up)
        return False

    def cancel(self) -> None:
        for timer in (self._poll, self._deadline):
            if timer is not None:
                timer.cancel()
        self._poll = None
        self._deadline = None

    def _give_up(self) -> None:
        self.cancel()
        if self._granted:
            return
        # Timed out: later consent changes no longer start capture for this page load
        self._closed = True
        self._subscribers.clear()
        logger.debug(f"No analytics consent after polling {self._key}, capture stays off")

    def _resolve(self) -> None:
        self._granted = True
        self.cancel()
        subscribers, self._subscribers = self._subscribers, []
        for callback in subscribers:
            callback()


@dataclass(frozen=True)
class Cohort:
    heatmap: bool
    recording: bool


class SamplingGate:
    """Decides once per page load whether the visitor is heatmapped and/or recorded."""

    def __init__(self, heatmap_rate: float, recording_rate: float, rng: Optional[random.Random] = None):
        self.heatmap_rate = heatmap_rate
        self.recording_rate = recording_rate
        self._rng = rng or random.Random()
        self._cohort: Optional[Cohort] = None

    def decide(self) -> Cohort:
        if self._cohort is None:
            self._cohort = Cohort(
                heatmap=self._rng.random() < self.heatmap_rate,
                recording=self._rng.random() < self.recording_rate,
            )
            logger.debug(f"Sampling decision: {self._cohort}")
        return self._cohort
