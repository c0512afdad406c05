from typing import Any, Dict, List, Optional, Sequence

from tracking.models import InteractionSample, SessionRecording, SessionSummary
from tracking.probes import Page, max_scroll_extent

MAX_VISUALIZATION_POINTS = 1000
CLICK_INTENSITY = 10
HOVER_INTENSITY = 5


def visualization_points(
    samples: Sequence[InteractionSample],
    element_selector: Optional[str] = None,
) -> Dict[str, Any]:
    """Click and hover points ready for a heatmap renderer.

    ``element_selector`` narrows the points to samples whose selector
    contains it.
    """
    if element_selector:
        samples = [s for s in samples if s.target_selector and element_selector in s.target_selector]

    clicks = [s for s in samples if s.kind == "click"]
    hovers = [s for s in samples if s.kind == "hover"]
    points = [
        {
            "x": s.x,
            "y": s.y,
            "intensity": CLICK_INTENSITY if s.kind == "click" else HOVER_INTENSITY,
            "type": s.kind,
        }
        for s in clicks + hovers
    ]
    return {
        "total_points": len(points),
        "click_points": len(clicks),
        "hover_points": len(hovers),
        "points": points[:MAX_VISUALIZATION_POINTS],
    }


def top_interacted_elements(samples: Sequence[InteractionSample], limit: int = 10) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    kinds: Dict[str, List[str]] = {}
    for sample in samples:
        selector = sample.target_selector
        if not selector:
            continue
        counts[selector] = counts.get(selector, 0) + 1
        seen = kinds.setdefault(selector, [])
        if sample.kind not in seen:
            seen.append(sample.kind)

    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [
        {"selector": selector, "count": count, "type": ", ".join(kinds[selector])}
        for selector, count in ranked[:limit]
    ]


def max_scroll_depth(samples: Sequence[InteractionSample], page: Page) -> int:
    """Deepest scroll reached, as a percentage of the scrollable extent."""
    offsets = [s.y for s in samples if s.kind == "scroll"]
    extent = max_scroll_extent(page)
    if not offsets or extent <= 0:
        return 0
    return min(100, round(max(offsets) / extent * 100))


def build_summary(
    session_id: str,
    samples: Sequence[InteractionSample],
    recording: Optional[SessionRecording],
    page: Page,
    now_ms: int,
    is_recording: bool = False,
    is_heatmapping: bool = False,
) -> SessionSummary:
    return SessionSummary(
        session_id=session_id,
        duration=recording.duration_ms(now_ms) if recording else 0,
        event_count=len(recording.events) if recording else 0,
        heatmap_count=len(samples),
        is_recording=is_recording,
        is_heatmapping=is_heatmapping,
        top_elements=tuple(top_interacted_elements(samples)),
        scroll_depth=max_scroll_depth(samples, page),
    )
