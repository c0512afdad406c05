import json
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse

from loguru import logger

from tracking.capabilities import PersistentStore
from tracking.models import SessionMetadata, StorageKeys, ViewportInfo

MOBILE_MAX_WIDTH = 768
TABLET_MAX_WIDTH = 1024

# Checked in order; Edge and Chrome both advertise "Chrome" and iOS advertises "Mac OS X"
BROWSERS = (("Edg", "Edge"), ("Firefox", "Firefox"), ("Chrome", "Chrome"), ("Safari", "Safari"))
OPERATING_SYSTEMS = (
    ("Windows", "Windows"),
    ("Android", "Android"),
    ("iPhone", "iOS"),
    ("iPad", "iOS"),
    ("Mac", "macOS"),
    ("Linux", "Linux"),
)


@dataclass
class Page:
    """What the host knows about the current page and window.

    The host keeps this up to date (scroll offsets, size) as the window
    changes; probes only read it.
    """
    url: str
    user_agent: str = ""
    referrer: str = ""
    inner_width: int = 1280
    inner_height: int = 800
    scroll_x: float = 0
    scroll_y: float = 0
    device_pixel_ratio: float = 1.0
    document_height: int = 800


def viewport_info(page: Page) -> ViewportInfo:
    return ViewportInfo(
        width=page.inner_width,
        height=page.inner_height,
        scroll_x=page.scroll_x,
        scroll_y=page.scroll_y,
        device_pixel_ratio=page.device_pixel_ratio,
    )


def max_scroll_extent(page: Page) -> int:
    return max(0, page.document_height - page.inner_height)


def device_class(width: int) -> str:
    if width < MOBILE_MAX_WIDTH:
        return "mobile"
    if width < TABLET_MAX_WIDTH:
        return "tablet"
    return "desktop"


def browser_name(user_agent: str) -> str:
    for marker, name in BROWSERS:
        if marker in user_agent:
            return name
    return "Other"


def os_name(user_agent: str) -> str:
    for marker, name in OPERATING_SYSTEMS:
        if marker in user_agent:
            return name
    return "Other"


def utm_params(url: str) -> Dict[str, Optional[str]]:
    query = parse_qs(urlparse(url).query)

    def first(name: str) -> Optional[str]:
        values = query.get(name)
        return values[0] if values and values[0] else None

    return {
        "utm_source": first("utm_source"),
        "utm_medium": first("utm_medium"),
        "utm_campaign": first("utm_campaign"),
    }


def stored_lead_score(store: PersistentStore, user_id: Optional[str]) -> Optional[int]:
    """Total of the lead score remembered for this visitor, if any."""
    if not user_id:
        return None
    try:
        raw = store.get(StorageKeys.lead_score(user_id))
        return json.loads(raw).get("total") if raw else None
    except Exception as e:
        logger.debug(f"Unreadable stored lead score for {user_id}: {e}")
        return None


def visitor_type(store: PersistentStore, user_id: Optional[str]) -> str:
    if not user_id:
        return "visitor"
    try:
        return "lead" if store.get(StorageKeys.lead_profile(user_id)) else "visitor"
    except Exception as e:
        logger.debug(f"Unreadable lead profile for {user_id}: {e}")
        return "visitor"


def session_metadata(page: Page, store: PersistentStore, user_id: Optional[str] = None) -> SessionMetadata:
    return SessionMetadata(
        device=device_class(page.inner_width),
        browser=browser_name(page.user_agent),
        os=os_name(page.user_agent),
        referrer=page.referrer,
        lead_score=stored_lead_score(store, user_id),
        user_type=visitor_type(store, user_id),
        **utm_params(page.url),
    )
