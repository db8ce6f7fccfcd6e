"""Device and environment metadata capture."""

import platform
import re
from importlib.metadata import PackageNotFoundError, version
from typing import Literal

from cmcd_telemetry.models.session import DeviceInfo

_MOBILE_PATTERN = re.compile(r"mobile|android|iphone|ipad|ipod|blackberry|windows phone")
_TABLET_PATTERN = re.compile(r"tablet|ipad")


def classify_device(user_agent: str) -> Literal["mobile", "tablet", "desktop"]:
    """Classify a user-agent string as mobile, tablet or desktop."""
    ua = user_agent.lower()
    if _MOBILE_PATTERN.search(ua):
        return "tablet" if _TABLET_PATTERN.search(ua) else "mobile"
    return "desktop"


def default_user_agent() -> str:
    """User agent describing this client process."""
    try:
        pkg_version = version("cmcd-telemetry")
    except PackageNotFoundError:
        pkg_version = "0.0.0"
    return (
        f"cmcd-telemetry/{pkg_version} "
        f"({platform.system()} {platform.release()}; "
        f"Python {platform.python_version()})"
    )


def capture_device_info(
    user_agent: str | None = None,
    screen_width: int | None = None,
    screen_height: int | None = None,
    connection_type: str | None = None,
    effective_type: str | None = None,
) -> DeviceInfo:
    """Snapshot device metadata. Values the host cannot report stay None."""
    ua = user_agent or default_user_agent()
    return DeviceInfo(
        user_agent=ua,
        device_type=classify_device(ua),
        screen_width=screen_width,
        screen_height=screen_height,
        connection_type=connection_type,
        effective_type=effective_type,
    )
