from __future__ import annotations

import urllib.parse
from typing import Optional

# host fragment -> platform name
SCHEDULING_PLATFORMS = {
    "calendly.com": "Calendly",
    "cal.com": "Cal.com",
    "acuityscheduling.com": "Acuity Scheduling",
    "bookings.microsoft.com": "Microsoft Bookings",
    "tidycal.com": "TidyCal",
    "youcanbook.me": "YouCanBook.me",
    "koalendar.com": "Koalendar",
    "simplybook.me": "SimplyBook.me",
    "appt.link": "Appointlet",
}


def scheduling_platform(url: str) -> Optional[str]:
    host = (urllib.parse.urlsplit(url).hostname or "").lower()
    for fragment, name in SCHEDULING_PLATFORMS.items():
        if host == fragment or host.endswith("." + fragment):
            return name
    return None


def validate_scheduling_link(url: str) -> str:
    """Normalized link, or ValueError when it is not an http(s) URL with a host."""
    link = (url or "").strip()
    parts = urllib.parse.urlsplit(link)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"not a valid scheduling link: {url!r}")
    return link
