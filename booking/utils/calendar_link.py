"""
Google Calendar Link Generator.

Generates public "Add to Google Calendar" URLs that allow patients
to add their appointment to their own Google Calendar with one click.
"""

from datetime import UTC, datetime
from urllib.parse import quote


def generate_google_calendar_link(
    title: str,
    start_time: datetime,
    end_time: datetime,
    description: str,
    location: str = "",
) -> str:
    """
    Generate a Google Calendar "Add Event" URL.

    Args:
        title: Event title (e.g., "Rendez-vous - Cabinet")
        start_time: Event start datetime (timezone-aware)
        end_time: Event end datetime (timezone-aware)
        description: Event description
        location: Event location address

    Returns:
        Full Google Calendar URL ready to share
    """
    base_url = "https://calendar.google.com/calendar/render"

    # UTC basic format with Z suffix so the link is timezone-independent
    date_format = "%Y%m%dT%H%M%SZ"
    dates = (
        f"{start_time.astimezone(UTC).strftime(date_format)}/"
        f"{end_time.astimezone(UTC).strftime(date_format)}"
    )

    params = {
        "action": "TEMPLATE",
        "text": title,
        "dates": dates,
        "details": description,
    }
    if location:
        params["location"] = location

    query = "&".join(f"{k}={quote(str(v))}" for k, v in params.items())
    return f"{base_url}?{query}"
