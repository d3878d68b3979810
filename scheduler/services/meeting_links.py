"""External meeting link validation.

Sessions are held on third-party platforms (Zoom, Google Meet, Teams or any
other web URL). A session may only go live once it has a usable link, and the
link decides which pre-start status a session sits in.
"""

from dataclasses import dataclass
from urllib.parse import parse_qs, urlsplit

from scheduler.models.live_session import SessionStatus

PLATFORM_ZOOM = 'zoom'
PLATFORM_GOOGLE_MEET = 'google-meet'
PLATFORM_TEAMS = 'teams'
PLATFORM_OTHER = 'other'

MISSING_LINK_ERROR = 'External meeting link is required to start the session'
INVALID_FORMAT_ERROR = 'Invalid URL format. Please provide a valid meeting link.'
INSECURE_SCHEME_ERROR = 'Please use a secure HTTPS URL for the meeting link.'
LINK_REMEDIATION = 'Attach a valid meeting link (Zoom, Google Meet, Teams) before starting the session.'

PLATFORM_EXAMPLES = {
    PLATFORM_ZOOM: 'https://zoom.us/j/1234567890',
    PLATFORM_GOOGLE_MEET: 'https://meet.google.com/abc-defg-hij',
    PLATFORM_TEAMS: 'https://teams.microsoft.com/l/meetup-join/...',
    PLATFORM_OTHER: 'https://example.com/meeting-room',
}


@dataclass(frozen=True)
class LinkValidation:
    is_valid: bool
    platform: str | None = None
    error: str | None = None
    suggested_status: SessionStatus | None = None


def _invalid(error: str, suggested_status: SessionStatus = SessionStatus.SCHEDULED,
             platform: str | None = None) -> LinkValidation:
    return LinkValidation(is_valid=False, platform=platform, error=error, suggested_status=suggested_status)


def _valid(platform: str) -> LinkValidation:
    return LinkValidation(is_valid=True, platform=platform, suggested_status=SessionStatus.READY)


def validate_meeting_link(url: str | None) -> LinkValidation:
    if url is None or not url.strip():
        return _invalid(MISSING_LINK_ERROR, SessionStatus.DRAFT)

    try:
        parsed = urlsplit(url.strip())
        hostname = (parsed.hostname or '').lower()
    except ValueError:
        return _invalid(INVALID_FORMAT_ERROR)

    scheme = parsed.scheme.lower()
    if not scheme or (scheme in {'http', 'https'} and not hostname):
        return _invalid(INVALID_FORMAT_ERROR)

    path = parsed.path or '/'

    # The scheme is deliberately not checked for platform links: http Zoom
    # links pass as long as the path carries a meeting id.
    if 'zoom.us' in hostname or 'zoom.com' in hostname:
        if '/j/' in path or '/meeting/' in path:
            return _valid(PLATFORM_ZOOM)
        return _invalid(
            'Invalid Zoom meeting URL format. Please use a valid Zoom meeting link.',
            platform=PLATFORM_ZOOM,
        )

    if 'meet.google.com' in hostname:
        if len(path) > 1:
            return _valid(PLATFORM_GOOGLE_MEET)
        return _invalid(
            'Invalid Google Meet URL format. Please use a valid Google Meet link.',
            platform=PLATFORM_GOOGLE_MEET,
        )

    if 'teams.microsoft.com' in hostname or 'teams.live.com' in hostname:
        query = parse_qs(parsed.query, keep_blank_values=True)
        if 'meetingId' in query or '/meet-now/' in path:
            return _valid(PLATFORM_TEAMS)
        return _invalid(
            'Invalid Microsoft Teams URL format. Please use a valid Teams meeting link.',
            platform=PLATFORM_TEAMS,
        )

    if scheme in {'http', 'https'}:
        return _valid(PLATFORM_OTHER)

    return _invalid(INSECURE_SCHEME_ERROR)


def can_start_session(url: str | None) -> bool:
    return validate_meeting_link(url).is_valid


def can_join_session(url: str | None, status: SessionStatus) -> bool:
    return status == SessionStatus.ACTIVE and validate_meeting_link(url).is_valid


def status_from_link(url: str | None, current_status: SessionStatus, has_schedule: bool = True) -> SessionStatus:
    """Status a session should sit in after its link is set or cleared."""
    if current_status.is_live or current_status.is_terminal:
        return current_status

    if not validate_meeting_link(url).is_valid:
        return SessionStatus.SCHEDULED if has_schedule else SessionStatus.DRAFT

    return SessionStatus.READY
