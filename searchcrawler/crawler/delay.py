"""
Courtesy delay between two fetches of the same host.
"""

from datetime import datetime, timezone

# Retry-After may be a date; RFC1123 is preferred but these are seen in the wild.
RETRY_AFTER_FORMATS = [
    '%a, %d %b %Y %H:%M:%S %Z',   # RFC1123
    '%a, %d %b %Y %H:%M:%S %z',   # RFC1123Z
    '%d %b %y %H:%M %Z',          # RFC822
    '%d %b %y %H:%M %z',          # RFC822Z
    '%A, %d-%b-%y %H:%M:%S %Z',   # RFC850
    '%a %b %d %H:%M:%S %Y',       # ANSIC
]

SERVER_ERROR_DELAY = 600.0
MIN_DELAY = 1.0
# longest rest we grant a host; it ends up as a Redis TTL
MAX_DELAY = 24 * 3600.0
NOT_CRAWLED = -1


def now() -> datetime:
    return datetime.now(timezone.utc)


def parse_retry_after(value: str) -> float:
    """
    Seconds to wait according to a Retry-After header.

    Raises ValueError when the value is neither an integer nor a known date,
    or asks for more than MAX_DELAY seconds.
    """
    value = value.strip()
    try:
        seconds = int(value)
    except ValueError:
        pass
    else:
        return _bounded(seconds)

    for fmt in RETRY_AFTER_FORMATS:
        try:
            when = datetime.strptime(value, fmt)
        except ValueError:
            continue
        return _seconds_until(when)

    # RFC3339
    when = datetime.fromisoformat(value.replace('Z', '+00:00'))
    return _seconds_until(when)


def _seconds_until(when: datetime) -> float:
    # all HTTP dates are GMT
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return _bounded(int((when - now()).total_seconds()))


def _bounded(seconds: int) -> float:
    if seconds > MAX_DELAY:
        raise ValueError(f"Retry-After of {seconds}s is out of range")
    # a date in the past asks for no wait at all
    return float(max(seconds, 0))


def calculate_host_delay(status: int, retry_after: str, delay: float) -> float:
    """
    Seconds a host must rest before it is crawled again.

    We take the greater of the robots.txt crawl-delay and the Retry-After
    header, with a hard 10 minutes on a server error and never more than
    MAX_DELAY. Retry-After on a redirect is a per-link policy and is ignored,
    as is one we cannot parse.
    """
    if retry_after and not 300 <= status <= 399:
        try:
            delay = max(parse_retry_after(retry_after), delay)
        except ValueError:
            pass

    if 500 <= status < 600:
        delay = max(SERVER_ERROR_DELAY, delay)
    elif status == NOT_CRAWLED:
        # nothing was fetched so the host owes us no courtesy
        delay = 0.0
    elif delay < MIN_DELAY:
        delay = MIN_DELAY

    return min(delay, MAX_DELAY)
