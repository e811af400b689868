"""Server clock helpers.

Every timestamp on the wire is an integer count of milliseconds since the
Unix epoch, taken from the server clock.
"""

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current server time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def today_iso() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()
