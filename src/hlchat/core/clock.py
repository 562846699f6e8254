"""Wall-clock helpers shared by the gateway and the room client."""

import time
from collections.abc import Callable

Clock = Callable[[], int]


def now_ms() -> int:
    """Return milliseconds since the Unix epoch."""
    return int(time.time() * 1000)
