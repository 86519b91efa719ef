from __future__ import annotations

import time
from typing import Callable

NowFunc = Callable[[], int]


def now_ms() -> int:
    return int(time.time() * 1000)
