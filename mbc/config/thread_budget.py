"""CPU budget for encoder jobs.

Two knobs: how many ffmpeg threads a single job asks for (per media category)
and how many jobs may run at once. Video claims the biggest share of cores since
its wall time dominates; audio runs lean so several jobs fit side by side.
"""

import math
import os
from typing import Optional, Union

from mbc.domain.models import MediaCategory

MIN_CONCURRENT = 2
MAX_CONCURRENT = 8

# category -> (share of cores, minimum threads)
_THREAD_SHARES = {
    MediaCategory.AUDIO: (0.35, 2),
    MediaCategory.VIDEO: (0.75, 3),
    MediaCategory.IMAGE: (0.5, 2),
}


def host_cores() -> int:
    return os.cpu_count() or 1


def threads_for(category: Union[MediaCategory, str], total_cores: Optional[int] = None) -> int:
    """Number of encoder threads to request for one job of this category."""
    cores = host_cores() if total_cores is None else total_cores
    share, minimum = _THREAD_SHARES[MediaCategory(category)]
    return max(minimum, math.floor(cores * share))


def clamp_concurrency(value: int) -> int:
    return max(MIN_CONCURRENT, min(MAX_CONCURRENT, value))


def max_concurrent_for(total_cores: Optional[int] = None) -> int:
    """Cap on simultaneous jobs, independent of per-job thread requests."""
    cores = host_cores() if total_cores is None else total_cores
    return clamp_concurrency(math.floor(cores / 2.5))
