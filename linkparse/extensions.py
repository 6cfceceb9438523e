from __future__ import annotations

import os

from flask_caching import Cache
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

cache = Cache()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[
        limit.strip()
        for limit in os.getenv("DEFAULT_RATE_LIMITS", "2000 per day;300 per hour").split(";")
        if limit.strip()
    ],
)
