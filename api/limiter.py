"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/devices.py (to apply per-route limits with @limiter.limit()).

Scans and bulk runs open remote management sessions, so limits on those
routes protect the targets as much as this service. All routes share this
one in-memory counter store; a per-module instance would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
