"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware and toggle it from
Settings) and in the route modules under api/routes/v1/ (to apply per-route
limits with @limiter.limit(), placed below the @router.<verb>() decorator so
the registered endpoint is the rate-limited wrapper).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits applied by the routes:
  AUTH_LIMIT  -- register, login, guest login (credential guessing)
  WRITE_LIMIT -- every mutating catalog/library/account route
  READ_LIMIT  -- list and detail reads
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

AUTH_LIMIT = "10/minute"
WRITE_LIMIT = "30/minute"
READ_LIMIT = "60/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
