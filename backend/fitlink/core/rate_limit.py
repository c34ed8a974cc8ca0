"""
Request rate limiting (slowapi). Per client address; the provider webhook is
exempt because Garmin retries unacknowledged deliveries.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"])
