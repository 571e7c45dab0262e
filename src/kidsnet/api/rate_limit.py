"""slowapi limiter shared by app.py and the route modules.

Limits are keyed on the client address. Single-subject actions get a looser
budget than household-wide actions, which touch every rule at once.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address

SUBJECT_ACTION_LIMIT = "30/minute"
HOUSEHOLD_ACTION_LIMIT = "10/minute"
SCHEDULE_SAVE_LIMIT = "20/minute"

limiter = Limiter(key_func=get_remote_address)
