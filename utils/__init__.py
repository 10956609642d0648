"""Utility modules for cross-cutting concerns."""

from utils.timezone import (
    now_utc, DayKey, to_day_key, today_key, day_key_str, day_of_week,
)
from utils.actor_context import (
    get_current_actor_id,
    set_current_actor_id,
    clear_current_actor_id,
    actor_context,
)
