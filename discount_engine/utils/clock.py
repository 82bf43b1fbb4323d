# discount_engine/utils/clock.py
from datetime import datetime
from typing import Callable
import pytz
from ..config import Config

Clock = Callable[[], datetime]

def get_timezone():
    """Configured timezone"""
    return pytz.timezone(Config.TIMEZONE)

def now() -> datetime:
    """Current time in the configured timezone"""
    return datetime.now(get_timezone())

def ensure_aware(dt: datetime) -> datetime:
    """Naive datetimes are taken to be in the configured timezone"""
    if dt.tzinfo is None:
        return get_timezone().localize(dt)
    return dt


def fixed_clock(moment: datetime) -> Clock:
    """Clock that always returns the same moment"""
    moment = ensure_aware(moment)
    return lambda: moment
