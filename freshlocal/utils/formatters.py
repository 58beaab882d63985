from datetime import datetime
import pytz
from ..config import Config

def format_price(amount: int) -> str:
    """Minor units to a display price, e.g. 1250 -> £12.50"""
    sign = "-" if amount < 0 else ""
    pounds, pence = divmod(abs(int(amount)), 100)
    return f"{sign}£{pounds:,}.{pence:02d}"

def format_datetime(dt: datetime) -> str:
    """Render in the reporting timezone"""
    local_tz = pytz.timezone(Config.TIMEZONE)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt.astimezone(local_tz).strftime("%Y-%m-%d %H:%M")
