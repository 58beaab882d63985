from datetime import datetime, timezone

import pytest

from freshlocal.config import Config
from freshlocal.utils.formatters import format_datetime, format_price


@pytest.fixture(autouse=True)
def london(monkeypatch):
    monkeypatch.setattr(Config, "TIMEZONE", "Europe/London")


def test_format_price():
    assert format_price(1250) == "£12.50"
    assert format_price(5) == "£0.05"
    assert format_price(123456) == "£1,234.56"
    assert format_price(-414) == "-£4.14"


def test_format_datetime_uses_local_time():
    summer = datetime(2026, 7, 1, 11, 30, tzinfo=timezone.utc)
    assert format_datetime(summer) == "2026-07-01 12:30"


def test_naive_datetime_is_utc():
    assert format_datetime(datetime(2026, 1, 15, 9, 0)) == "2026-01-15 09:00"
