from __future__ import annotations

import datetime as dt
from typing import Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def format_ts(ts: Optional[dt.datetime] = None) -> str:
    return (ts or utcnow()).strftime(ISO_FORMAT)


def syslog_ts(ts: Optional[dt.datetime] = None) -> str:
    # "Jul 10 10:11:23": day is space padded, not zero padded
    ts = ts or dt.datetime.now()
    return f"{ts:%b} {ts.day:2d} {ts:%H:%M:%S}"


__all__ = ["utcnow", "format_ts", "syslog_ts"]
