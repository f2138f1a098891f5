#!/usr/bin/env python3
"""
Date Restore Utilities
Filename date extraction and timestamp reconciliation for WhatsApp exports.
"""

import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

FILENAME_DATE_PATTERN = re.compile(r"(?<=IMG-)(\d{8})(?=-WA.+)")
FILENAME_DATE_FORMAT = "%Y%m%d"
DISPLAY_DATE_FORMAT = "%d.%m.%Y %H:%M:%S %Z"

# WhatsApp names carry no time of day, so fallback dates land on midday
FALLBACK_TIME_OFFSET = timedelta(hours=12)


def extract_date_token(file_name: str) -> Optional[str]:
    """
    Extract the raw date token from a WhatsApp file name.

    Example: 'IMG-20190105-WA0003.jpg' -> '20190105'

    Args:
        file_name: Name of the file (not the full path)

    Returns:
        The 8-digit date string or None if the name doesn't match
    """
    match = FILENAME_DATE_PATTERN.search(file_name)
    if match is None:
        return None
    return match.group(1)


def parse_date_token(date_token: str) -> Optional[datetime]:
    """Parse a YYYYMMDD token into a datetime at midnight, None if invalid."""
    if len(date_token) != 8 or not date_token.isdigit():
        return None
    try:
        return datetime.strptime(date_token, FILENAME_DATE_FORMAT)
    except ValueError:
        return None


def read_modification_time(file_path: Path) -> Optional[datetime]:
    """Read the file's modification time as a local datetime."""
    try:
        return datetime.fromtimestamp(file_path.stat().st_mtime)
    except OSError:
        return None


def resolve_timestamp(
    date_token: str, modification_time: Optional[datetime] = None
) -> Optional[datetime]:
    """
    Decide which timestamp best represents the capture date of a file.

    The existing modification time is kept verbatim when its calendar date
    equals the token. Otherwise the token's date is used at midday.

    Args:
        date_token: YYYYMMDD string taken from the file name
        modification_time: Current modification time of the source file

    Returns:
        Resolved datetime or None if the token is not a valid date
    """
    if (
        modification_time is not None
        and modification_time.strftime(FILENAME_DATE_FORMAT) == date_token
    ):
        return modification_time

    token_date = parse_date_token(date_token)
    if token_date is None:
        return None

    return token_date + FALLBACK_TIME_OFFSET


def format_display_date(dt: datetime) -> str:
    """Format a local timestamp for console output: '15.06.2020 12:00:00 CEST'"""
    return dt.astimezone().strftime(DISPLAY_DATE_FORMAT)
