"""
Helper Utilities
Name, id and text normalization shared by the request schemas, records and pipeline.
"""

import re
from datetime import datetime
from typing import List, Optional, Union

import pytz

DATE_FOLDER_FORMAT = '%Y_%m_%d'


def replace_ignore_case(text: str, old: str, new: str) -> str:
    """
    Replace every occurrence of `old` in `text`, ignoring case.

    Args:
        text: Text to rewrite
        old: Substring to look for (matched literally)
        new: Replacement

    Returns:
        Rewritten text
    """
    if not text or not old:
        return text
    return re.sub(re.escape(old), lambda _: new, text, flags=re.IGNORECASE)


def split_names(value: Union[str, List[str], None]) -> List[str]:
    """
    Normalize a comma-separated string or list of names.

    Blank entries are dropped, surrounding whitespace stripped and duplicates
    removed while keeping the first-seen order.
    """
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(',')
    else:
        items = list(value)

    names: List[str] = []
    for item in items:
        name = str(item).strip()
        if name and name not in names:
            names.append(name)
    return names


def parse_id_list(value: Optional[str]) -> List[int]:
    """
    Parse a comma-separated list of integer ids.

    Raises:
        ValueError: If an entry is not an integer
    """
    return [int(item) for item in split_names(value)]


def date_folder(now: datetime = None, timezone: str = 'UTC') -> str:
    """Format the date component used in artifact folder names (yyyy_MM_dd)."""
    if now is None:
        now = datetime.now(pytz.timezone(timezone))
    return now.strftime(DATE_FOLDER_FORMAT)


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    """ISO format a datetime, passing None through."""
    return value.isoformat() if value else None


def sanitize_string(text: Optional[str], max_length: int = None) -> Optional[str]:
    """Strip NUL characters and clip to `max_length`, marking clipped text with '...'."""
    if text is None:
        return None

    cleaned = text.replace('\x00', '')
    if max_length and len(cleaned) > max_length:
        return cleaned[:max_length - 3] + '...'
    return cleaned
