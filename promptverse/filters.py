"""Structured filtering of prompt collections (category, tags, date range)."""
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into an aware datetime.

    Naive values are taken as UTC and a trailing ``Z`` is accepted.

    Returns:
        Parsed datetime or None if the value is missing or unparseable
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def prompt_timestamp(prompt: Dict[str, Any]) -> Optional[datetime]:
    """Return a prompt's ``updated_at``, falling back to ``created_at``."""
    return parse_timestamp(prompt.get("updated_at") or prompt.get("created_at"))


def _date_bounds(date_range: Any):
    if not isinstance(date_range, dict):
        return None, None

    start = parse_timestamp(date_range.get("start_date", date_range.get("startDate")))
    end = parse_timestamp(date_range.get("end_date", date_range.get("endDate")))
    if end is not None:
        # Inclusive through the last millisecond of the end day
        end = end.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end


def _has_all_tags(prompt: Dict[str, Any], required: Sequence[str]) -> bool:
    tags = prompt.get("tags")
    if not tags or not isinstance(tags, (list, tuple, set)):
        return False
    return all(tag in tags for tag in required)


def apply_filters(prompts: Sequence[Dict[str, Any]], filters: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Apply category, tag and date range filters.

    Args:
        prompts: Prompts to filter
        filters: Dict with optional ``category`` (exact match), ``tags``
            (AND semantics, prompt must carry every tag) and ``date_range``
            (or ``dateRange``) with ``start_date``/``end_date`` bounds.
            Missing keys impose no constraint.

    Returns:
        Surviving prompts in their original order
    """
    filtered = list(prompts)
    if not filters or not isinstance(filters, dict):
        return filtered

    category = filters.get("category")
    if category and isinstance(category, str):
        filtered = [p for p in filtered if p.get("category") == category]

    required_tags = filters.get("tags")
    if required_tags and isinstance(required_tags, (list, tuple, set)):
        filtered = [p for p in filtered if _has_all_tags(p, list(required_tags))]

    start, end = _date_bounds(filters.get("date_range", filters.get("dateRange")))
    if start is not None or end is not None:
        survivors = []
        for prompt in filtered:
            stamp = prompt_timestamp(prompt)
            if stamp is None:
                continue
            if start is not None and stamp < start:
                continue
            if end is not None and stamp > end:
                continue
            survivors.append(prompt)
        filtered = survivors

    return filtered
