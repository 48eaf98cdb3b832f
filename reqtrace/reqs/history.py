"""
Requirement history helpers.

Entries are created here so every writer stamps them the same way, and
formatted here for the 'history' command.
"""

from datetime import datetime, timezone

from reqtrace.lib.constants import HISTORY_TYPES
from reqtrace.lib.errors import ValidationError
from reqtrace.reqs.models import HistoryEntry

__all__ = ["timestamp", "create_history_entry", "format_history_entry", "format_history"]


def timestamp(now: datetime | None = None) -> str:
    """ISO timestamp in UTC, second precision."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds")


def create_history_entry(
    entry_type: str,
    detail: str = "",
    by: str | None = None,
    now: datetime | None = None,
) -> HistoryEntry:
    """Build a history entry.

    Raises:
        ValidationError: If entry_type is not a known history type
    """
    if entry_type not in HISTORY_TYPES:
        raise ValidationError(f"Unknown history type: {entry_type}")
    return HistoryEntry(type=entry_type, detail=detail or "", timestamp=timestamp(now), by=by or None)


def format_history_entry(entry: HistoryEntry) -> str:
    """One line per entry: '  <timestamp>  <type> by <who> - <detail>'"""
    parts = [f"  {entry.timestamp}  {entry.type}"]
    if entry.by:
        parts.append(f"by {entry.by}")
    if entry.detail:
        parts.append(f"- {entry.detail}")
    return " ".join(parts)


def format_history(req_id: str, description: str, history: list[HistoryEntry] | None,
                   archived: bool = False) -> str:
    """
    Format a requirement's history for display.

    Args:
        req_id: Requirement ID
        description: Requirement description, shown under the heading
        history: Entries in the order they were written
        archived: Whether the requirement currently lives in the archive

    Returns:
        Multi-line string, oldest entry first
    """
    lines = [f"History for {req_id}{' (archived)' if archived else ''}:", f'  "{description}"', ""]

    if not history:
        lines.append("  (no history)")
        return "\n".join(lines)

    lines.extend(format_history_entry(entry) for entry in history)
    return "\n".join(lines)
