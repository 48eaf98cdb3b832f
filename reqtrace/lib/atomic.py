"""
Crash-safe writes for store documents.

Single documents are written to a temp file in the same directory and
renamed over the target. Commits touching several documents go through a
journal:

1. every new document is written to its own temp file and fsynced
2. the journal listing the pending renames is written (atomically)
3. the renames happen
4. the journal is removed

The journal appearing on disk is the commit point. A crash before it leaves
every target untouched; a crash after it is rolled forward by
recover_pending_commit() on the next load.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)


def dump_json(data: dict) -> str:
    """Serialize a document the way it is stored on disk."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def _stage(target: Path, text: str) -> Path:
    """Write text to a fsynced temp file next to target and return its path."""
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return tmp_path


def write_json_atomic(path: Path, data: dict) -> None:
    """Replace path with data without ever exposing a partial file.

    Raises:
        OSError: If the temp file cannot be written or renamed
    """
    tmp_path = _stage(path, dump_json(data))
    try:
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def commit_documents(writes: list[tuple[Path, dict]], journal: Path) -> None:
    """
    Write several documents so that either all of them change or none does.

    Args:
        writes: (target path, document) pairs
        journal: Where the commit journal lives while the commit is applied

    Raises:
        OSError: If staging fails (nothing changed) or a rename fails after
            the commit point (the next recover_pending_commit() finishes it)
    """
    staged: list[tuple[Path, Path]] = []
    try:
        for target, data in writes:
            staged.append((_stage(target, dump_json(data)), target))
        write_json_atomic(journal, {
            "renames": [{"from": str(tmp), "to": str(target)} for tmp, target in staged],
        })
    except BaseException:
        for tmp, _ in staged:
            tmp.unlink(missing_ok=True)
        raise

    _apply_journal(journal)


def _apply_journal(journal: Path) -> int:
    """Perform the renames listed in the journal, then remove it.

    Renames whose temp file is already gone were applied before a crash and
    are skipped. Returns the number of renames performed.
    """
    entries = json.loads(journal.read_text(encoding="utf-8")).get("renames", [])
    applied = 0
    for entry in entries:
        source = Path(entry["from"])
        if source.exists():
            os.replace(source, Path(entry["to"]))
            applied += 1
    journal.unlink()
    return applied


def sweep_stale_temps(targets: Iterable[Path]) -> int:
    """Remove temp files left next to targets by a crash before a commit point.

    Only call this once no journal is pending. Returns the number removed.
    """
    removed = 0
    for target in targets:
        if not target.parent.is_dir():
            continue
        for tmp in target.parent.glob(f".{target.name}.*.tmp"):
            tmp.unlink(missing_ok=True)
            removed += 1
    if removed:
        logger.warning(f"Removed {removed} stale temp file(s) from an interrupted write")
    return removed


def recover_pending_commit(journal: Path, targets: Iterable[Path] = ()) -> bool:
    """Finish a commit interrupted after its commit point.

    Afterwards, stray temp files next to targets (and the journal) are
    swept. Returns True if a journal was found and rolled forward.

    Raises:
        OSError: If the pending renames cannot be applied
    """
    targets = [*targets, journal]
    if not journal.exists():
        sweep_stale_temps(targets)
        return False

    try:
        applied = _apply_journal(journal)
    except (json.JSONDecodeError, KeyError, AttributeError) as e:
        # Journal is written atomically, so this is outside interference
        logger.warning(f"Discarding unreadable commit journal {journal}: {e}")
        journal.unlink(missing_ok=True)
        sweep_stale_temps(targets)
        return False

    logger.warning(f"Completed interrupted commit from {journal} ({applied} file(s) renamed)")
    sweep_stale_temps(targets)
    return True
