"""
Archive and restore: move requirements between the active and archive stores.

A requirement lives in exactly one of the two stores. Moves are pure
transforms over both documents; commit_stores() writes the pair so that
either both files change or neither does.
"""

import copy
import logging
from datetime import datetime
from typing import Iterable, Optional

from reqtrace.lib.atomic import commit_documents
from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import ConflictError, NotFoundError, StoreIOError
from reqtrace.lib.validate import validate_before_write
from reqtrace.reqs.history import create_history_entry
from reqtrace.reqs.models import ArchiveFile, RequirementsFile
from reqtrace.reqs.store import SCHEMA_NAME

logger = logging.getLogger(__name__)

DEFAULT_BULK_REASON = "Bulk archive"


def archive_requirement(
    active: RequirementsFile,
    archive: ArchiveFile,
    req_id: str,
    reason: Optional[str] = None,
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, ArchiveFile]:
    """Move a requirement to the archive, appending an 'archived' entry.

    Raises:
        NotFoundError: If req_id is not in the active store
        ConflictError: If req_id is already in the archive
    """
    if req_id not in active.requirements:
        raise NotFoundError(f"Requirement {req_id} not found")
    if req_id in archive.requirements:
        raise ConflictError(f"Requirement {req_id} already exists in archive")

    new_active = copy.deepcopy(active)
    new_archive = copy.deepcopy(archive)

    req = new_active.requirements.pop(req_id)
    req.history.append(create_history_entry("archived", reason or "", by, now))
    new_archive.requirements[req_id] = req

    logger.info(f"Archived {req_id}")
    return new_active, new_archive


def restore_requirement(
    active: RequirementsFile,
    archive: ArchiveFile,
    req_id: str,
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, ArchiveFile]:
    """Move a requirement back to the active store, appending a 'restored' entry.

    Raises:
        NotFoundError: If req_id is not in the archive
        ConflictError: If req_id already exists in the active store
    """
    if req_id not in archive.requirements:
        raise NotFoundError(f"Requirement {req_id} not found in archive")
    if req_id in active.requirements:
        raise ConflictError(f"Requirement {req_id} already exists in active requirements")

    new_active = copy.deepcopy(active)
    new_archive = copy.deepcopy(archive)

    req = new_archive.requirements.pop(req_id)
    req.history.append(create_history_entry("restored", "", by, now))
    new_active.requirements[req_id] = req

    logger.info(f"Restored {req_id}")
    return new_active, new_archive


def bulk_archive(
    active: RequirementsFile,
    archive: ArchiveFile,
    ids: Iterable[str],
    reason: Optional[str] = None,
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, ArchiveFile, int]:
    """
    Archive several requirements with one reason.

    IDs that are not active are skipped.

    Returns:
        (active, archive, number archived)
    """
    reason = reason or DEFAULT_BULK_REASON
    count = 0

    for req_id in dict.fromkeys(ids):
        if req_id not in active.requirements or req_id in archive.requirements:
            logger.debug(f"Bulk archive: skipping {req_id}")
            continue
        active, archive = archive_requirement(active, archive, req_id, reason, by, now)
        count += 1

    return active, archive, count


def commit_stores(config: ProjectConfig, active: RequirementsFile, archive: ArchiveFile) -> None:
    """Validate and write both stores as one commit.

    Raises:
        SchemaValidationError: If either document is invalid (nothing written)
        StoreIOError: If the write fails
    """
    writes = [
        (config.requirements_path, active.to_dict()),
        (config.archive_path, archive.to_dict()),
    ]
    for path, data in writes:
        validate_before_write(data, SCHEMA_NAME, path)

    try:
        commit_documents(writes, config.journal_path)
    except OSError as e:
        raise StoreIOError(config.journal_path, f"Could not commit stores: {e}") from e
