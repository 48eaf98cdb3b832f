"""
Requirement store: document I/O and the operations that change it.

Documents:
  <root>/requirements.json          active store
  <root>/requirements.archive.json  archive store (see archive.py)

Every operation here is a pure transform: it takes the loaded documents,
returns new ones and leaves its inputs untouched. Arguments are checked
before anything is copied, so a failing call changes nothing. Operations
that find nothing to change return the input document itself.
"""

import copy
import json
import logging
import re
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, Optional

from reqtrace.lib.atomic import recover_pending_commit, write_json_atomic
from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.constants import (
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    ID_NUMBER_WIDTH,
    PRIORITIES,
    SOURCE_TYPES,
    STATUSES,
    VERDICTS,
)
from reqtrace.lib.errors import ConflictError, NotFoundError, StoreIOError, ValidationError
from reqtrace.lib.extractor import find_test, relative_test_path
from reqtrace.lib.hashing import short_hash
from reqtrace.lib.validate import validate, validate_before_write
from reqtrace.reqs.history import create_history_entry, timestamp
from reqtrace.reqs.lifecycle import RequirementLifecycle
from reqtrace.reqs.models import (
    ArchiveFile,
    Confirmation,
    GithubIssue,
    Requirement,
    RequirementsFile,
    Source,
    StoreConfig,
    TestLink,
    TestRunner,
)

logger = logging.getLogger(__name__)

SCHEMA_NAME = "store"

_ID_PATTERN = re.compile(r'^([A-Z][A-Z0-9]*)-(\d+)$')
_TEST_SPEC_PATTERN = re.compile(r'^(.+?\.[A-Za-z0-9]+):(.+)$')

DEFAULT_RUNNER = "default"


# === Document I/O ===

def _read_document(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StoreIOError(path, f"Invalid JSON: {e}") from None
    except OSError as e:
        raise StoreIOError(path, f"Could not read: {e}") from e
    validate(data, SCHEMA_NAME)
    return data


def _write_document(path: Path, data: dict) -> None:
    validate_before_write(data, SCHEMA_NAME, path)
    try:
        write_json_atomic(path, data)
    except OSError as e:
        raise StoreIOError(path, f"Could not write: {e}") from e


def load_requirements(path: Path) -> RequirementsFile:
    """Load the active store.

    Raises:
        NotFoundError: If the file doesn't exist (project not initialized)
        StoreIOError: If the file can't be read or parsed
        SchemaValidationError: If the document is invalid
    """
    if not path.exists():
        raise NotFoundError(f"{path.name} not found. Run 'req init' first.")
    return RequirementsFile.from_dict(_read_document(path))


def load_archive(path: Path) -> ArchiveFile:
    """Load the archive store. A missing archive is an empty one."""
    if not path.exists():
        return ArchiveFile()
    return ArchiveFile.from_dict(_read_document(path))


def save_requirements(path: Path, store: RequirementsFile) -> None:
    """Validate and atomically write the active store."""
    _write_document(path, store.to_dict())


def save_archive(path: Path, archive: ArchiveFile) -> None:
    """Validate and atomically write the archive store."""
    _write_document(path, archive.to_dict())


def open_stores(config: ProjectConfig) -> tuple[RequirementsFile, ArchiveFile]:
    """Load both stores, finishing any commit that was interrupted first."""
    try:
        recover_pending_commit(config.journal_path, [config.requirements_path, config.archive_path])
    except OSError as e:
        raise StoreIOError(config.journal_path, f"Could not finish interrupted commit: {e}") from e
    return load_requirements(config.requirements_path), load_archive(config.archive_path)


def init_store(config: ProjectConfig, runners: Optional[list[TestRunner]] = None,
               force: bool = False) -> RequirementsFile:
    """Create an empty requirements.json.

    Reinitializing with force replaces the prefix and runners only. The
    requirements stay, and nextId stays above every ID issued in either
    store.

    Raises:
        ConflictError: If the file already exists and force is not set
    """
    path = config.requirements_path
    if path.exists() and not force:
        raise ConflictError(f"{path.name} already exists")

    store = RequirementsFile(config=StoreConfig(
        id_prefix=config.id_prefix,
        test_runners=list(runners or []),
    ))
    if path.exists():
        active, archive = open_stores(config)
        store.requirements = active.requirements
        store.config.github_repo = active.config.github_repo
        store.config.github_auto_detected = active.config.github_auto_detected
        store.config.next_id = active.config.next_id
        _, store.config.next_id = next_requirement_id(store, archive)
        logger.info(f"Reinitializing {path}: keeping {len(store.requirements)} requirements")

    save_requirements(path, store)
    logger.info(f"Initialized {path}")
    return store


# === Lookups ===

def parse_test_spec(spec: str) -> tuple[str, str]:
    """Split 'file:identifier'. The identifier may itself contain colons.

    Raises:
        ValidationError: If there is no file or no identifier
    """
    match = _TEST_SPEC_PATTERN.match(spec)
    if not match:
        raise ValidationError(f"Invalid test spec: {spec}. Format: file:identifier")
    return match.group(1), match.group(2)


def requirement_sort_key(req_id: str) -> tuple[str, int]:
    match = _ID_PATTERN.match(req_id)
    if not match:
        return (req_id, 0)
    return (match.group(1), int(match.group(2)))


def next_requirement_id(active: RequirementsFile, archive: ArchiveFile) -> tuple[str, int]:
    """Next unused ID and its number.

    Higher than every ID with the store's prefix in either store and never
    below config.next_id, so archived IDs are never handed out again.
    """
    prefix = active.config.id_prefix
    highest = 0
    for req_id in list(active.requirements) + list(archive.requirements):
        match = _ID_PATTERN.match(req_id)
        if match and match.group(1) == prefix:
            highest = max(highest, int(match.group(2)))

    number = max(active.config.next_id, highest + 1)
    return f"{prefix}-{number:0{ID_NUMBER_WIDTH}d}", number


def get_requirement(store: RequirementsFile, req_id: str) -> Requirement:
    """Raises NotFoundError if req_id is not in the active store."""
    requirement = store.requirements.get(req_id)
    if requirement is None:
        raise NotFoundError(f"Requirement {req_id} not found")
    return requirement


def find_requirement(active: RequirementsFile, archive: ArchiveFile,
                     req_id: str) -> tuple[Requirement, bool]:
    """Find a requirement in either store. Returns (requirement, archived)."""
    if req_id in active.requirements:
        return active.requirements[req_id], False
    if req_id in archive.requirements:
        return archive.requirements[req_id], True
    raise NotFoundError(f"Requirement {req_id} not found")


def filter_requirements(
    store: RequirementsFile,
    priority: Optional[str] = None,
    status: Optional[str] = None,
    tag: Optional[str] = None,
) -> list[tuple[str, Requirement]]:
    """Requirements matching every given filter, in ID order."""
    result = []
    for req_id in sorted(store.requirements, key=requirement_sort_key):
        req = store.requirements[req_id]
        if priority and req.priority != priority:
            continue
        if status and req.status != status:
            continue
        if tag and tag not in req.tags:
            continue
        result.append((req_id, req))
    return result


# === Argument checks ===

def _check_choice(value: str, choices: tuple[str, ...], label: str) -> None:
    if value not in choices:
        raise ValidationError(f"Invalid {label}: {value}. Valid {label}s: {', '.join(choices)}")


def _check_description(description: str) -> str:
    description = (description or "").strip()
    if not description:
        raise ValidationError("Description is required")
    return description


def _check_tags(tags: Iterable[str]) -> list[str]:
    tags = list(tags or [])
    for tag in tags:
        if not isinstance(tag, str) or not tag.strip():
            raise ValidationError("Tags must be non-empty strings")
    return [t.strip() for t in tags]


def _link_path(file: str, root: Path) -> str:
    """File as stored in test links, whether given relative to root or absolute."""
    path = Path(file)
    if not path.is_absolute():
        path = root / path
    return relative_test_path(path, root)


def _resolve_runner(config: StoreConfig, file: str, runner: Optional[str]) -> str:
    names = [r.name for r in config.test_runners]
    if runner:
        if names and runner not in names:
            raise ValidationError(f"Unknown runner: {runner}. Configured runners: {', '.join(names)}")
        return runner

    for r in config.test_runners:
        if fnmatch(file, r.pattern) or fnmatch(file, r.pattern.removeprefix("**/")):
            return r.name
    return names[0] if names else DEFAULT_RUNNER


# === In-place changes on a copied requirement ===

def _change_priority(req: Requirement, priority: str, by, now) -> bool:
    old = req.priority or DEFAULT_PRIORITY
    if old == priority:
        return False
    req.priority = priority
    req.history.append(create_history_entry("priority_changed", f"{old} -> {priority}", by, now))
    return True


def _change_status(req_id: str, req: Requirement, status: str, by, now) -> bool:
    return RequirementLifecycle(req_id, req).move_to(status, by=by, now=now)


def _change_tags(req: Requirement, add: list[str], remove: list[str], clear: bool, by, now) -> bool:
    old = list(req.tags)
    new = [] if clear else list(old)

    for tag in add:
        if tag not in new:
            new.append(tag)
    for tag in remove:
        if tag in new:
            new.remove(tag)

    added = [t for t in new if t not in old]
    removed = [t for t in old if t not in new]
    if not added and not removed:
        return False

    parts = []
    if added:
        parts.append(f"added: {', '.join(added)}")
    if removed:
        parts.append(f"removed: {', '.join(removed)}")

    req.tags = new
    req.history.append(create_history_entry("tags_changed", "; ".join(parts), by, now))
    return True


# === Operations ===

def add_requirement(
    active: RequirementsFile,
    archive: ArchiveFile,
    description: str,
    source_type: str = "manual",
    reference: str = "",
    priority: str = DEFAULT_PRIORITY,
    status: str = DEFAULT_STATUS,
    tags: Optional[Iterable[str]] = None,
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, str]:
    """Create a requirement in the active store.

    Returns:
        (updated active store, new requirement ID)
    """
    description = _check_description(description)
    _check_choice(source_type, SOURCE_TYPES, "source type")
    _check_choice(priority, PRIORITIES, "priority")
    _check_choice(status, STATUSES, "status")
    tag_list = list(dict.fromkeys(_check_tags(tags)))

    req_id, number = next_requirement_id(active, archive)
    if req_id in active.requirements or req_id in archive.requirements:
        raise ConflictError(f"Requirement {req_id} already exists")

    source_note = f"source: {source_type}" + (f" ({reference})" if reference else "")
    requirement = Requirement(
        description=description,
        source=Source(type=source_type, reference=reference or "", captured_at=timestamp(now)),
        priority=priority,
        status=status,
        tags=tag_list,
        history=[create_history_entry("created", source_note, by, now)],
    )

    updated = copy.deepcopy(active)
    updated.requirements[req_id] = requirement
    updated.config.next_id = number + 1

    logger.info(f"Created {req_id}")
    return updated, req_id


def link_test(
    active: RequirementsFile,
    req_id: str,
    file: str,
    identifier: str,
    runner: Optional[str] = None,
    root: Path = Path("."),
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, TestLink, str]:
    """
    Link a test to a requirement, snapshotting the hash of its body.

    Linking an already linked test is an explicit re-link: the stored hash
    is replaced with the current one. Any confirmation is kept, so a changed
    test shows up as stale until it is confirmed again.

    Returns:
        (updated store, link, action) where action is "linked", "relinked"
        or "unchanged"

    Raises:
        NotFoundError: Unknown requirement, missing file or identifier
        ValidationError: Unknown runner name
    """
    get_requirement(active, req_id)
    runner_name = _resolve_runner(active.config, _link_path(file, root), runner)
    test = find_test(root, file, identifier)

    if test.degraded:
        logger.warning(
            f"Could not find the end of '{identifier}' in {test.file}; "
            "its hash covers the rest of the file"
        )

    existing = active.requirements[req_id].find_link(test.file, identifier)
    if existing and existing.hash == test.hash:
        return active, existing, "unchanged"

    updated = copy.deepcopy(active)
    req = updated.requirements[req_id]

    if existing:
        link = req.find_link(test.file, identifier)
        old_hash = link.hash
        link.hash = test.hash
        link.linked_at = timestamp(now)
        link.linked_by = by or link.linked_by
        req.history.append(create_history_entry(
            "modified",
            f"Re-linked {link.spec}: hash {short_hash(old_hash)} -> {short_hash(test.hash)}",
            by, now,
        ))
        return updated, link, "relinked"

    link = TestLink(
        file=test.file,
        identifier=identifier,
        runner=runner_name,
        hash=test.hash,
        linked_at=timestamp(now),
        linked_by=by or None,
    )
    req.tests.append(link)
    req.history.append(create_history_entry("linked", link.spec, by, now))
    return updated, link, "linked"


def unlink_test(
    active: RequirementsFile,
    req_id: str,
    file: str,
    identifier: str,
    root: Path = Path("."),
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> RequirementsFile:
    """Remove a test link.

    Raises:
        NotFoundError: Unknown requirement or no such link
    """
    file = _link_path(file, root)
    if get_requirement(active, req_id).find_link(file, identifier) is None:
        raise NotFoundError(f"Test {file}:{identifier} is not linked to {req_id}")

    updated = copy.deepcopy(active)
    req = updated.requirements[req_id]
    req.tests = [t for t in req.tests if t.key != (file, identifier)]
    req.history.append(create_history_entry("unlinked", f"{file}:{identifier}", by, now))
    return updated


def confirm_test(
    active: RequirementsFile,
    req_id: str,
    file: str,
    identifier: str,
    verdict: str = "sufficient",
    root: Path = Path("."),
    by: Optional[str] = None,
    note: Optional[str] = None,
    force: bool = False,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, bool]:
    """
    Record an assessment of a linked test against its current body.

    The test must be unchanged since it was linked; otherwise it has to be
    re-linked first so the link hash and the confirmation hash agree.

    Returns:
        (updated store, changed)

    Raises:
        NotFoundError: Unknown requirement, link, file or identifier
        ConflictError: Test body changed since it was linked
        ValidationError: Unknown verdict
    """
    _check_choice(verdict, VERDICTS, "verdict")
    file = _link_path(file, root)
    link = get_requirement(active, req_id).find_link(file, identifier)
    if link is None:
        raise NotFoundError(
            f"Test {file}:{identifier} is not linked to {req_id}. "
            f"Link it first with: req link {req_id} {file}:{identifier}"
        )

    live = find_test(root, file, identifier)
    if live.hash != link.hash:
        raise ConflictError(
            f"Test {link.spec} changed since it was linked. "
            f"Re-link it with: req link {req_id} {link.spec}"
        )

    current = link.confirmation
    if current and current.hash == live.hash and current.verdict == verdict and not force:
        return active, False

    was_stale = current is not None and current.hash != live.hash

    updated = copy.deepcopy(active)
    req = updated.requirements[req_id]
    target = req.find_link(file, identifier)
    target.confirmation = Confirmation(
        verdict=verdict,
        hash=live.hash,
        confirmed_at=timestamp(now),
        confirmed_by=by or None,
        note=note or None,
    )

    detail = (
        f"Re-confirmed test (was stale): {target.spec}" if was_stale
        else f"Confirmed test ({verdict}): {target.spec}"
    )
    req.history.append(create_history_entry("modified", detail, by, now))
    return updated, True


def set_priority(active: RequirementsFile, req_id: str, priority: str,
                 by: Optional[str] = None, now: Optional[datetime] = None) -> tuple[RequirementsFile, bool]:
    """Change priority. Returns (store, changed)."""
    _check_choice(priority, PRIORITIES, "priority")
    if get_requirement(active, req_id).priority == priority:
        return active, False

    updated = copy.deepcopy(active)
    _change_priority(updated.requirements[req_id], priority, by, now)
    return updated, True


def set_status(active: RequirementsFile, req_id: str, status: str,
               by: Optional[str] = None, now: Optional[datetime] = None) -> tuple[RequirementsFile, bool]:
    """Change status through the lifecycle machine. Returns (store, changed)."""
    _check_choice(status, STATUSES, "status")
    if get_requirement(active, req_id).status == status:
        return active, False

    updated = copy.deepcopy(active)
    _change_status(req_id, updated.requirements[req_id], status, by, now)
    return updated, True


def update_tags(
    active: RequirementsFile,
    req_id: str,
    add: Iterable[str] = (),
    remove: Iterable[str] = (),
    clear: bool = False,
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, bool]:
    """Add/remove tags (clear drops all existing tags first). Returns (store, changed)."""
    add = _check_tags(add)
    remove = _check_tags(remove)
    get_requirement(active, req_id)

    updated = copy.deepcopy(active)
    if not _change_tags(updated.requirements[req_id], add, remove, clear, by, now):
        return active, False
    return updated, True


def set_description(active: RequirementsFile, req_id: str, description: str,
                    by: Optional[str] = None, now: Optional[datetime] = None) -> tuple[RequirementsFile, bool]:
    """Change description. Returns (store, changed)."""
    description = _check_description(description)
    old = get_requirement(active, req_id).description
    if old == description:
        return active, False

    updated = copy.deepcopy(active)
    req = updated.requirements[req_id]
    req.description = description
    req.history.append(create_history_entry("modified", f"description: {old} -> {description}", by, now))
    return updated, True


def set_source(active: RequirementsFile, req_id: str, source_type: str, reference: str = "",
               by: Optional[str] = None, now: Optional[datetime] = None) -> tuple[RequirementsFile, bool]:
    """Change where the requirement came from. Returns (store, changed)."""
    _check_choice(source_type, SOURCE_TYPES, "source type")
    reference = reference or ""
    old = get_requirement(active, req_id).source
    if old.type == source_type and old.reference == reference:
        return active, False

    updated = copy.deepcopy(active)
    req = updated.requirements[req_id]
    req.source = Source(type=source_type, reference=reference, captured_at=timestamp(now))
    req.history.append(create_history_entry(
        "modified",
        f"source: {old.type}:{old.reference} -> {source_type}:{reference}",
        by, now,
    ))
    return updated, True


def set_github_issue(active: RequirementsFile, req_id: str, number: Optional[int],
                     by: Optional[str] = None, now: Optional[datetime] = None) -> tuple[RequirementsFile, bool]:
    """Link (number) or unlink (None) a GitHub issue. Returns (store, changed)."""
    if number is not None and (not isinstance(number, int) or number < 1):
        raise ValidationError(f"Invalid issue number: {number}")

    current = get_requirement(active, req_id).github_issue
    if number is None and current is None:
        return active, False
    if current is not None and current.number == number:
        return active, False

    updated = copy.deepcopy(active)
    req = updated.requirements[req_id]
    if number is None:
        req.github_issue = None
        req.history.append(create_history_entry("github_unlinked", f"#{current.number}", by, now))
    else:
        req.github_issue = GithubIssue(number=number)
        req.history.append(create_history_entry("github_linked", f"#{number}", by, now))
    return updated, True


def apply_issue_states(active: RequirementsFile, states: dict[int, dict],
                       now: Optional[datetime] = None) -> tuple[RequirementsFile, int]:
    """
    Store issue states fetched by the GitHub sync.

    Args:
        states: issue number -> {"state": ..., "title": ...}

    Returns:
        (updated store, number of requirements updated)
    """
    updated = copy.deepcopy(active)
    synced_at = timestamp(now)
    count = 0

    for req in updated.requirements.values():
        issue = req.github_issue
        if issue is None or issue.number not in states:
            continue
        info = states[issue.number]
        issue.state = info.get("state")
        issue.title = info.get("title")
        issue.last_synced = synced_at
        count += 1

    if count == 0:
        return active, 0
    return updated, count


def bulk_update(
    active: RequirementsFile,
    ids: Iterable[str],
    priority: Optional[str] = None,
    status: Optional[str] = None,
    add_tags: Iterable[str] = (),
    remove_tags: Iterable[str] = (),
    by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[RequirementsFile, int]:
    """
    Apply the same changes to several requirements.

    Unknown IDs are skipped. Each requirement gets one history entry per
    change category that actually changed it.

    Returns:
        (updated store, number of requirements actually modified)
    """
    if priority:
        _check_choice(priority, PRIORITIES, "priority")
    if status:
        _check_choice(status, STATUSES, "status")
    add_tags = _check_tags(add_tags)
    remove_tags = _check_tags(remove_tags)
    if not (priority or status or add_tags or remove_tags):
        raise ValidationError("Nothing to change: give a priority, status or tags")

    updated = copy.deepcopy(active)
    modified = 0

    for req_id in dict.fromkeys(ids):
        req = updated.requirements.get(req_id)
        if req is None:
            logger.debug(f"Bulk update: skipping unknown {req_id}")
            continue

        changed = False
        if priority:
            changed |= _change_priority(req, priority, by, now)
        if status:
            changed |= _change_status(req_id, req, status, by, now)
        if add_tags or remove_tags:
            changed |= _change_tags(req, add_tags, remove_tags, False, by, now)
        if changed:
            modified += 1

    if modified == 0:
        return active, 0
    return updated, modified
