"""
Verification status of requirements.

classify() is a pure function of a requirement and, optionally, a live scan
of the linked test files. First matching rule wins:

    n/a         no linked tests
    orphaned    (live scan only) a linked file or identifier is gone
    stale       a link's confirmation or live body disagrees with the link hash
    verified    every link carries a confirmation
    unverified  otherwise

Without a live scan only the stored hashes are compared, so a requirement
is never reported orphaned offline.
"""

import copy
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping, Optional

from reqtrace.lib.constants import DEFAULT_SCAN_WORKERS
from reqtrace.lib.extractor import ExtractedTest, discover_test_files, extract_tests_from_file
from reqtrace.reqs.history import timestamp
from reqtrace.reqs.models import Requirement, RequirementsFile, TestLink
from reqtrace.reqs.store import requirement_sort_key

logger = logging.getLogger(__name__)

LiveTests = Mapping[tuple[str, str], ExtractedTest]


class VerificationStatus(str, Enum):
    NA = "n/a"
    ORPHANED = "orphaned"
    STALE = "stale"
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


@dataclass
class LinkCheck:
    """How one link looks against its confirmation and the live scan."""
    link: TestLink
    scanned: bool = False
    live: Optional[ExtractedTest] = None

    @property
    def missing(self) -> bool:
        return self.scanned and self.live is None

    @property
    def confirmed(self) -> bool:
        return self.link.confirmation is not None

    @property
    def stale(self) -> bool:
        confirmation = self.link.confirmation
        if confirmation is not None and confirmation.hash != self.link.hash:
            return True
        return self.live is not None and self.live.hash != self.link.hash

    @property
    def degraded(self) -> bool:
        return self.live is not None and self.live.degraded


@dataclass
class Verification:
    status: VerificationStatus
    links: list[LinkCheck] = field(default_factory=list)

    @property
    def stale_links(self) -> list[LinkCheck]:
        return [c for c in self.links if c.stale]

    @property
    def missing_links(self) -> list[LinkCheck]:
        return [c for c in self.links if c.missing]

    @property
    def unconfirmed_links(self) -> list[LinkCheck]:
        return [c for c in self.links if not c.confirmed]


def classify(requirement: Requirement, live: Optional[LiveTests] = None) -> Verification:
    """Compute the verification status of one requirement.

    Args:
        requirement: The requirement to classify
        live: Tests extracted from the linked files, keyed by (file, identifier).
            None skips the live comparison.
    """
    checks = [
        LinkCheck(link=link, scanned=live is not None, live=live.get(link.key) if live is not None else None)
        for link in requirement.tests
    ]

    if not checks:
        status = VerificationStatus.NA
    elif any(c.missing for c in checks):
        status = VerificationStatus.ORPHANED
    elif any(c.stale for c in checks):
        status = VerificationStatus.STALE
    elif all(c.confirmed for c in checks):
        status = VerificationStatus.VERIFIED
    else:
        status = VerificationStatus.UNVERIFIED

    return Verification(status=status, links=checks)


def _scan_file(root: Path, file: str) -> list[ExtractedTest]:
    path = root / file
    if not path.is_file():
        return []
    return extract_tests_from_file(path, root)


def _scan_files(root: Path, files: Iterable[str], workers: int) -> dict[tuple[str, str], ExtractedTest]:
    live: dict[tuple[str, str], ExtractedTest] = {}
    files = sorted(set(files))
    if not files:
        return live

    # Workers only read; results are merged here after each completes
    with ThreadPoolExecutor(max_workers=max(1, workers)) as executor:
        future_to_file = {executor.submit(_scan_file, root, f): f for f in files}

        for future in as_completed(future_to_file):
            file = future_to_file[future]
            try:
                tests = future.result()
            except OSError as e:
                logger.warning(f"Could not read test file {file}: {e}")
                continue

            for test in tests:
                if test.degraded:
                    logger.warning(
                        f"Could not find the end of '{test.identifier}' in {test.file}; "
                        "its hash covers the rest of the file"
                    )
                live[(test.file, test.identifier)] = test

    return live


def scan_links(requirements: Iterable[Requirement], root: Path,
               workers: int = DEFAULT_SCAN_WORKERS) -> dict[tuple[str, str], ExtractedTest]:
    """Extract every distinct file linked by the given requirements.

    Missing and unreadable files contribute no tests, so their links show
    up as missing in classify().
    """
    files = {link.file for req in requirements for link in req.tests}
    return _scan_files(root, files, workers)


def check_coverage(active: RequirementsFile, root: Optional[Path] = None,
                   workers: int = DEFAULT_SCAN_WORKERS) -> dict[str, Verification]:
    """Classify every active requirement, in ID order.

    With a root the linked files are scanned first; without one only the
    stored hashes are compared.
    """
    live = scan_links(active.requirements.values(), root, workers) if root is not None else None
    return {
        req_id: classify(active.requirements[req_id], live)
        for req_id in sorted(active.requirements, key=requirement_sort_key)
    }


def summarize(results: Mapping[str, Verification]) -> Counter:
    """Count requirements per verification status."""
    return Counter(v.status for v in results.values())


def record_verification(active: RequirementsFile, results: Mapping[str, Verification],
                        now: Optional[datetime] = None) -> tuple[RequirementsFile, int]:
    """
    Write the lastVerified cache from finished classification results.

    Verified requirements get the current time; everything else has the
    cache cleared. Requirements not in results are left alone.

    Returns:
        (updated store, number of requirements whose cache changed)
    """
    updated = copy.deepcopy(active)
    stamp = timestamp(now)
    changed = 0

    for req_id, verification in results.items():
        req = updated.requirements.get(req_id)
        if req is None:
            continue
        value = stamp if verification.status == VerificationStatus.VERIFIED else None
        if req.last_verified != value:
            req.last_verified = value
            changed += 1

    if changed == 0:
        return active, 0
    return updated, changed


def find_orphan_tests(active: RequirementsFile, root: Path, patterns: list[str],
                      workers: int = DEFAULT_SCAN_WORKERS) -> list[ExtractedTest]:
    """Tests under root that no active requirement links, by file then line."""
    files = [p.relative_to(root).as_posix() for p in discover_test_files(root, patterns)]
    live = _scan_files(root, files, workers)

    linked = {link.key for req in active.requirements.values() for link in req.tests}
    orphans = [test for key, test in live.items() if key not in linked]
    return sorted(orphans, key=lambda t: (t.file, t.line, t.identifier))
