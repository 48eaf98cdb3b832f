"""
Requirements module for reqtrace.

Holds the requirement stores, the status lifecycle, verification of linked
tests and moves between the active and archive stores.
"""

from reqtrace.reqs.models import (
    ArchiveFile,
    Requirement,
    RequirementsFile,
    TestLink,
)
from reqtrace.reqs.store import (
    add_requirement,
    link_test,
    load_archive,
    load_requirements,
    open_stores,
    save_requirements,
    unlink_test,
)
from reqtrace.reqs.verification import (
    VerificationStatus,
    check_coverage,
    classify,
)
from reqtrace.reqs.archive import (
    archive_requirement,
    commit_stores,
    restore_requirement,
)

__all__ = [
    "ArchiveFile",
    "Requirement",
    "RequirementsFile",
    "TestLink",
    "add_requirement",
    "link_test",
    "load_archive",
    "load_requirements",
    "open_stores",
    "save_requirements",
    "unlink_test",
    "VerificationStatus",
    "check_coverage",
    "classify",
    "archive_requirement",
    "commit_stores",
    "restore_requirement",
]
