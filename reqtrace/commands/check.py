"""
req check - Report verification status of every requirement.

By default the linked test files are scanned and compared against the
stored hashes. --offline compares stored hashes only.
"""

import json
import logging

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.hashing import short_hash
from reqtrace.reqs.store import open_stores, save_requirements
from reqtrace.reqs.verification import (
    VerificationStatus,
    check_coverage,
    find_orphan_tests,
    record_verification,
    summarize,
)

logger = logging.getLogger(__name__)


def _verification_to_dict(verification) -> dict:
    return {
        "status": verification.status.value,
        "stale": [c.link.spec for c in verification.stale_links],
        "missing": [c.link.spec for c in verification.missing_links],
        "unconfirmed": [c.link.spec for c in verification.unconfirmed_links],
    }


def _print_details(req_id: str, req, verification) -> None:
    print(f"  {req_id:<10} {verification.status.value:<11} {req.description}")
    for check in verification.links:
        link = check.link
        if check.missing:
            print(f"      missing      {link.spec}")
        elif check.stale:
            current = check.live.hash if check.live else link.hash
            if current != link.hash:
                print(f"      changed      {link.spec} ({short_hash(link.hash)} -> {short_hash(current)})")
            else:
                print(f"      reconfirm    {link.spec} (confirmed {short_hash(link.confirmation.hash)}, "
                      f"linked {short_hash(link.hash)})")
        elif not check.confirmed:
            print(f"      unconfirmed  {link.spec}")
        elif link.confirmation.verdict == "insufficient":
            print(f"      insufficient {link.spec}")


def cmd_check(args, project_config: ProjectConfig) -> int:
    """Classify requirements; optionally record the cache and list unlinked tests."""
    active, _ = open_stores(project_config)

    root = None if args.offline else project_config.root
    results = check_coverage(active, root=root, workers=project_config.scan_workers)

    if args.record:
        updated, changed = record_verification(active, results)
        if changed:
            save_requirements(project_config.requirements_path, updated)
            logger.info(f"Recorded verification for {changed} requirement(s)")
        active = updated

    orphans = []
    if args.orphans:
        orphans = find_orphan_tests(
            active, project_config.root, project_config.test_globs, project_config.scan_workers,
        )

    counts = summarize(results)

    if args.json:
        output = {
            "requirements": {req_id: _verification_to_dict(v) for req_id, v in results.items()},
            "summary": {status.value: counts.get(status, 0) for status in VerificationStatus},
        }
        if args.orphans:
            output["orphans"] = [
                {"file": t.file, "identifier": t.identifier, "line": t.line} for t in orphans
            ]
        print(json.dumps(output, indent=2))
    else:
        if not results:
            print("No requirements")
        for req_id, verification in results.items():
            if verification.status != VerificationStatus.VERIFIED:
                _print_details(req_id, active.requirements[req_id], verification)

        print()
        print("  ".join(f"{status.value}: {counts.get(status, 0)}" for status in VerificationStatus))

        if args.orphans:
            print()
            if orphans:
                print(f"Tests not linked to any requirement ({len(orphans)}):")
                for test in orphans:
                    print(f"  {test.file}:{test.line}  {test.identifier}")
            else:
                print("Every test is linked to a requirement")

    if args.strict and any(v.status != VerificationStatus.VERIFIED for v in results.values()):
        return 1
    return 0
