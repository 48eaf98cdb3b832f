"""
req archive / restore - Move requirements between the active and archive stores.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.reqs.archive import archive_requirement, commit_stores, restore_requirement
from reqtrace.reqs.models import RequirementsFile
from reqtrace.reqs.store import filter_requirements, open_stores


def cmd_archive(args, project_config: ProjectConfig) -> int:
    """Archive one requirement, or list the archive when no ID is given."""
    active, archive = open_stores(project_config)

    if not args.id:
        if not archive.requirements:
            print("No archived requirements")
            return 0

        rows = filter_requirements(RequirementsFile(requirements=archive.requirements))
        print(f"{'ID':<10} {'PRIORITY':<10} {'STATUS':<12} DESCRIPTION")
        print("-" * 72)
        for req_id, req in rows:
            print(f"{req_id:<10} {req.priority:<10} {req.status:<12} {req.description}")
        print("-" * 72)
        print(f"{len(rows)} archived requirement(s)")
        return 0

    active, archive = archive_requirement(active, archive, args.id, reason=args.reason, by=args.by)
    commit_stores(project_config, active, archive)

    print(f"Archived {args.id}")
    print(f"Restore with: req restore {args.id}")
    return 0


def cmd_restore(args, project_config: ProjectConfig) -> int:
    """Move an archived requirement back to the active store."""
    active, archive = open_stores(project_config)

    active, archive = restore_requirement(active, archive, args.id, by=args.by)
    commit_stores(project_config, active, archive)

    print(f"Restored {args.id}")
    return 0
