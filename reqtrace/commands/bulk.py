"""
req bulk - Apply one change to several requirements.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import ValidationError
from reqtrace.reqs.archive import bulk_archive, commit_stores
from reqtrace.reqs.store import bulk_update, open_stores, save_requirements


def cmd_bulk(args, project_config: ProjectConfig) -> int:
    """Update or archive the given IDs. Unknown IDs are skipped."""
    active, archive = open_stores(project_config)

    if args.archive:
        if args.priority or args.status or args.add_tag or args.remove_tag:
            raise ValidationError("--archive cannot be combined with other changes")
        active, archive, count = bulk_archive(active, archive, args.ids, reason=args.reason, by=args.by)
        if count:
            commit_stores(project_config, active, archive)
        print(f"Archived {count} of {len(set(args.ids))} requirement(s)")
        return 0

    updated, count = bulk_update(
        active,
        args.ids,
        priority=args.priority,
        status=args.status,
        add_tags=args.add_tag or [],
        remove_tags=args.remove_tag or [],
        by=args.by,
    )
    if count:
        save_requirements(project_config.requirements_path, updated)
    print(f"Updated {count} of {len(set(args.ids))} requirement(s)")
    return 0
