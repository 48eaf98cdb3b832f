"""
req set / tag / describe / source - Edit requirement fields.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import ValidationError
from reqtrace.reqs.store import (
    open_stores,
    save_requirements,
    set_description,
    set_priority,
    set_source,
    set_status,
    update_tags,
)


def _save_if_changed(project_config: ProjectConfig, store, changed: bool, req_id: str, message: str) -> int:
    if not changed:
        print(f"{req_id}: no changes")
        return 0
    save_requirements(project_config.requirements_path, store)
    print(message)
    return 0


def cmd_set(args, project_config: ProjectConfig) -> int:
    """Set priority and/or status."""
    if not args.priority and not args.status:
        raise ValidationError("Nothing to set: give --priority and/or --status")

    active, _ = open_stores(project_config)
    changed = False
    store = active

    if args.priority:
        store, did = set_priority(store, args.id, args.priority, by=args.by)
        changed |= did
    if args.status:
        store, did = set_status(store, args.id, args.status, by=args.by)
        changed |= did

    req = store.requirements[args.id]
    return _save_if_changed(
        project_config, store, changed, args.id,
        f"{args.id}: priority {req.priority}, status {req.status}",
    )


def cmd_tag(args, project_config: ProjectConfig) -> int:
    """Add or remove tags."""
    if not (args.add or args.remove or args.clear):
        raise ValidationError("Nothing to change: give tags to add, --remove or --clear")

    active, _ = open_stores(project_config)
    store, changed = update_tags(
        active, args.id, add=args.add or [], remove=args.remove or [], clear=args.clear, by=args.by,
    )

    tags = store.requirements[args.id].tags
    return _save_if_changed(
        project_config, store, changed, args.id,
        f"{args.id}: tags {', '.join(tags) if tags else '(none)'}",
    )


def cmd_describe(args, project_config: ProjectConfig) -> int:
    """Replace the description."""
    active, _ = open_stores(project_config)
    store, changed = set_description(active, args.id, args.description, by=args.by)
    return _save_if_changed(project_config, store, changed, args.id, f"{args.id}: description updated")


def cmd_source(args, project_config: ProjectConfig) -> int:
    """Replace the source reference."""
    active, _ = open_stores(project_config)
    store, changed = set_source(active, args.id, args.source_type, args.reference or "", by=args.by)
    return _save_if_changed(project_config, store, changed, args.id, f"{args.id}: source updated")
