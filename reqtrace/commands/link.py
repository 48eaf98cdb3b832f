"""
req link / unlink / confirm - Manage test links and their confirmations.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.hashing import short_hash
from reqtrace.reqs.store import (
    confirm_test,
    link_test,
    open_stores,
    parse_test_spec,
    save_requirements,
    unlink_test,
)


def cmd_link(args, project_config: ProjectConfig) -> int:
    """Link a test to a requirement, or re-link it after it changed."""
    file, identifier = parse_test_spec(args.test)
    active, _ = open_stores(project_config)

    updated, link, action = link_test(
        active,
        args.id,
        file,
        identifier,
        runner=args.runner,
        root=project_config.root,
        by=args.by,
    )

    if action == "unchanged":
        print(f"{link.spec} is already linked to {args.id} (hash {short_hash(link.hash)})")
        return 0

    save_requirements(project_config.requirements_path, updated)
    verb = "Re-linked" if action == "relinked" else "Linked"
    print(f"{verb} {link.spec} to {args.id} (hash {short_hash(link.hash)}, runner {link.runner})")
    if action == "relinked" and link.confirmation:
        print(f"Confirmation is now stale. Review and run: req confirm {args.id} {link.spec}")
    return 0


def cmd_unlink(args, project_config: ProjectConfig) -> int:
    """Remove a test link."""
    file, identifier = parse_test_spec(args.test)
    active, _ = open_stores(project_config)

    updated = unlink_test(active, args.id, file, identifier, root=project_config.root, by=args.by)
    save_requirements(project_config.requirements_path, updated)

    print(f"Unlinked {file}:{identifier} from {args.id}")
    return 0


def cmd_confirm(args, project_config: ProjectConfig) -> int:
    """Record a verdict on a linked test against its current body."""
    file, identifier = parse_test_spec(args.test)
    active, _ = open_stores(project_config)

    verdict = "insufficient" if args.insufficient else "sufficient"
    updated, changed = confirm_test(
        active,
        args.id,
        file,
        identifier,
        verdict=verdict,
        root=project_config.root,
        by=args.by,
        note=args.note,
        force=args.force,
    )

    if not changed:
        print(f"{file}:{identifier} is already confirmed ({verdict}) for {args.id}. Use --force to re-confirm.")
        return 0

    save_requirements(project_config.requirements_path, updated)
    print(f"Confirmed {file}:{identifier} for {args.id}: {verdict}")
    return 0
