"""
req list - List requirements with their verification status.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.reqs.store import filter_requirements, open_stores
from reqtrace.reqs.verification import check_coverage


def cmd_list(args, project_config: ProjectConfig) -> int:
    """List active requirements, optionally filtered."""
    active, archive = open_stores(project_config)

    rows = filter_requirements(active, priority=args.priority, status=args.status, tag=args.tag)

    root = project_config.root if args.scan else None
    results = check_coverage(active, root=root, workers=project_config.scan_workers)
    if args.verification:
        rows = [(req_id, req) for req_id, req in rows if results[req_id].status.value == args.verification]

    if not rows:
        print("Requirements: none")
        if not active.requirements:
            print()
            print("Get started:")
            print("  req add \"<description>\"")
        return 0

    print(f"{'ID':<10} {'PRIORITY':<10} {'STATUS':<12} {'VERIFY':<11} {'TESTS':>5}  DESCRIPTION")
    print("-" * 80)
    for req_id, req in rows:
        description = req.description[:40] + "..." if len(req.description) > 40 else req.description
        tags = f" [{', '.join(req.tags)}]" if req.tags else ""
        verify = results[req_id].status.value
        print(f"{req_id:<10} {req.priority:<10} {req.status:<12} {verify:<11} {len(req.tests):>5}  {description}{tags}")
    print("-" * 80)

    summary = f"{len(rows)} requirement(s)"
    if archive.requirements:
        summary += f", {len(archive.requirements)} archived"
    print(summary)
    return 0
