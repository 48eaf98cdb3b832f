"""
req add - Create a requirement.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.reqs.store import add_requirement, open_stores, save_requirements


def cmd_add(args, project_config: ProjectConfig) -> int:
    """Create a requirement and print its ID."""
    active, archive = open_stores(project_config)

    active, req_id = add_requirement(
        active,
        archive,
        args.description,
        source_type=args.source_type,
        reference=args.reference or "",
        priority=args.priority,
        status=args.status,
        tags=args.tag or [],
        by=args.by,
    )
    save_requirements(project_config.requirements_path, active)

    print(f"Created {req_id}: {active.requirements[req_id].description}")
    print()
    print(f"Link a test: req link {req_id} <file>:<test name>")
    return 0
