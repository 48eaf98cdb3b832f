"""
req init - Create requirements.json in the project root.
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import ValidationError
from reqtrace.reqs.models import TestRunner
from reqtrace.reqs.store import init_store

DEFAULT_RUNNER = TestRunner(name="bun", command="bun test", pattern="**/*.test.ts")


def parse_runner(value: str) -> TestRunner:
    """Parse 'name=command=pattern', e.g. 'vitest=npx vitest run=**/*.test.ts'."""
    parts = value.split("=", 2)
    if len(parts) != 3 or not all(p.strip() for p in parts):
        raise ValidationError(f"Invalid runner: {value}. Format: name=command=pattern")
    name, command, pattern = (p.strip() for p in parts)
    return TestRunner(name=name, command=command, pattern=pattern)


def cmd_init(args, project_config: ProjectConfig) -> int:
    """Initialize the active store."""
    path = project_config.requirements_path
    if path.exists() and not args.force:
        print(f"{path.name} already exists.")
        print("Use --force to reset the ID prefix and runners (requirements are kept).")
        return 1

    runners = [parse_runner(r) for r in (args.runner or [])] or [DEFAULT_RUNNER]
    store = init_store(project_config, runners, force=args.force)

    print(f"Created {path}")
    print(f"  ID prefix: {store.config.id_prefix}")
    for runner in store.config.test_runners:
        print(f"  Runner:    {runner.name} ({runner.command}) for {runner.pattern}")
    print()
    print("Next: req add \"<description>\"")
    return 0
