"""
req issue - Link requirements to GitHub issues and store fetched issue states.

Issue states are fetched outside reqtrace, e.g.:
    gh issue list --state all --json number,state,title > issues.json
    req issue apply --states issues.json
"""

import json
from pathlib import Path

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import StoreIOError, ValidationError
from reqtrace.reqs.store import apply_issue_states, open_stores, save_requirements, set_github_issue


def load_issue_states(path: Path) -> dict[int, dict]:
    """Read a JSON list of {number, state, title} objects.

    Raises:
        StoreIOError: If the file can't be read or parsed
        ValidationError: If an entry has no integer number
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise StoreIOError(path, f"Invalid JSON: {e}") from None
    except OSError as e:
        raise StoreIOError(path, f"Could not read: {e}") from e

    if not isinstance(data, list):
        raise ValidationError(f"{path}: expected a JSON list of issues")

    states = {}
    for entry in data:
        number = entry.get("number") if isinstance(entry, dict) else None
        if not isinstance(number, int) or isinstance(number, bool):
            raise ValidationError(f"{path}: issue entry without an integer number: {entry}")
        states[number] = {"state": entry.get("state"), "title": entry.get("title")}
    return states


def cmd_issue(args, project_config: ProjectConfig) -> int:
    """Show issue help."""
    print("Usage: req issue <subcommand>")
    print()
    print("Subcommands:")
    print("  link      Link a requirement to an issue number")
    print("  unlink    Remove a requirement's issue link")
    print("  apply     Store issue states from a JSON file")
    return 0


def cmd_issue_link(args, project_config: ProjectConfig) -> int:
    active, _ = open_stores(project_config)
    updated, changed = set_github_issue(active, args.id, args.number, by=args.by)
    if not changed:
        print(f"{args.id} is already linked to #{args.number}")
        return 0
    save_requirements(project_config.requirements_path, updated)
    print(f"Linked {args.id} to #{args.number}")
    return 0


def cmd_issue_unlink(args, project_config: ProjectConfig) -> int:
    active, _ = open_stores(project_config)
    updated, changed = set_github_issue(active, args.id, None, by=args.by)
    if not changed:
        print(f"{args.id} has no linked issue")
        return 0
    save_requirements(project_config.requirements_path, updated)
    print(f"Unlinked issue from {args.id}")
    return 0


def cmd_issue_apply(args, project_config: ProjectConfig) -> int:
    states = load_issue_states(Path(args.states))
    active, _ = open_stores(project_config)

    updated, count = apply_issue_states(active, states)
    if count:
        save_requirements(project_config.requirements_path, updated)
    print(f"Updated issue state on {count} requirement(s)")
    return 0
