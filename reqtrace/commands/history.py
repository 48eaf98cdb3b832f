"""
req history - Show a requirement's history (active or archived).
"""

from reqtrace.lib.config import ProjectConfig
from reqtrace.reqs.history import format_history
from reqtrace.reqs.store import find_requirement, open_stores


def cmd_history(args, project_config: ProjectConfig) -> int:
    active, archive = open_stores(project_config)
    req, archived = find_requirement(active, archive, args.id)
    print(format_history(args.id, req.description, req.history, archived=archived))
    return 0
