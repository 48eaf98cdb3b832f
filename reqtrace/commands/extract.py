"""
req extract - Show the tests found in files and their body hashes.
"""

import json
from pathlib import Path

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import NotFoundError
from reqtrace.lib.extractor import extract_tests_from_file
from reqtrace.lib.hashing import short_hash


def cmd_extract(args, project_config: ProjectConfig) -> int:
    root = project_config.root
    found = []

    for file in args.files:
        path = Path(file)
        if not path.is_absolute():
            path = root / path
        if not path.is_file():
            raise NotFoundError(f"Test file not found: {file}")
        found.extend(extract_tests_from_file(path, root))

    if args.json:
        print(json.dumps([
            {
                "file": t.file,
                "identifier": t.identifier,
                "line": t.line,
                "strategy": t.strategy,
                "hash": t.hash,
                "degraded": t.degraded,
            }
            for t in found
        ], indent=2))
        return 0

    if not found:
        print("No tests found")
        return 0

    for test in found:
        flag = "  (unbalanced, hashed to end of file)" if test.degraded else ""
        print(f"{test.file}:{test.line:<5} {short_hash(test.hash)}  {test.strategy:<10} {test.identifier}{flag}")
    print()
    print(f"{len(found)} test(s)")
    return 0
