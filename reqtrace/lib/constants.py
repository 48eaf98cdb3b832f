"""Shared constants for reqtrace."""

import re

STORE_VERSION = "1.0"

CONFIG_FILE = "reqtrace.env"
REQUIREMENTS_FILE = "requirements.json"
ARCHIVE_FILE = "requirements.archive.json"
JOURNAL_FILE = ".requirements.journal.json"

DEFAULT_ID_PREFIX = "REQ"
ID_PREFIX_PATTERN = re.compile(r'^[A-Z][A-Z0-9]*$')
ID_NUMBER_WIDTH = 3

DEFAULT_TEST_GLOBS = [
    "**/*.test.ts",
    "**/*.test.js",
    "**/*.test.tsx",
    "**/*.test.jsx",
]
DEFAULT_SCAN_WORKERS = 4

SOURCE_TYPES = ("doc", "ai", "slack", "jira", "manual")
PRIORITIES = ("critical", "high", "medium", "low")
STATUSES = ("draft", "approved", "implemented", "released")
VERDICTS = ("sufficient", "insufficient")

DEFAULT_PRIORITY = "medium"
DEFAULT_STATUS = "draft"

HISTORY_TYPES = (
    "created",
    "linked",
    "unlinked",
    "modified",
    "priority_changed",
    "status_changed",
    "tags_changed",
    "archived",
    "restored",
    "github_linked",
    "github_unlinked",
)
