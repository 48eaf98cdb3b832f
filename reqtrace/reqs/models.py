"""
Data models for the requirement stores.

Documents are JSON with camelCase keys; the dataclasses use snake_case and
convert at the boundary. Optional fields that are unset are left out of the
JSON entirely.
"""

from dataclasses import dataclass, field
from typing import Optional

from reqtrace.lib.constants import (
    DEFAULT_ID_PREFIX,
    DEFAULT_PRIORITY,
    DEFAULT_STATUS,
    STORE_VERSION,
)


def _drop_none(data: dict) -> dict:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class Source:
    """Where a requirement came from."""
    type: str                                  # doc, ai, slack, jira, manual
    reference: str = ""                        # Free text: URL, ticket key, doc section
    captured_at: str = ""                      # ISO timestamp

    @classmethod
    def from_dict(cls, data: dict) -> "Source":
        return cls(
            type=data["type"],
            reference=data.get("reference", ""),
            captured_at=data.get("capturedAt", ""),
        )

    def to_dict(self) -> dict:
        return {"type": self.type, "reference": self.reference, "capturedAt": self.captured_at}


@dataclass
class Confirmation:
    """Assessment of a linked test, tied to the body hash it was made against."""
    verdict: str                               # sufficient, insufficient
    hash: str
    confirmed_at: str
    confirmed_by: Optional[str] = None
    note: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "Confirmation":
        return cls(
            verdict=data["verdict"],
            hash=data["hash"],
            confirmed_at=data["confirmedAt"],
            confirmed_by=data.get("confirmedBy"),
            note=data.get("note"),
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "verdict": self.verdict,
            "hash": self.hash,
            "confirmedAt": self.confirmed_at,
            "confirmedBy": self.confirmed_by,
            "note": self.note,
        })


@dataclass
class TestLink:
    """Pointer from a requirement to one test definition."""
    __test__ = False

    file: str
    identifier: str
    runner: str
    hash: str                                  # Body hash at link time
    linked_at: str
    linked_by: Optional[str] = None
    confirmation: Optional[Confirmation] = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.file, self.identifier)

    @property
    def spec(self) -> str:
        return f"{self.file}:{self.identifier}"

    @classmethod
    def from_dict(cls, data: dict) -> "TestLink":
        confirmation = data.get("confirmation")
        return cls(
            file=data["file"],
            identifier=data["identifier"],
            runner=data.get("runner", ""),
            hash=data["hash"],
            linked_at=data.get("linkedAt", ""),
            linked_by=data.get("linkedBy"),
            confirmation=Confirmation.from_dict(confirmation) if confirmation else None,
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "file": self.file,
            "identifier": self.identifier,
            "runner": self.runner,
            "hash": self.hash,
            "linkedAt": self.linked_at,
            "linkedBy": self.linked_by,
            "confirmation": self.confirmation.to_dict() if self.confirmation else None,
        })


@dataclass
class HistoryEntry:
    """One state transition on a requirement. Never edited once written."""
    type: str
    detail: str
    timestamp: str
    by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEntry":
        return cls(
            type=data["type"],
            detail=data.get("detail", ""),
            timestamp=data["timestamp"],
            by=data.get("by"),
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "type": self.type,
            "detail": self.detail,
            "by": self.by,
            "timestamp": self.timestamp,
        })


@dataclass
class GithubIssue:
    """Reference to a GitHub issue plus the last state the sync saw."""
    number: int
    state: Optional[str] = None
    title: Optional[str] = None
    last_synced: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "GithubIssue":
        return cls(
            number=data["number"],
            state=data.get("state"),
            title=data.get("title"),
            last_synced=data.get("lastSynced"),
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "number": self.number,
            "state": self.state,
            "title": self.title,
            "lastSynced": self.last_synced,
        })


@dataclass
class Requirement:
    """A tracked requirement. The ID is its key in the store map."""
    description: str
    source: Source
    priority: str = DEFAULT_PRIORITY
    status: str = DEFAULT_STATUS
    tags: list[str] = field(default_factory=list)
    tests: list[TestLink] = field(default_factory=list)
    history: list[HistoryEntry] = field(default_factory=list)
    last_verified: Optional[str] = None        # Cache only, see verification.py
    github_issue: Optional[GithubIssue] = None

    def find_link(self, file: str, identifier: str) -> Optional[TestLink]:
        for link in self.tests:
            if link.file == file and link.identifier == identifier:
                return link
        return None

    @classmethod
    def from_dict(cls, data: dict) -> "Requirement":
        issue = data.get("githubIssue")
        return cls(
            description=data["description"],
            source=Source.from_dict(data["source"]),
            priority=data.get("priority", DEFAULT_PRIORITY),
            status=data.get("status", DEFAULT_STATUS),
            tags=list(data.get("tags", [])),
            tests=[TestLink.from_dict(t) for t in data.get("tests", [])],
            history=[HistoryEntry.from_dict(h) for h in data.get("history", [])],
            last_verified=data.get("lastVerified"),
            github_issue=GithubIssue.from_dict(issue) if issue else None,
        )

    def to_dict(self) -> dict:
        return _drop_none({
            "description": self.description,
            "source": self.source.to_dict(),
            "priority": self.priority,
            "status": self.status,
            "tags": list(self.tags),
            "tests": [t.to_dict() for t in self.tests],
            "history": [h.to_dict() for h in self.history],
            "lastVerified": self.last_verified,
            "githubIssue": self.github_issue.to_dict() if self.github_issue else None,
        })


@dataclass
class TestRunner:
    """A configured test framework invocation."""
    __test__ = False

    name: str
    command: str
    pattern: str                               # Glob of the files it runs

    @classmethod
    def from_dict(cls, data: dict) -> "TestRunner":
        return cls(name=data["name"], command=data["command"], pattern=data["pattern"])

    def to_dict(self) -> dict:
        return {"name": self.name, "command": self.command, "pattern": self.pattern}


@dataclass
class StoreConfig:
    """Store-level settings kept inside requirements.json."""
    id_prefix: str = DEFAULT_ID_PREFIX
    next_id: int = 1                           # Never decreases
    test_runners: list[TestRunner] = field(default_factory=list)
    github_repo: Optional[str] = None
    github_auto_detected: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "StoreConfig":
        github = data.get("github") or {}
        return cls(
            id_prefix=data.get("idPrefix", DEFAULT_ID_PREFIX),
            next_id=data.get("nextId", 1),
            test_runners=[TestRunner.from_dict(r) for r in data.get("testRunners", [])],
            github_repo=github.get("repo"),
            github_auto_detected=github.get("autoDetected", False),
        )

    def to_dict(self) -> dict:
        data = {
            "idPrefix": self.id_prefix,
            "nextId": self.next_id,
            "testRunners": [r.to_dict() for r in self.test_runners],
        }
        if self.github_repo:
            data["github"] = {"repo": self.github_repo, "autoDetected": self.github_auto_detected}
        return data


@dataclass
class RequirementsFile:
    """The active store."""
    config: StoreConfig = field(default_factory=StoreConfig)
    requirements: dict[str, Requirement] = field(default_factory=dict)
    version: str = STORE_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "RequirementsFile":
        return cls(
            config=StoreConfig.from_dict(data.get("config", {})),
            requirements={k: Requirement.from_dict(v) for k, v in data.get("requirements", {}).items()},
            version=data.get("version", STORE_VERSION),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "config": self.config.to_dict(),
            "requirements": {k: v.to_dict() for k, v in self.requirements.items()},
        }


@dataclass
class ArchiveFile:
    """The archive store. Disjoint from the active store."""
    config: dict = field(default_factory=dict)
    requirements: dict[str, Requirement] = field(default_factory=dict)
    version: str = STORE_VERSION

    @classmethod
    def from_dict(cls, data: dict) -> "ArchiveFile":
        return cls(
            config=dict(data.get("config", {})),
            requirements={k: Requirement.from_dict(v) for k, v in data.get("requirements", {}).items()},
            version=data.get("version", STORE_VERSION),
        )

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "config": dict(self.config),
            "requirements": {k: v.to_dict() for k, v in self.requirements.items()},
        }
