"""Tests for reqtrace.reqs.store module."""

import json
from datetime import datetime, timezone

import pytest

from reqtrace.lib.config import ProjectConfig
from reqtrace.lib.errors import ConflictError, NotFoundError, StoreIOError, ValidationError
from reqtrace.lib.extractor import find_test
from reqtrace.lib.validate import SchemaValidationError
from reqtrace.reqs.models import ArchiveFile, RequirementsFile, StoreConfig, TestRunner
from reqtrace.reqs.store import (
    add_requirement,
    apply_issue_states,
    bulk_update,
    confirm_test,
    filter_requirements,
    find_requirement,
    init_store,
    link_test,
    load_archive,
    load_requirements,
    next_requirement_id,
    open_stores,
    parse_test_spec,
    save_requirements,
    set_description,
    set_github_issue,
    set_priority,
    set_source,
    set_status,
    unlink_test,
    update_tags,
)

NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
TEST_FILE = "tests/math.test.ts"
ORIGINAL = "test('adds two numbers', () => { expect(1+1).toBe(2); })\n"
EDITED = "test('adds two numbers', () => { expect(1+1).toBe(3); })\n"


@pytest.fixture
def project(tmp_path):
    """Project root with one test file."""
    (tmp_path / "tests").mkdir()
    (tmp_path / TEST_FILE).write_text(ORIGINAL)
    return tmp_path


def _store_with_requirement(description="Adds numbers"):
    active, req_id = add_requirement(RequirementsFile(), ArchiveFile(), description, now=NOW)
    return active, req_id


def _history_types(req):
    return [h.type for h in req.history]


class TestAddRequirement:
    """Tests for add_requirement."""

    def test_creates_with_defaults(self):
        active, req_id = _store_with_requirement()
        req = active.requirements[req_id]

        assert req_id == "REQ-001"
        assert req.priority == "medium"
        assert req.status == "draft"
        assert req.tests == []
        assert req.source.type == "manual"
        assert _history_types(req) == ["created"]
        assert active.config.next_id == 2

    def test_does_not_mutate_input(self):
        original = RequirementsFile()
        add_requirement(original, ArchiveFile(), "Something", now=NOW)
        assert original.requirements == {}
        assert original.config.next_id == 1

    def test_sequential_ids(self):
        active, first = _store_with_requirement()
        active, second = add_requirement(active, ArchiveFile(), "Second", now=NOW)
        assert (first, second) == ("REQ-001", "REQ-002")

    def test_tags_deduplicated(self):
        active, req_id = add_requirement(
            RequirementsFile(), ArchiveFile(), "Tagged", tags=["auth", "api", "auth"], now=NOW,
        )
        assert active.requirements[req_id].tags == ["auth", "api"]

    @pytest.mark.parametrize("kwargs", [
        {"description": "   "},
        {"description": "ok", "priority": "urgent"},
        {"description": "ok", "status": "done"},
        {"description": "ok", "source_type": "email"},
        {"description": "ok", "tags": [""]},
    ])
    def test_rejects_invalid_arguments(self, kwargs):
        with pytest.raises(ValidationError):
            add_requirement(RequirementsFile(), ArchiveFile(), **kwargs)


class TestNextRequirementId:
    """Tests for ID generation across both stores."""

    def test_empty(self):
        assert next_requirement_id(RequirementsFile(), ArchiveFile()) == ("REQ-001", 1)

    def test_above_archived_ids(self):
        active, _ = _store_with_requirement()
        archived, _ = add_requirement(RequirementsFile(), ArchiveFile(), "Old", now=NOW)
        archive = ArchiveFile(requirements={"REQ-010": archived.requirements["REQ-001"]})

        assert next_requirement_id(active, archive) == ("REQ-011", 11)

    def test_never_below_next_id(self):
        active = RequirementsFile(config=StoreConfig(next_id=42))
        assert next_requirement_id(active, ArchiveFile()) == ("REQ-042", 42)

    def test_ignores_other_prefixes(self):
        active, _ = _store_with_requirement()
        other = active.requirements.pop("REQ-001")
        active.requirements["FEAT-900"] = other
        assert next_requirement_id(active, ArchiveFile())[0] == "REQ-002"

    def test_custom_prefix(self):
        active = RequirementsFile(config=StoreConfig(id_prefix="AUTH"))
        assert next_requirement_id(active, ArchiveFile())[0] == "AUTH-001"


class TestLinkTest:
    """Tests for link_test."""

    def test_links_with_current_hash(self, project):
        active, req_id = _store_with_requirement()
        updated, link, action = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)

        assert action == "linked"
        assert link.hash == find_test(project, TEST_FILE, "adds two numbers").hash
        assert link.file == TEST_FILE
        assert link.runner == "default"
        assert link.confirmation is None
        assert _history_types(updated.requirements[req_id]) == ["created", "linked"]
        assert active.requirements[req_id].tests == []

    def test_same_hash_is_noop(self, project):
        active, req_id = _store_with_requirement()
        active, _, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)

        again, _, action = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        assert action == "unchanged"
        assert again is active
        assert len(again.requirements[req_id].tests) == 1

    def test_relink_replaces_hash_and_keeps_confirmation(self, project):
        active, req_id = _store_with_requirement()
        active, link, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        active, _ = confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        old_hash = link.hash

        (project / TEST_FILE).write_text(EDITED)
        updated, relinked, action = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)

        req = updated.requirements[req_id]
        assert action == "relinked"
        assert len(req.tests) == 1
        assert relinked.hash != old_hash
        assert relinked.confirmation.hash == old_hash
        assert req.history[-1].type == "modified"
        assert old_hash[:8] in req.history[-1].detail

    def test_unknown_requirement(self, project):
        with pytest.raises(NotFoundError, match="REQ-999"):
            link_test(RequirementsFile(), "REQ-999", TEST_FILE, "adds two numbers", root=project)

    def test_unknown_identifier(self, project):
        active, req_id = _store_with_requirement()
        with pytest.raises(NotFoundError):
            link_test(active, req_id, TEST_FILE, "subtracts", root=project)

    def test_runner_matched_by_pattern(self, project):
        active, req_id = _store_with_requirement()
        active.config.test_runners = [
            TestRunner(name="jest", command="npx jest", pattern="**/*.test.js"),
            TestRunner(name="bun", command="bun test", pattern="**/*.test.ts"),
        ]
        _, link, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project)
        assert link.runner == "bun"

    def test_unknown_runner_rejected(self, project):
        active, req_id = _store_with_requirement()
        active.config.test_runners = [TestRunner(name="bun", command="bun test", pattern="**/*.ts")]
        with pytest.raises(ValidationError, match="Unknown runner"):
            link_test(active, req_id, TEST_FILE, "adds two numbers", runner="mocha", root=project)

    def test_degraded_link_logs_warning(self, project, caplog):
        (project / "tests" / "broken.test.ts").write_text("test('broken', () => {\n")
        active, req_id = _store_with_requirement()
        _, link, _ = link_test(active, req_id, "tests/broken.test.ts", "broken", root=project)
        assert link.hash
        assert "Could not find the end of 'broken'" in caplog.text


class TestUnlinkTest:
    """Tests for unlink_test."""

    def test_removes_link(self, project):
        active, req_id = _store_with_requirement()
        active, _, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project)

        updated = unlink_test(active, req_id, TEST_FILE, "adds two numbers", now=NOW)
        assert updated.requirements[req_id].tests == []
        assert updated.requirements[req_id].history[-1].type == "unlinked"
        assert len(active.requirements[req_id].tests) == 1

    def test_not_linked(self):
        active, req_id = _store_with_requirement()
        with pytest.raises(NotFoundError, match="is not linked"):
            unlink_test(active, req_id, TEST_FILE, "adds two numbers")

    def test_absolute_path_matches_stored_link(self, project):
        absolute = str(project / TEST_FILE)
        active, req_id = _store_with_requirement()
        active, link, _ = link_test(active, req_id, absolute, "adds two numbers", root=project)
        assert link.file == TEST_FILE

        updated = unlink_test(active, req_id, absolute, "adds two numbers", root=project, now=NOW)
        assert updated.requirements[req_id].tests == []


class TestConfirmTest:
    """Tests for confirm_test."""

    @pytest.fixture
    def linked(self, project):
        active, req_id = _store_with_requirement()
        active, _, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        return active, req_id

    def test_confirms_against_link_hash(self, project, linked):
        active, req_id = linked
        updated, changed = confirm_test(
            active, req_id, TEST_FILE, "adds two numbers", root=project, by="alice", note="covers it", now=NOW,
        )
        link = updated.requirements[req_id].tests[0]
        assert changed is True
        assert link.confirmation.verdict == "sufficient"
        assert link.confirmation.hash == link.hash
        assert link.confirmation.confirmed_by == "alice"
        assert link.confirmation.note == "covers it"
        assert "Confirmed test (sufficient)" in updated.requirements[req_id].history[-1].detail

    def test_repeat_is_noop_without_force(self, project, linked):
        active, req_id = linked
        active, _ = confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)

        again, changed = confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        assert changed is False
        assert again is active

        forced, changed = confirm_test(
            active, req_id, TEST_FILE, "adds two numbers", root=project, force=True, now=NOW,
        )
        assert changed is True
        assert len(forced.requirements[req_id].history) == len(active.requirements[req_id].history) + 1

    def test_changed_test_must_be_relinked(self, project, linked):
        active, req_id = linked
        (project / TEST_FILE).write_text(EDITED)
        with pytest.raises(ConflictError, match="changed since it was linked"):
            confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project)

    def test_reconfirm_after_relink_reports_stale(self, project, linked):
        active, req_id = linked
        active, _ = confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        (project / TEST_FILE).write_text(EDITED)
        active, _, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)

        updated, changed = confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        assert changed is True
        assert "Re-confirmed test (was stale)" in updated.requirements[req_id].history[-1].detail

    def test_not_linked(self, project):
        active, req_id = _store_with_requirement()
        with pytest.raises(NotFoundError, match="Link it first"):
            confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project)

    def test_absolute_path_matches_stored_link(self, project, linked):
        active, req_id = linked
        updated, changed = confirm_test(
            active, req_id, str(project / TEST_FILE), "adds two numbers", root=project, now=NOW,
        )
        assert changed is True
        assert updated.requirements[req_id].tests[0].confirmation.verdict == "sufficient"

    def test_invalid_verdict(self, project, linked):
        active, req_id = linked
        with pytest.raises(ValidationError):
            confirm_test(active, req_id, TEST_FILE, "adds two numbers", verdict="maybe", root=project)


class TestFieldEdits:
    """Tests for priority/status/tags/description/source edits."""

    def test_set_priority(self):
        active, req_id = _store_with_requirement()
        updated, changed = set_priority(active, req_id, "critical", by="bob", now=NOW)
        entry = updated.requirements[req_id].history[-1]
        assert changed is True
        assert updated.requirements[req_id].priority == "critical"
        assert (entry.type, entry.detail, entry.by) == ("priority_changed", "medium -> critical", "bob")

    def test_set_priority_same_value_is_noop(self):
        active, req_id = _store_with_requirement()
        updated, changed = set_priority(active, req_id, "medium")
        assert changed is False
        assert updated is active

    def test_set_status(self):
        active, req_id = _store_with_requirement()
        updated, changed = set_status(active, req_id, "approved", now=NOW)
        entry = updated.requirements[req_id].history[-1]
        assert changed is True
        assert (entry.type, entry.detail) == ("status_changed", "draft -> approved")
        assert active.requirements[req_id].status == "draft"

    def test_set_status_invalid(self):
        active, req_id = _store_with_requirement()
        with pytest.raises(ValidationError, match="Invalid status"):
            set_status(active, req_id, "shipped")

    def test_update_tags_single_entry(self):
        active, req_id = add_requirement(RequirementsFile(), ArchiveFile(), "T", tags=["old"], now=NOW)
        updated, changed = update_tags(active, req_id, add=["a", "b"], remove=["old"], now=NOW)
        req = updated.requirements[req_id]

        assert changed is True
        assert req.tags == ["a", "b"]
        assert _history_types(req).count("tags_changed") == 1
        assert req.history[-1].detail == "added: a, b; removed: old"

    def test_update_tags_no_effect(self):
        active, req_id = add_requirement(RequirementsFile(), ArchiveFile(), "T", tags=["a"], now=NOW)
        updated, changed = update_tags(active, req_id, add=["a"], remove=["missing"])
        assert changed is False
        assert updated is active

    def test_update_tags_clear(self):
        active, req_id = add_requirement(RequirementsFile(), ArchiveFile(), "T", tags=["a", "b"], now=NOW)
        updated, _ = update_tags(active, req_id, clear=True)
        assert updated.requirements[req_id].tags == []
        assert updated.requirements[req_id].history[-1].detail == "removed: a, b"

    def test_set_description(self):
        active, req_id = _store_with_requirement("Old text")
        updated, changed = set_description(active, req_id, "New text", now=NOW)
        assert changed is True
        assert updated.requirements[req_id].description == "New text"
        assert updated.requirements[req_id].history[-1].detail == "description: Old text -> New text"

    def test_set_description_empty(self):
        active, req_id = _store_with_requirement()
        with pytest.raises(ValidationError, match="Description is required"):
            set_description(active, req_id, "")

    def test_set_source(self):
        active, req_id = _store_with_requirement()
        updated, changed = set_source(active, req_id, "jira", "AUTH-12", now=NOW)
        source = updated.requirements[req_id].source
        assert changed is True
        assert (source.type, source.reference) == ("jira", "AUTH-12")
        assert updated.requirements[req_id].history[-1].type == "modified"

    def test_unknown_requirement(self):
        with pytest.raises(NotFoundError):
            set_priority(RequirementsFile(), "REQ-404", "high")


class TestBulkUpdate:
    """Tests for bulk_update."""

    @pytest.fixture
    def store(self):
        active = RequirementsFile()
        for description in ("One", "Two", "Three"):
            active, _ = add_requirement(active, ArchiveFile(), description, now=NOW)
        return active

    def test_counts_only_modified(self, store):
        store, _ = set_priority(store, "REQ-002", "high")
        updated, count = bulk_update(store, ["REQ-001", "REQ-002", "REQ-404"], priority="high", now=NOW)
        assert count == 1
        assert updated.requirements["REQ-001"].priority == "high"

    def test_one_entry_per_category(self, store):
        updated, count = bulk_update(
            store, ["REQ-001", "REQ-003"], priority="low", status="approved", add_tags=["x", "y"], now=NOW,
        )
        assert count == 2
        types = _history_types(updated.requirements["REQ-003"])
        assert types == ["created", "priority_changed", "status_changed", "tags_changed"]

    def test_requires_a_change(self, store):
        with pytest.raises(ValidationError, match="Nothing to change"):
            bulk_update(store, ["REQ-001"])

    def test_nothing_modified_returns_input(self, store):
        updated, count = bulk_update(store, ["REQ-404"], priority="high")
        assert count == 0
        assert updated is store


class TestGithubIssue:
    """Tests for issue links and synced states."""

    def test_link_and_unlink(self):
        active, req_id = _store_with_requirement()
        linked, changed = set_github_issue(active, req_id, 42, now=NOW)
        assert changed is True
        assert linked.requirements[req_id].github_issue.number == 42
        assert linked.requirements[req_id].history[-1].type == "github_linked"
        assert linked.requirements[req_id].history[-1].detail == "#42"

        unlinked, changed = set_github_issue(linked, req_id, None, now=NOW)
        assert changed is True
        assert unlinked.requirements[req_id].github_issue is None
        assert unlinked.requirements[req_id].history[-1].type == "github_unlinked"

    def test_invalid_number(self):
        active, req_id = _store_with_requirement()
        with pytest.raises(ValidationError):
            set_github_issue(active, req_id, 0)

    def test_apply_states(self):
        active, req_id = _store_with_requirement()
        active, _ = set_github_issue(active, req_id, 7)
        updated, count = apply_issue_states(active, {7: {"state": "CLOSED", "title": "Add numbers"}}, now=NOW)
        issue = updated.requirements[req_id].github_issue
        assert count == 1
        assert (issue.state, issue.title) == ("CLOSED", "Add numbers")
        assert issue.last_synced is not None


class TestLookups:
    """Tests for parse_test_spec, find_requirement and filter_requirements."""

    def test_parse_test_spec(self):
        assert parse_test_spec("tests/a.test.ts:logs in") == ("tests/a.test.ts", "logs in")

    def test_parse_test_spec_identifier_with_colon(self):
        assert parse_test_spec("tests/a.test.ts:auth: logs in") == ("tests/a.test.ts", "auth: logs in")

    def test_parse_test_spec_invalid(self):
        with pytest.raises(ValidationError):
            parse_test_spec("no-identifier")

    def test_find_requirement_in_archive(self):
        active, req_id = _store_with_requirement()
        archive = ArchiveFile(requirements={req_id: active.requirements.pop(req_id)})
        req, archived = find_requirement(active, archive, req_id)
        assert archived is True
        assert req.description == "Adds numbers"

    def test_find_requirement_missing(self):
        with pytest.raises(NotFoundError):
            find_requirement(RequirementsFile(), ArchiveFile(), "REQ-001")

    def test_filter_requirements(self):
        active = RequirementsFile()
        active, _ = add_requirement(active, ArchiveFile(), "A", priority="high", tags=["auth"], now=NOW)
        active, _ = add_requirement(active, ArchiveFile(), "B", priority="low", now=NOW)
        active, _ = add_requirement(active, ArchiveFile(), "C", priority="high", now=NOW)

        assert [i for i, _ in filter_requirements(active, priority="high")] == ["REQ-001", "REQ-003"]
        assert [i for i, _ in filter_requirements(active, tag="auth")] == ["REQ-001"]


class TestDocumentIO:
    """Tests for loading and saving store documents."""

    @pytest.fixture
    def config(self, tmp_path):
        return ProjectConfig(root=tmp_path)

    def test_init_and_load(self, config):
        runners = [TestRunner(name="bun", command="bun test", pattern="**/*.test.ts")]
        init_store(config, runners)

        data = json.loads(config.requirements_path.read_text())
        assert data["version"] == "1.0"
        assert data["config"]["testRunners"][0]["name"] == "bun"
        assert load_requirements(config.requirements_path).config.test_runners == runners

    def test_init_refuses_existing(self, config):
        init_store(config)
        with pytest.raises(ConflictError):
            init_store(config)

    def test_force_keeps_requirements_and_ids(self, config):
        init_store(config)
        active, _ = add_requirement(RequirementsFile(), ArchiveFile(), "First", now=NOW)
        active, _ = add_requirement(active, ArchiveFile(), "Second", now=NOW)
        save_requirements(config.requirements_path, active)

        runners = [TestRunner(name="vitest", command="npx vitest run", pattern="**/*.spec.ts")]
        store = init_store(config, runners, force=True)

        assert set(store.requirements) == {"REQ-001", "REQ-002"}
        assert store.config.test_runners == runners
        assert store.config.next_id == 3
        assert load_requirements(config.requirements_path) == store

    def test_force_skips_archived_ids(self, config):
        archive = ArchiveFile()
        active, req_id = add_requirement(RequirementsFile(), archive, "Archived later", now=NOW)
        archive.requirements[req_id] = active.requirements.pop(req_id)
        active.config.next_id = 1
        save_requirements(config.requirements_path, active)
        config.archive_path.write_text(json.dumps(archive.to_dict()))

        store = init_store(config, force=True)
        assert next_requirement_id(store, archive) == ("REQ-002", 2)

    def test_missing_requirements_file(self, config):
        with pytest.raises(NotFoundError, match="req init"):
            load_requirements(config.requirements_path)

    def test_missing_archive_is_empty(self, config):
        assert load_archive(config.archive_path).requirements == {}

    def test_round_trip(self, config, project):
        active, req_id = _store_with_requirement()
        active, _, _ = link_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        active, _ = confirm_test(active, req_id, TEST_FILE, "adds two numbers", root=project, now=NOW)
        save_requirements(config.requirements_path, active)

        assert load_requirements(config.requirements_path) == active

    def test_camel_case_on_disk(self, config):
        active, _ = _store_with_requirement()
        save_requirements(config.requirements_path, active)
        data = json.loads(config.requirements_path.read_text())
        assert "nextId" in data["config"]
        assert "capturedAt" in data["requirements"]["REQ-001"]["source"]
        assert "lastVerified" not in data["requirements"]["REQ-001"]

    def test_invalid_json(self, config):
        config.requirements_path.write_text("{not json")
        with pytest.raises(StoreIOError, match="Invalid JSON"):
            load_requirements(config.requirements_path)

    def test_schema_violation_on_load(self, config):
        config.requirements_path.write_text(json.dumps({"version": "1.0", "config": {}, "requirements": {
            "REQ-001": {"description": "x"},
        }}))
        with pytest.raises(SchemaValidationError):
            load_requirements(config.requirements_path)

    def test_invalid_document_never_written(self, config):
        active, req_id = _store_with_requirement()
        save_requirements(config.requirements_path, active)
        before = config.requirements_path.read_text()

        active.requirements[req_id].priority = "urgent"
        with pytest.raises(SchemaValidationError, match="Refusing to write"):
            save_requirements(config.requirements_path, active)
        assert config.requirements_path.read_text() == before

    def test_open_stores(self, config):
        init_store(config)
        active, archive = open_stores(config)
        assert active.requirements == {}
        assert archive.requirements == {}
