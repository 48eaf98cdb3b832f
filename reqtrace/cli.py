#!/usr/bin/env python3
"""reqtrace CLI entrypoint."""

import sys
import argparse
import logging
from pathlib import Path

from reqtrace.lib.config import ProjectConfig, load_project_config
from reqtrace.lib.constants import PRIORITIES, SOURCE_TYPES, STATUSES, DEFAULT_PRIORITY, DEFAULT_STATUS
from reqtrace.lib.errors import TraceError
from reqtrace.commands import init as cmd_init_module
from reqtrace.commands import add as cmd_add_module
from reqtrace.commands import link as cmd_link_module
from reqtrace.commands import edit as cmd_edit_module
from reqtrace.commands import bulk as cmd_bulk_module
from reqtrace.commands import archive as cmd_archive_module
from reqtrace.commands import history as cmd_history_module
from reqtrace.commands import list as cmd_list_module
from reqtrace.commands import check as cmd_check_module
from reqtrace.commands import extract as cmd_extract_module
from reqtrace.commands import issue as cmd_issue_module
from reqtrace.reqs.verification import VerificationStatus

logger = logging.getLogger(__name__)


def get_project_config(args) -> ProjectConfig:
    """Load project config from --root (default: current directory)."""
    root = Path(args.root).resolve()
    if not root.is_dir():
        print(f"ERROR: Project root not found: {args.root}", file=sys.stderr)
        sys.exit(2)

    try:
        return load_project_config(root)
    except (ValueError, FileNotFoundError) as e:
        print(f"ERROR: Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)


def run_command(handler, args) -> int:
    """Run a command handler, reporting reqtrace errors instead of raising them."""
    project_config = get_project_config(args)
    try:
        return handler(args, project_config)
    except TraceError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


def cmd_init(args):
    return run_command(cmd_init_module.cmd_init, args)


def cmd_add(args):
    return run_command(cmd_add_module.cmd_add, args)


def cmd_link(args):
    return run_command(cmd_link_module.cmd_link, args)


def cmd_unlink(args):
    return run_command(cmd_link_module.cmd_unlink, args)


def cmd_confirm(args):
    return run_command(cmd_link_module.cmd_confirm, args)


def cmd_set(args):
    return run_command(cmd_edit_module.cmd_set, args)


def cmd_tag(args):
    return run_command(cmd_edit_module.cmd_tag, args)


def cmd_describe(args):
    return run_command(cmd_edit_module.cmd_describe, args)


def cmd_source(args):
    return run_command(cmd_edit_module.cmd_source, args)


def cmd_bulk(args):
    return run_command(cmd_bulk_module.cmd_bulk, args)


def cmd_archive(args):
    return run_command(cmd_archive_module.cmd_archive, args)


def cmd_restore(args):
    return run_command(cmd_archive_module.cmd_restore, args)


def cmd_history(args):
    return run_command(cmd_history_module.cmd_history, args)


def cmd_list(args):
    return run_command(cmd_list_module.cmd_list, args)


def cmd_check(args):
    return run_command(cmd_check_module.cmd_check, args)


def cmd_extract(args):
    return run_command(cmd_extract_module.cmd_extract, args)


def cmd_issue(args):
    return run_command(cmd_issue_module.cmd_issue, args)


def cmd_issue_link(args):
    return run_command(cmd_issue_module.cmd_issue_link, args)


def cmd_issue_unlink(args):
    return run_command(cmd_issue_module.cmd_issue_unlink, args)


def cmd_issue_apply(args):
    return run_command(cmd_issue_module.cmd_issue_apply, args)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='req', description='Requirement-to-test traceability')
    parser.add_argument('--root', '-C', default='.', help='Project root (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # Shared by every command that writes history
    by_parent = argparse.ArgumentParser(add_help=False)
    by_parent.add_argument('--by', help='Who is making this change')

    # req init
    p_init = subparsers.add_parser('init', help='Create requirements.json')
    p_init.add_argument('--runner', action='append',
                        help='Test runner as name=command=pattern (repeatable)')
    p_init.add_argument('--force', action='store_true', help='Reset prefix and runners of an existing requirements.json')
    p_init.set_defaults(func=cmd_init)

    # req add
    p_add = subparsers.add_parser('add', parents=[by_parent], help='Create a requirement')
    p_add.add_argument('description', help='What the system must do')
    p_add.add_argument('--source-type', '-s', choices=SOURCE_TYPES, default='manual')
    p_add.add_argument('--reference', '-r', help='Source reference (URL, ticket, doc section)')
    p_add.add_argument('--priority', choices=PRIORITIES, default=DEFAULT_PRIORITY)
    p_add.add_argument('--status', choices=STATUSES, default=DEFAULT_STATUS)
    p_add.add_argument('--tag', '-t', action='append', help='Tag (repeatable)')
    p_add.set_defaults(func=cmd_add)

    # req link
    p_link = subparsers.add_parser('link', parents=[by_parent], help='Link (or re-link) a test')
    p_link.add_argument('id', help='Requirement ID (e.g., REQ-001)')
    p_link.add_argument('test', help='file:test name')
    p_link.add_argument('--runner', help='Runner name (default: matched by file pattern)')
    p_link.set_defaults(func=cmd_link)

    # req unlink
    p_unlink = subparsers.add_parser('unlink', parents=[by_parent], help='Remove a test link')
    p_unlink.add_argument('id', help='Requirement ID')
    p_unlink.add_argument('test', help='file:test name')
    p_unlink.set_defaults(func=cmd_unlink)

    # req confirm
    p_confirm = subparsers.add_parser('confirm', parents=[by_parent],
                                      help='Confirm a linked test covers the requirement')
    p_confirm.add_argument('id', help='Requirement ID')
    p_confirm.add_argument('test', help='file:test name')
    p_confirm.add_argument('--insufficient', action='store_true', help='Record the test as insufficient')
    p_confirm.add_argument('--note', '-n', help='Assessment note')
    p_confirm.add_argument('--force', action='store_true', help='Re-confirm even if already confirmed')
    p_confirm.set_defaults(func=cmd_confirm)

    # req set
    p_set = subparsers.add_parser('set', parents=[by_parent], help='Set priority and/or status')
    p_set.add_argument('id', help='Requirement ID')
    p_set.add_argument('--priority', choices=PRIORITIES)
    p_set.add_argument('--status', choices=STATUSES)
    p_set.set_defaults(func=cmd_set)

    # req tag
    p_tag = subparsers.add_parser('tag', parents=[by_parent], help='Add or remove tags')
    p_tag.add_argument('id', help='Requirement ID')
    p_tag.add_argument('add', nargs='*', help='Tags to add')
    p_tag.add_argument('--remove', action='append', help='Tag to remove (repeatable)')
    p_tag.add_argument('--clear', action='store_true', help='Remove all existing tags first')
    p_tag.set_defaults(func=cmd_tag)

    # req describe
    p_describe = subparsers.add_parser('describe', parents=[by_parent], help='Replace the description')
    p_describe.add_argument('id', help='Requirement ID')
    p_describe.add_argument('description', help='New description')
    p_describe.set_defaults(func=cmd_describe)

    # req source
    p_source = subparsers.add_parser('source', parents=[by_parent], help='Replace the source')
    p_source.add_argument('id', help='Requirement ID')
    p_source.add_argument('source_type', choices=SOURCE_TYPES)
    p_source.add_argument('reference', nargs='?', default='', help='Source reference')
    p_source.set_defaults(func=cmd_source)

    # req bulk
    p_bulk = subparsers.add_parser('bulk', parents=[by_parent], help='Change several requirements at once')
    p_bulk.add_argument('ids', nargs='+', help='Requirement IDs')
    p_bulk.add_argument('--priority', choices=PRIORITIES)
    p_bulk.add_argument('--status', choices=STATUSES)
    p_bulk.add_argument('--add-tag', action='append', help='Tag to add (repeatable)')
    p_bulk.add_argument('--remove-tag', action='append', help='Tag to remove (repeatable)')
    p_bulk.add_argument('--archive', action='store_true', help='Archive instead of updating')
    p_bulk.add_argument('--reason', help='Archive reason (default: "Bulk archive")')
    p_bulk.set_defaults(func=cmd_bulk)

    # req archive
    p_archive = subparsers.add_parser('archive', parents=[by_parent],
                                      help='Archive a requirement (lists the archive without an ID)')
    p_archive.add_argument('id', nargs='?', help='Requirement ID')
    p_archive.add_argument('--reason', help='Why it is being archived')
    p_archive.set_defaults(func=cmd_archive)

    # req restore
    p_restore = subparsers.add_parser('restore', parents=[by_parent], help='Restore an archived requirement')
    p_restore.add_argument('id', help='Requirement ID')
    p_restore.set_defaults(func=cmd_restore)

    # req history
    p_history = subparsers.add_parser('history', help='Show requirement history')
    p_history.add_argument('id', help='Requirement ID (active or archived)')
    p_history.set_defaults(func=cmd_history)

    # req list
    p_list = subparsers.add_parser('list', help='List requirements')
    p_list.add_argument('--priority', choices=PRIORITIES)
    p_list.add_argument('--status', choices=STATUSES)
    p_list.add_argument('--tag')
    p_list.add_argument('--verification', choices=[s.value for s in VerificationStatus])
    p_list.add_argument('--scan', action='store_true', help='Compare against current test files')
    p_list.set_defaults(func=cmd_list)

    # req check
    p_check = subparsers.add_parser('check', help='Check verification status')
    p_check.add_argument('--offline', action='store_true', help='Compare stored hashes only')
    p_check.add_argument('--record', action='store_true', help='Update lastVerified')
    p_check.add_argument('--orphans', action='store_true', help='List tests no requirement links')
    p_check.add_argument('--json', action='store_true', help='Output as JSON')
    p_check.add_argument('--strict', action='store_true', help='Exit 1 unless every requirement is verified')
    p_check.set_defaults(func=cmd_check)

    # req extract
    p_extract = subparsers.add_parser('extract', help='Show tests found in files')
    p_extract.add_argument('files', nargs='+', help='Test files')
    p_extract.add_argument('--json', action='store_true', help='Output as JSON')
    p_extract.set_defaults(func=cmd_extract)

    # req issue
    p_issue = subparsers.add_parser('issue', help='GitHub issue links')
    p_issue.set_defaults(func=cmd_issue)
    issue_sub = p_issue.add_subparsers(dest='issue_cmd')

    # req issue link
    p_issue_link = issue_sub.add_parser('link', parents=[by_parent], help='Link a requirement to an issue')
    p_issue_link.add_argument('id', help='Requirement ID')
    p_issue_link.add_argument('number', type=int, help='Issue number')
    p_issue_link.set_defaults(func=cmd_issue_link)

    # req issue unlink
    p_issue_unlink = issue_sub.add_parser('unlink', parents=[by_parent], help='Remove the issue link')
    p_issue_unlink.add_argument('id', help='Requirement ID')
    p_issue_unlink.set_defaults(func=cmd_issue_unlink)

    # req issue apply
    p_issue_apply = issue_sub.add_parser('apply', help='Store issue states from a JSON file')
    p_issue_apply.add_argument('--states', required=True, help='JSON list of {number, state, title}')
    p_issue_apply.set_defaults(func=cmd_issue_apply)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
