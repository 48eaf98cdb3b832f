"""
Extract test definitions from JavaScript/TypeScript test files.

Supports:
- it('name', ...), test("name", ...), Bun.test('name', ...)
- .only / .skip modifiers
- it.each(table)('name', ...), test.each(...), describe.each(...)
- template literal names: it(`name with ${expr}`, ...)

This is pattern matching over raw text, not a parser. The body of each
match is found by balancing delimiters from the end of the test name up to
the closing paren of the call, and is only used as hashing input.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path

from reqtrace.lib.errors import NotFoundError
from reqtrace.lib.hashing import compute_hash

logger = logging.getLogger(__name__)

DEFAULT_IGNORED_DIRS = ("node_modules",)

_OPENERS = "([{"
_CLOSERS = ")]}"

# Callee must not be part of a longer name (submit(, foo.it()
_CALLEE = r"(?<![\w$.])(?:Bun\.test|it|test)"
_QUOTED_NAME = r"""(?P<quote>['"])(?P<name>(?:\\.|(?!(?P=quote))[^\\\n])+)(?P=quote)"""
_ANY_QUOTED_NAME = r"""(?P<quote>['"`])(?P<name>(?:\\.|(?!(?P=quote))[^\\\n])+)(?P=quote)"""


@dataclass(frozen=True)
class TestMatch:
    """A test registration spotted by a pattern."""
    __test__ = False

    identifier: str
    start: int  # Offset just after the comma that follows the name
    call_start: int  # Offset of the callee, used for line numbers


@dataclass
class ExtractedTest:
    """A test definition found in a file. Not persisted."""
    file: str
    identifier: str
    body: str
    hash: str
    line: int = 0
    strategy: str = ""
    degraded: bool = False  # Body ran to end of file (unbalanced delimiters)


class TestPattern:
    """One way of spotting test registrations in source text.

    Implementations hold no per-call state, so a single instance can be
    shared between threads.
    """
    __test__ = False

    name = ""

    def find_matches(self, content: str) -> list[TestMatch]:
        raise NotImplementedError


class _RegexPattern(TestPattern):
    regex: re.Pattern

    def find_matches(self, content: str) -> list[TestMatch]:
        return [
            TestMatch(identifier=m.group("name"), start=m.end(), call_start=m.start())
            for m in self.regex.finditer(content)
        ]


class StandardPattern(_RegexPattern):
    """it('name', ...), test("name", ...), Bun.test('name', ...)"""
    name = "standard"
    regex = re.compile(rf"{_CALLEE}\s*\(\s*{_QUOTED_NAME}\s*,")


class ModifierPattern(_RegexPattern):
    """it.only('name', ...), test.skip(`name`, ...), Bun.test.only(...)"""
    name = "modifiers"
    regex = re.compile(rf"{_CALLEE}\.(?:only|skip)\s*\(\s*{_ANY_QUOTED_NAME}\s*,")


class TemplatePattern(_RegexPattern):
    """it(`name ${expr}`, ...). The identifier keeps the ${...} source."""
    name = "template"
    regex = re.compile(rf"{_CALLEE}\s*\(\s*`(?P<name>[^`]+)`\s*,")


class EachPattern(TestPattern):
    """it.each(table)('name', ...), test.each(...), describe.each(...)

    The table argument is skipped by delimiter balancing, never parsed.
    """
    name = "each"
    head = re.compile(r"(?<![\w$.])(?:it|test|describe)\.each\s*\(")
    tail = re.compile(rf"\s*\(\s*{_ANY_QUOTED_NAME}\s*,")

    def find_matches(self, content: str) -> list[TestMatch]:
        matches = []
        for head in self.head.finditer(content):
            table_end = find_call_end(content, head.end())
            if table_end is None:
                continue
            tail = self.tail.match(content, table_end + 1)
            if tail:
                matches.append(TestMatch(
                    identifier=tail.group("name"),
                    start=tail.end(),
                    call_start=head.start(),
                ))
        return matches


# Order matters: earlier patterns win deduplication
PATTERNS: tuple[TestPattern, ...] = (
    StandardPattern(),
    ModifierPattern(),
    EachPattern(),
    TemplatePattern(),
)


def find_call_end(content: str, start: int) -> int | None:
    """Find the delimiter that closes the call enclosing ``start``.

    Balances ()[]{} and skips strings, template literals, regex literals
    and comments.
    Returns the index of the unmatched closing delimiter, or None if the
    text ends first.
    """
    depth = 0
    i = start
    n = len(content)

    while i < n:
        ch = content[i]

        if ch == "'" or ch == '"':
            i = _skip_string(content, i)
            continue
        if ch == "`":
            i = _skip_template(content, i)
            continue
        if ch == "/" and content.startswith("//", i):
            newline = content.find("\n", i)
            i = n if newline == -1 else newline
            continue
        if ch == "/" and content.startswith("/*", i):
            close = content.find("*/", i + 2)
            i = n if close == -1 else close + 2
            continue
        if ch == "/" and _regex_allowed(content, i):
            i = _skip_regex(content, i)
            continue

        if ch in _OPENERS:
            depth += 1
        elif ch in _CLOSERS:
            if depth == 0:
                return i
            depth -= 1
        i += 1

    return None


_REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%>~^")
_REGEX_KEYWORD = re.compile(r"(?:^|[^\w$])(?:return|typeof|case|do|else|in|of|void|yield|await)\s*$")


def _regex_allowed(content: str, i: int) -> bool:
    """Whether a slash at ``i`` opens a regex literal rather than dividing."""
    j = i - 1
    while j >= 0 and content[j] in " \t\r\n":
        j -= 1
    if j < 0 or content[j] in _REGEX_PRECEDERS:
        return True
    return bool(_REGEX_KEYWORD.search(content, max(0, j - 10), j + 1))


def _skip_regex(content: str, i: int) -> int:
    """Return the offset just past the regex literal starting at ``i``.

    A literal that hits a line break first was a division after all, so
    scanning resumes right after the slash.
    """
    j = i + 1
    n = len(content)
    in_class = False
    while j < n:
        c = content[j]
        if c == "\\":
            j += 2
            continue
        if c == "\n":
            return i + 1
        if in_class:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
        elif c == "/":
            j += 1
            while j < n and (content[j].isalnum() or content[j] == "_"):
                j += 1
            return j
        j += 1
    return i + 1


def _skip_string(content: str, i: int) -> int:
    """Return the offset just past the quoted string starting at ``i``."""
    quote = content[i]
    j = i + 1
    n = len(content)
    while j < n:
        c = content[j]
        if c == "\\":
            j += 2
            continue
        if c == quote:
            return j + 1
        if c == "\n":
            # Unterminated single-line string, resume at the line break
            return j
        j += 1
    return n


def _skip_template(content: str, i: int) -> int:
    """Return the offset just past the template literal starting at ``i``."""
    j = i + 1
    n = len(content)
    while j < n:
        c = content[j]
        if c == "\\":
            j += 2
            continue
        if c == "`":
            return j + 1
        if c == "$" and content.startswith("${", j):
            close = find_call_end(content, j + 2)
            if close is None:
                return n
            j = close + 1
            continue
        j += 1
    return n


def extract_body(content: str, start: int) -> tuple[str, bool]:
    """Extract the call body that starts at ``start``.

    Returns (body, degraded). A degraded body is the rest of the file.
    """
    end = find_call_end(content, start)
    if end is None:
        return content[start:].strip(), True
    return content[start:end].strip(), False


def extract_tests(content: str, file_path: str, relative_path: str) -> list[ExtractedTest]:
    """
    Extract all tests from file content.

    Patterns run in PATTERNS order; the first one to report an identifier
    wins and later duplicates are dropped.

    Args:
        content: Raw file text
        file_path: Path of the file (for log messages)
        relative_path: Path stored in the results

    Returns:
        Extracted tests, in pattern order then file order
    """
    tests = []
    seen: set[str] = set()

    for pattern in PATTERNS:
        for match in pattern.find_matches(content):
            if match.identifier in seen:
                continue
            seen.add(match.identifier)

            body, degraded = extract_body(content, match.start)
            if degraded:
                logger.debug(f"Unbalanced body for '{match.identifier}' in {file_path}")

            tests.append(ExtractedTest(
                file=relative_path,
                identifier=match.identifier,
                body=body,
                hash=compute_hash(body),
                line=content.count("\n", 0, match.call_start) + 1,
                strategy=pattern.name,
                degraded=degraded,
            ))

    return tests


def relative_test_path(path: Path, root: Path | None) -> str:
    """Path as stored in test links: POSIX, relative to root when inside it."""
    if root is not None:
        try:
            return path.resolve().relative_to(root.resolve()).as_posix()
        except ValueError:
            pass
    return path.as_posix()


def extract_tests_from_file(path: Path, root: Path | None = None) -> list[ExtractedTest]:
    """Extract all tests from one file.

    Raises:
        OSError: If the file cannot be read
    """
    content = path.read_text(encoding="utf-8", errors="replace")
    return extract_tests(content, str(path), relative_test_path(path, root))


def find_test(root: Path, file: str, identifier: str) -> ExtractedTest:
    """
    Locate one test by file and identifier.

    Raises:
        NotFoundError: If the file is missing/unreadable or has no such test
    """
    path = Path(file)
    if not path.is_absolute():
        path = root / path

    if not path.is_file():
        raise NotFoundError(f"Test file not found: {file}")

    try:
        tests = extract_tests_from_file(path, root)
    except OSError as e:
        raise NotFoundError(f"Could not read test file {file}: {e}") from e

    for test in tests:
        if test.identifier == identifier:
            return test

    raise NotFoundError(f'Test "{identifier}" not found in {file}')


def discover_test_files(root: Path, patterns: list[str]) -> list[Path]:
    """Find test files under root matching any of the glob patterns."""
    files = []
    seen: set[Path] = set()

    for pattern in patterns:
        for path in sorted(root.glob(pattern)):
            if not path.is_file() or path in seen:
                continue
            rel_parts = path.relative_to(root).parts
            if any(part in DEFAULT_IGNORED_DIRS for part in rel_parts):
                continue
            seen.add(path)
            files.append(path)

    return files
