"""
Toolchain-specific build log patterns
"""

import re
import logging
from typing import List, Optional, Tuple

from build_healer.models import Issue, IssueType, Severity


# Lines that mark the start of the interesting part of a frontend build log
TOOLCHAIN_MARKERS = [
    "[vite:import-analysis]",
    "[vite:esbuild]",
    "[vite:vue]",
    "error during build",
    "Failed to compile",
    "Module not found",
    "Build failed with",
    "SyntaxError",
    "ERR_PNPM",
    "npm ERR!",
]

SHORT_LOG_CHARS = 10000
TAIL_CHARS = 5000

_SOURCE_EXT = r"(?:js|jsx|ts|tsx|mjs|cjs|vue|svelte|json|css|scss|less)"

# [vite:import-analysis] Failed to resolve import "./foo" from "src/main.js". Does the file exist?
_RESOLVE_IMPORT = re.compile(
    r'Failed to resolve import ["\'](?P<module>[^"\']+)["\'] from ["\'](?P<file>[^"\']+)["\']'
)

# ERROR in ./src/main.js
# Module not found: Error: Can't resolve './foo' in '/ws/src'
_WEBPACK_NOT_FOUND = re.compile(
    r"ERROR in (?P<file>\S+?)(?::\d+(?::\d+)?)?\s*\r?\n\s*Module not found: Error: Can't resolve ['\"](?P<module>[^'\"]+)['\"]"
)

# src/main.js:8:5: ERROR: Expected ";" but found "}"   (esbuild, vite:esbuild)
_ESBUILD_ERROR = re.compile(
    rf"(?P<file>[\w@./\\-]+\.{_SOURCE_EXT}):(?P<line>\d+):(?P<col>\d+):\s+ERROR:\s+(?P<msg>[^\r\n]+)"
)

# SyntaxError: /ws/src/main.js: Unexpected token (8:5)   (babel)
_BABEL_SYNTAX = re.compile(
    rf"SyntaxError:\s+(?P<file>[\w@./\\-]+\.{_SOURCE_EXT}):\s+(?P<msg>[^\r\n]+?)\s+\((?P<line>\d+):(?P<col>\d+)\)"
)

# /ws/src/main.js:8
# SyntaxError: Unexpected token '}'   (node)
_NODE_SYNTAX = re.compile(
    rf"(?P<file>[\w@./\\-]+\.{_SOURCE_EXT}):(?P<line>\d+)\r?\n(?:[^\r\n]*\r?\n){{0,4}}?SyntaxError:\s+(?P<msg>[^\r\n]+)"
)

_CANNOT_FIND_MODULE = re.compile(r"Cannot find module ['\"](?P<module>[^'\"]+)['\"]")
_NPM_RESOLVE = re.compile(r"npm ERR! (?:code )?ERESOLVE[^\r\n]*|ERR_PNPM_\w+[^\r\n]*")


def find_marker(build_logs: str) -> Optional[Tuple[str, int]]:
    """Return (marker, line index) of the first toolchain marker in the log"""
    for index, line in enumerate(build_logs.splitlines()):
        for marker in TOOLCHAIN_MARKERS:
            if marker in line:
                return marker, index
    return None


def is_toolchain_failure(build_logs: str) -> bool:
    return find_marker(build_logs) is not None


def extract_relevant_section(build_logs: str, before: int = 20, after: int = 80) -> str:
    """
    Cut the log down to the part worth sending to the model.

    With a toolchain marker: a window of lines around it. Otherwise the
    tail of long logs, since build errors land at the end.
    """
    found = find_marker(build_logs)
    if found:
        marker, index = found
        lines = build_logs.splitlines()
        start = max(0, index - before)
        section = "\n".join(lines[start:index + after])
        logging.info(f"📋 Found '{marker}' at line {index + 1}, sending {len(section)} chars around it")
        return section

    if len(build_logs) > SHORT_LOG_CHARS:
        logging.info(f"📋 Using last {TAIL_CHARS} chars of {len(build_logs)} total chars")
        return build_logs[-TAIL_CHARS:]

    logging.info(f"📋 Using all {len(build_logs)} chars (short log)")
    return build_logs


def normalize_path(path: str) -> str:
    path = path.strip().strip("\"'").replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def same_file(a: str, b: str) -> bool:
    """True if two paths name the same file, allowing one to be an absolute workspace path"""
    a, b = normalize_path(a), normalize_path(b)
    if not a or not b:
        return a == b
    if a == b:
        return True
    shorter, longer = sorted((a, b), key=len)
    return longer.endswith("/" + shorter.lstrip("/"))


def detect_issues(build_logs: str) -> List[Issue]:
    """
    Extract issues from well-known error shapes without asking the model.

    Dependency failures carry an empty file: they are fixed in the
    project manifest.
    """
    issues: List[Issue] = []

    def add(issue: Issue) -> None:
        for existing in issues:
            if existing.type == issue.type and same_file(existing.file, issue.file) and existing.line == issue.line:
                return
        issues.append(issue)

    for match in _RESOLVE_IMPORT.finditer(build_logs):
        add(Issue(
            type=IssueType.MODULE_RESOLUTION_ERROR,
            file=normalize_path(match.group("file")),
            message=f'Failed to resolve import "{match.group("module")}"',
            severity=Severity.HIGH,
        ))

    for match in _WEBPACK_NOT_FOUND.finditer(build_logs):
        add(Issue(
            type=IssueType.MODULE_RESOLUTION_ERROR,
            file=normalize_path(match.group("file")),
            message=f"Can't resolve '{match.group('module')}'",
            severity=Severity.HIGH,
        ))

    for pattern in (_ESBUILD_ERROR, _BABEL_SYNTAX, _NODE_SYNTAX):
        for match in pattern.finditer(build_logs):
            add(Issue(
                type=IssueType.SYNTAX_ERROR,
                file=normalize_path(match.group("file")),
                message=match.group("msg").strip(),
                line=int(match.group("line")),
                severity=Severity.HIGH,
            ))

    for match in _CANNOT_FIND_MODULE.finditer(build_logs):
        module = match.group("module")
        # Relative requires are broken imports, bare names are missing packages
        if module.startswith("."):
            continue
        add(Issue(
            type=IssueType.DEPENDENCY_ERROR,
            file="",
            message=f"Cannot find module '{module}'",
            severity=Severity.HIGH,
        ))

    npm_match = _NPM_RESOLVE.search(build_logs)
    if npm_match:
        add(Issue(
            type=IssueType.DEPENDENCY_ERROR,
            file="",
            message=npm_match.group(0).strip(),
            severity=Severity.HIGH,
        ))

    if issues:
        logging.info(f"🔍 Detected {len(issues)} issue(s) from known log patterns")
    return issues
