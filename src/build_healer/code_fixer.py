"""
Automatic source fixes for classified build issues
"""

import json
import logging
import tomllib
from pathlib import Path
from typing import Callable, Dict

from build_healer.errors import (
    HealerError,
    ModelError,
    SourceFileNotFoundError,
    UnsupportedIssueError,
    WriteError,
)
from build_healer.llm_response import strip_wrapping_fence
from build_healer.models import FixOutcome, Issue, IssueType, RemediationReport


SYSTEM_MESSAGE = """You are a senior engineer repairing a broken CI build.
Return ONLY the complete corrected file content: no explanations, no comments about the change, no Markdown code fences.
Change as little as possible; keep formatting and everything unrelated to the error untouched."""


def syntax_fix_prompt(path: str, content: str, issue: Issue) -> str:
    location = f" at line {issue.line}" if issue.line else ""
    return f"""The build fails with a syntax/compilation error in `{path}`{location}:

{issue.message}

Fix the error. Full current content of `{path}`:

{content}
"""


def import_fix_prompt(path: str, content: str, issue: Issue) -> str:
    return f"""The build fails because an import in `{path}` cannot be resolved:

{issue.message}

Fix the broken import reference: correct the path or name if the intended module is obvious,
otherwise remove the import and any usage of it. Full current content of `{path}`:

{content}
"""


def dependency_fix_prompt(path: str, content: str, issue: Issue) -> str:
    return f"""The build fails with a dependency error:

{issue.message}

Correct the project manifest `{path}` (add the missing package, fix the version range, remove the
conflicting entry). The result must stay valid and keep every unrelated field. Current content:

{content}
"""


def config_fix_prompt(path: str, content: str, issue: Issue) -> str:
    return f"""The build fails because of a configuration error in `{path}`:

{issue.message}

Fix the configuration. Full current content of `{path}`:

{content}
"""


def rewrite_token_budget(content: str) -> int:
    """Room for the whole file back plus some growth, at roughly 3 chars per token"""
    return max(4000, len(content) // 3 + 1000)


def validate_structured(path: Path, content: str) -> None:
    """Reject manifests/configs that no longer parse; raises ModelError"""
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            json.loads(content)
        elif suffix == ".toml":
            tomllib.loads(content)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as e:
        raise ModelError(f"fixed {path.name} is not well-formed {suffix[1:].upper()}: {e}")


class CodeFixer:
    """Apply LLM-generated fixes to files in the local working copy"""

    def __init__(self, llm_client, project_root: str, manifest_file: str = "package.json"):
        self.llm = llm_client
        self.project_root = Path(project_root).resolve()
        self.manifest_file = manifest_file

        self.handlers: Dict[IssueType, Callable] = {
            IssueType.SYNTAX_ERROR: self._fix_syntax_error,
            IssueType.MODULE_RESOLUTION_ERROR: self._fix_module_resolution,
            IssueType.DEPENDENCY_ERROR: self._fix_dependency,
            IssueType.CONFIGURATION_ERROR: self._fix_configuration,
            IssueType.OTHER: self._unsupported,
        }
        missing = set(IssueType) - set(self.handlers)
        if missing:
            raise TypeError(f"no remediation handler for: {', '.join(sorted(t.value for t in missing))}")

    def resolve_path(self, file: str) -> Path:
        """
        Map an issue's file onto the working copy.

        Relative paths resolve against the project root. Absolute paths from
        the build agent's workspace are re-anchored by their longest suffix
        that exists here. Nothing outside the project root is ever returned.
        """
        if not file or not file.strip():
            raise SourceFileNotFoundError("issue does not name a file")

        raw = Path(file.strip().replace("\\", "/"))
        candidates = []
        if raw.is_absolute():
            candidates.append(raw)
            parts = raw.parts[1:]
            candidates.extend(self.project_root.joinpath(*parts[i:]) for i in range(len(parts)))
        else:
            candidates.append(self.project_root / raw)

        for candidate in candidates:
            resolved = candidate.resolve()
            if not resolved.is_relative_to(self.project_root):
                continue
            if resolved.is_file():
                return resolved

        raise SourceFileNotFoundError(f"{file} not found under {self.project_root}")

    async def remediate(self, issue: Issue) -> FixOutcome:
        """Fix one issue; failures come back as FixOutcome(success=False), never raised"""
        handler = self.handlers[issue.type]
        logging.info(f"🔧 Fixing {issue.type.value} in '{issue.file or self.manifest_file}'")
        try:
            path = await handler(issue)
        except HealerError as e:
            logging.error(f"❌ Fix failed for {issue.type.value} in '{issue.file}': {e.message}")
            return FixOutcome(
                success=False,
                file=issue.file,
                message=e.message,
                error=e.__class__.__name__,
            )

        relative = path.relative_to(self.project_root).as_posix()
        logging.info(f"✅ Fixed {issue.type.value} in {relative}")
        return FixOutcome(success=True, file=relative, message=f"Fixed {issue.type.value}: {issue.message}")

    async def _fix_syntax_error(self, issue: Issue) -> Path:
        return await self._rewrite(self.resolve_path(issue.file), issue, syntax_fix_prompt)

    async def _fix_module_resolution(self, issue: Issue) -> Path:
        return await self._rewrite(self.resolve_path(issue.file), issue, import_fix_prompt)

    async def _fix_dependency(self, issue: Issue) -> Path:
        # Dependency fixes always target the manifest, whatever file the log blamed
        path = self.resolve_path(self.manifest_file)
        return await self._rewrite(path, issue, dependency_fix_prompt, validate=True)

    async def _fix_configuration(self, issue: Issue) -> Path:
        path = self.resolve_path(issue.file)
        return await self._rewrite(path, issue, config_fix_prompt, validate=path.suffix.lower() in (".json", ".toml"))

    async def _unsupported(self, issue: Issue) -> Path:
        raise UnsupportedIssueError(f"no automatic fix for '{issue.type.value}' issues: {issue.message}")

    async def _rewrite(self, path: Path, issue: Issue, make_prompt: Callable, validate: bool = False) -> Path:
        relative = path.relative_to(self.project_root).as_posix()
        try:
            original = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SourceFileNotFoundError(f"{relative} disappeared before it could be read")
        except OSError as e:
            raise WriteError(f"could not read {relative}: {e}")

        response = await self.llm.invoke(
            make_prompt(relative, original, issue),
            SYSTEM_MESSAGE,
            max_tokens=rewrite_token_budget(original),
        )
        fixed = strip_wrapping_fence(response.content)

        if not fixed.strip():
            raise ModelError(f"model returned an empty file for {relative}")
        if validate:
            validate_structured(path, fixed)

        if original.endswith("\n") and not fixed.endswith("\n"):
            fixed += "\n"

        self._write(path, fixed)
        return path

    def _write(self, path: Path, content: str) -> None:
        try:
            path.write_text(content, encoding="utf-8")
        except OSError as e:
            raise WriteError(f"could not write {path.name}: {e}")


def summarize(report: RemediationReport) -> str:
    return "\n".join(
        f"{'✅' if o.success else '❌'} {o.file or '-'}: {o.message}" for o in report.outcomes
    )
