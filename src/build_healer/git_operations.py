"""
Git operations for committing and pushing automated fixes
"""

import asyncio
import logging
import os
from dataclasses import dataclass

from build_healer.errors import GitCommandError, NoChangesToCommitError, PushRejectedError


COMMIT_PREFIX = "fix(ci): auto-fix"
REJECTION_MARKERS = ("[rejected]", "non-fast-forward", "fetch first", "protected branch", "pre-receive hook declined")


@dataclass
class GitResult:
    returncode: int
    stdout: str
    stderr: str


class GitOperations:
    """Handle Git operations on the local working copy"""

    def __init__(self, project_path: str, remote: str = "origin", branch: str = "develop", timeout: float = 30.0):
        if not project_path:
            raise ValueError("PROJECT_PATH must be set")

        self.project_path = project_path
        self.remote = remote
        self.branch = branch
        self.timeout = timeout
        self._unpushed_sha = None

    async def _run(self, *args: str, check: bool = True) -> GitResult:
        """Run one git command in the working copy, without a shell"""
        command = " ".join(("git",) + args)
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        try:
            process = await asyncio.create_subprocess_exec(
                "git", *args,
                cwd=self.project_path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise GitCommandError(f"could not run '{command}': {e}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise GitCommandError(f"'{command}' timed out after {self.timeout}s")

        result = GitResult(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace").strip(),
            stderr=stderr.decode("utf-8", errors="replace").strip(),
        )
        if check and result.returncode != 0:
            logging.error(f"Git command failed: {command}: {result.stderr}")
            raise GitCommandError(f"'{command}' exited with {result.returncode}: {result.stderr}", stderr=result.stderr)
        return result

    async def has_staged_changes(self) -> bool:
        result = await self._run("diff", "--cached", "--quiet", check=False)
        if result.returncode not in (0, 1):
            raise GitCommandError(f"'git diff --cached' exited with {result.returncode}: {result.stderr}", stderr=result.stderr)
        return result.returncode == 1

    async def commit_fix(self, description: str) -> str:
        """
        Stage everything, commit and push to the configured branch.

        Returns the new commit SHA. Raises NoChangesToCommitError when the
        fixes left no diff and PushRejectedError when the remote refuses.
        """
        logging.info("📝 Committing automated fix...")

        await self._run("add", "-A")
        if await self.has_staged_changes():
            summary = " ".join((description or "build failure").split())
            await self._run("commit", "-m", f"{COMMIT_PREFIX} {summary}")
            self._unpushed_sha = (await self._run("rev-parse", "HEAD")).stdout
        elif not self._unpushed_sha:
            raise NoChangesToCommitError("fixes produced no changes to commit")
        else:
            # A previous call committed but could not push
            logging.info(f"Retrying push of {self._unpushed_sha[:8]}")

        sha = self._unpushed_sha
        push = await self._run("push", self.remote, f"HEAD:{self.branch}", check=False)
        if push.returncode != 0:
            if any(marker in push.stderr for marker in REJECTION_MARKERS):
                self._unpushed_sha = None
                raise PushRejectedError(f"push to {self.remote}/{self.branch} rejected: {push.stderr}", stderr=push.stderr)
            raise GitCommandError(f"push to {self.remote}/{self.branch} failed: {push.stderr}", stderr=push.stderr)

        self._unpushed_sha = None
        logging.info(f"✅ Fix {sha[:8]} committed and pushed to {self.remote}/{self.branch}")
        return sha
