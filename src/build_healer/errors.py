"""
Error taxonomy for the build healer
"""


class HealerError(Exception):
    """Base class for every error the healer raises on purpose"""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


# Build server

class AuthError(HealerError):
    """Build server rejected the credentials (401)"""


class BuildPermissionError(HealerError):
    """Credentials are valid but not allowed to do this (403)"""


class NotFoundError(HealerError):
    """Job or build does not exist (404)"""


class NoChangesError(HealerError):
    """Build server reports nothing new to build"""


class UnknownBuildError(HealerError):
    """Any other build server failure, including transport errors"""


class BuildTimeoutError(HealerError):
    """Build did not finish inside the poll ceiling"""


# Language model

class ModelError(HealerError):
    """LLM call failed or returned content that could not be used"""


# Remediation

class SourceFileNotFoundError(HealerError):
    """File named by an issue does not exist at its resolved path"""


class WriteError(HealerError):
    """Fixed content could not be written back"""


class UnsupportedIssueError(HealerError):
    """No automatic fix exists for this issue type"""


# Source control

class GitCommandError(HealerError):
    """A git command exited non-zero or timed out"""

    def __init__(self, message: str = "", stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class NoChangesToCommitError(GitCommandError):
    """Staging found no diff to commit"""


class PushRejectedError(GitCommandError):
    """Remote refused the push (diverged history, protected branch)"""


# Orchestrator

class AlreadyProcessingError(HealerError):
    """A remediation cycle is already in flight"""


class CycleCancelledError(HealerError):
    """Operator cancelled the running cycle"""


# Sub-steps failing with these are retried with backoff before giving up
TRANSIENT_ERRORS = (WriteError, ModelError)
