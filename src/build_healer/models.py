"""
Data models for the build healer
"""

import threading
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, List, Any

from build_healer.errors import TRANSIENT_ERRORS


MAX_RETRIES = 3


class BuildResult(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    UNSTABLE = "UNSTABLE"
    ABORTED = "ABORTED"
    NOT_BUILT = "NOT_BUILT"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["BuildResult"]:
        """Jenkins reports null while building; unknown strings are treated the same"""
        if not value:
            return None
        try:
            return cls(value.upper())
        except ValueError:
            return None


class IssueType(str, Enum):
    SYNTAX_ERROR = "syntax_error"
    DEPENDENCY_ERROR = "dependency_error"
    CONFIGURATION_ERROR = "configuration_error"
    MODULE_RESOLUTION_ERROR = "module_resolution_error"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "IssueType":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.MEDIUM


class CycleState(str, Enum):
    IDLE = "idle"
    TRIGGERING = "triggering"
    POLLING = "polling"
    SUCCESS = "success"
    ANALYZING_FAILURE = "analyzing_failure"
    REMEDIATING = "remediating"
    COMMITTING = "committing"
    EXHAUSTED = "exhausted"
    ABORTED = "aborted"


@dataclass(frozen=True)
class BuildRequest:
    """What to build and with which default parameters"""
    job_path: str
    tag: str = "origin/develop"
    app_env: str = "test1"
    build_command: str = "pnpm install && npm run build"
    output_dir: str = "dist"
    deploy_target: str = ""
    extra_parameters: Dict[str, str] = field(default_factory=dict)

    def to_parameters(self) -> Dict[str, str]:
        """Render as the form fields a parameterized job expects"""
        params = {
            "TAG": self.tag,
            "APP_ENV": self.app_env,
            "APP_BUILDCMD": self.build_command,
            "APP_BUILDFILE": self.output_dir,
        }
        if self.deploy_target:
            params["APP_HOSTNAME"] = self.deploy_target
        params.update(self.extra_parameters)
        return params


@dataclass
class BuildStatus:
    """Normalized status of the last build of a job"""
    build_number: Optional[int]
    building: bool
    result: Optional[BuildResult]
    url: str = ""

    @classmethod
    def no_build(cls) -> "BuildStatus":
        return cls(build_number=None, building=False, result=None, url="")

    @property
    def has_build(self) -> bool:
        return self.build_number is not None

    @property
    def finished(self) -> bool:
        return self.has_build and not self.building

    def to_dict(self) -> dict:
        return {
            "build_number": self.build_number,
            "building": self.building,
            "result": self.result.value if self.result else None,
            "url": self.url,
        }


@dataclass
class BuildDetail(BuildStatus):
    """Build status plus the metadata notifications show"""
    duration_ms: int = 0
    built_by: str = "N/A"
    changes: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            "duration_ms": self.duration_ms,
            "built_by": self.built_by,
            "changes": list(self.changes),
        })
        return data


@dataclass
class Issue:
    """One classified defect extracted from a build log"""
    type: IssueType
    file: str
    message: str
    line: Optional[int] = None
    severity: Severity = Severity.MEDIUM

    @classmethod
    def from_dict(cls, data: dict) -> "Issue":
        line = data.get("line")
        try:
            line = int(line) if line not in (None, "") else None
        except (TypeError, ValueError):
            line = None
        return cls(
            type=IssueType.parse(data.get("type")),
            file=str(data.get("file") or ""),
            message=str(data.get("message") or ""),
            line=line,
            severity=Severity.parse(data.get("severity")),
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "file": self.file,
            "message": self.message,
            "line": self.line,
            "severity": self.severity.value,
        }


@dataclass
class AnalysisResult:
    """Result of analyzing one failed build"""
    needs_fix: bool
    issues: List[Issue] = field(default_factory=list)
    summary: str = ""
    recommendations: List[str] = field(default_factory=list)
    priority: Severity = Severity.MEDIUM
    # Whether the LLM call itself completed; a parse failure still counts as success
    success: bool = True
    error: Optional[str] = None

    @classmethod
    def degraded(cls, build_number: Optional[int], reason: str, success: bool = True) -> "AnalysisResult":
        """Fallback used when the model answer is missing or unusable"""
        return cls(
            needs_fix=True,
            issues=[Issue(
                type=IssueType.OTHER,
                file="",
                message=f"Build #{build_number} failed; automatic analysis unavailable: {reason}",
                severity=Severity.MEDIUM,
            )],
            summary=f"Build #{build_number} failed, analysis degraded",
            recommendations=["Check the build log manually"],
            priority=Severity.MEDIUM,
            success=success,
            error=reason,
        )

    def to_dict(self) -> dict:
        return {
            "needs_fix": self.needs_fix,
            "issues": [issue.to_dict() for issue in self.issues],
            "summary": self.summary,
            "recommendations": list(self.recommendations),
            "priority": self.priority.value,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class FixOutcome:
    """Outcome of remediating one issue"""
    success: bool
    file: str
    message: str
    error: Optional[str] = None

    @property
    def retryable(self) -> bool:
        return not self.success and self.error in {cls.__name__ for cls in TRANSIENT_ERRORS}

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RemediationReport:
    outcomes: List[FixOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> List[FixOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> List[FixOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)

    def to_dict(self) -> dict:
        return {
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class OrchestratorState:
    """
    Process-wide orchestrator state.

    is_processing is set by try_begin() and cleared by finish(); the check and
    the set happen under one lock so concurrent entry points cannot both win.
    """
    max_retries: int = MAX_RETRIES
    is_processing: bool = False
    current_retry: int = 0
    state: CycleState = CycleState.IDLE
    last_evaluated_build: Optional[int] = None
    watchdog_enabled: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def try_begin(self) -> bool:
        with self._lock:
            if self.is_processing:
                return False
            self.is_processing = True
            self.current_retry = 0
            return True

    def finish(self, final_state: CycleState) -> None:
        with self._lock:
            self.state = final_state
            self.is_processing = False

    def mark_evaluated(self, build_number: Optional[int]) -> None:
        if build_number is None:
            return
        with self._lock:
            if self.last_evaluated_build is None or build_number > self.last_evaluated_build:
                self.last_evaluated_build = build_number

    def snapshot(self) -> dict:
        return {
            "is_processing": self.is_processing,
            "current_retry": self.current_retry,
            "max_retries": self.max_retries,
            "state": self.state.value,
            "last_evaluated_build": self.last_evaluated_build,
            "watchdog_enabled": self.watchdog_enabled,
        }


@dataclass
class CycleResult:
    """Envelope every public entry point returns"""
    success: bool
    message: str
    state: CycleState = CycleState.IDLE
    current_retry: int = 0
    build: Optional[BuildStatus] = None
    analysis: Optional[AnalysisResult] = None
    fixes: Optional[RemediationReport] = None
    # Name of the error class that ended the cycle, if any
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "error": self.error,
            "state": self.state.value,
            "current_retry": self.current_retry,
            "build": self.build.to_dict() if self.build else None,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "fixes": self.fixes.to_dict() if self.fixes else None,
        }
