"""
CI/CD remediation loop

trigger -> poll until finished -> on failure: logs -> analyze -> fix ->
commit -> settle -> trigger again, at most MAX_RETRIES remediation
attempts per session.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type

import tenacity

from build_healer.analyzers.log_analyzer import LogAnalyzer
from build_healer.cancellation import CancellationToken
from build_healer.code_fixer import CodeFixer, summarize
from build_healer.config import HealerConfig
from build_healer.errors import (
    AlreadyProcessingError,
    BuildTimeoutError,
    CycleCancelledError,
    GitCommandError,
    HealerError,
    NoChangesToCommitError,
    NotFoundError,
    PushRejectedError,
    UnknownBuildError,
)
from build_healer.git_operations import GitOperations
from build_healer.jenkins_client import JenkinsClient
from build_healer.models import (
    AnalysisResult,
    BuildResult,
    BuildStatus,
    CycleResult,
    CycleState,
    FixOutcome,
    Issue,
    OrchestratorState,
    RemediationReport,
)
from build_healer.notifier import BuildNotifier, format_build_message
from build_healer.openai_client import OpenAIClient


logger = logging.getLogger(__name__)

ALREADY_PROCESSING = "already processing"
EXHAUSTED = "retries exhausted: manual intervention required"
NOTHING_TO_FIX = "analysis found nothing to fix"
NO_FIX_APPLIED = "no fixes could be applied"


@dataclass
class _Session:
    """What the current remediation session has produced so far"""
    analysis: Optional[AnalysisResult] = None
    report: Optional[RemediationReport] = None


class CICDOrchestrator:
    """Drives the build -> analyze -> fix -> commit -> rebuild loop"""

    def __init__(
        self,
        config: HealerConfig,
        jenkins: JenkinsClient,
        analyzer: LogAnalyzer,
        fixer: CodeFixer,
        git: GitOperations,
        notifier: Optional[BuildNotifier] = None,
        state: Optional[OrchestratorState] = None,
    ):
        self.config = config
        self.jenkins = jenkins
        self.analyzer = analyzer
        self.fixer = fixer
        self.git = git
        self.notifier = notifier or BuildNotifier(None)
        self.state = state or OrchestratorState(watchdog_enabled=config.watchdog_enabled)
        self.build_request = config.build_request()
        self._token: Optional[CancellationToken] = None

    @classmethod
    def from_config(cls, config: HealerConfig) -> "CICDOrchestrator":
        llm = OpenAIClient(timeout=config.llm_timeout)
        return cls(
            config=config,
            jenkins=JenkinsClient.from_config(config),
            analyzer=LogAnalyzer(llm),
            fixer=CodeFixer(llm, config.project_path, config.manifest_file),
            git=GitOperations(
                config.project_path,
                remote=config.git_remote,
                branch=config.target_branch,
                timeout=config.git_timeout,
            ),
            notifier=BuildNotifier(config.notify_webhook_url, timeout=config.http_timeout),
        )

    @property
    def is_processing(self) -> bool:
        return self.state.is_processing

    def get_status(self) -> dict:
        return self.state.snapshot()

    def cancel(self) -> CycleResult:
        """Ask the running cycle to stop at its next wait"""
        token = self._token
        if not self.state.is_processing or token is None:
            return CycleResult(False, "no cycle is running", state=self.state.state)
        token.cancel("cancelled by operator")
        return CycleResult(True, "cancellation requested", state=self.state.state,
                           current_retry=self.state.current_retry)

    # Entry points

    async def handle_push_event(self, payload: dict) -> CycleResult:
        logging.info("📥 Push event received")
        return await self.run_cycle(push_event=payload)

    async def trigger_manual_build(self) -> CycleResult:
        logging.info("🔧 Manual CI/CD cycle requested")
        return await self.run_cycle()

    async def run_cycle(self, push_event: Optional[dict] = None,
                        observed_failure: Optional[BuildStatus] = None) -> CycleResult:
        """
        Run one remediation session to a terminal state.

        Rejected immediately while another session runs. current_retry is
        reset here and only here, so retries accumulate across the
        re-triggers inside one session.
        """
        if not self.state.try_begin():
            logging.info("⏳ CI/CD cycle already in progress, rejecting new request")
            return CycleResult(
                False, ALREADY_PROCESSING,
                state=self.state.state,
                current_retry=self.state.current_retry,
                error=AlreadyProcessingError.__name__,
            )

        token = CancellationToken()
        self._token = token
        session = _Session()
        result = CycleResult(False, "cycle did not complete", state=CycleState.ABORTED)
        try:
            if push_event is not None:
                skip_reason = self._filter_push_event(push_event)
                if skip_reason:
                    logging.info(f"⏭️ {skip_reason}")
                    result = CycleResult(True, skip_reason, state=CycleState.IDLE)
                    return result

            logging.info("🚀 Starting CI/CD cycle...")
            result = await self._run(token, session, observed_failure)
            return result

        except CycleCancelledError as e:
            logging.warning(f"Cycle cancelled: {e.message}")
            result = self._result(False, f"cancelled: {e.message}", CycleState.ABORTED, session=session,
                                  error=e.__class__.__name__)
            return result
        except HealerError as e:
            logging.error(f"CI/CD cycle aborted: {e.message}")
            result = self._result(False, e.message, CycleState.ABORTED, session=session,
                                  error=e.__class__.__name__)
            await self._notify(None, f"❌ CI/CD cycle aborted: {e.message}")
            return result
        except Exception as e:
            logging.error(f"Unexpected error in CI/CD cycle: {str(e)}", exc_info=True)
            result = self._result(False, f"unexpected error: {str(e)}", CycleState.ABORTED, session=session,
                                  error=e.__class__.__name__)
            return result
        finally:
            self._token = None
            self.state.finish(result.state)
            logging.info(f"CI/CD cycle finished in state '{result.state.value}': {result.message}")

    # State machine

    def _filter_push_event(self, payload: dict) -> Optional[str]:
        """Return why the push should be ignored, or None to proceed"""
        ref = payload.get("ref") or ""
        branch = ref[len("refs/heads/"):] if ref.startswith("refs/heads/") else ref
        if branch != self.config.target_branch:
            return f"skipped push to '{branch or ref}', only '{self.config.target_branch}' is built"
        commits = payload.get("commits")
        if isinstance(commits, list) and not commits:
            return "skipped push without commits"
        return None

    def _set_state(self, state: CycleState) -> None:
        self.state.state = state

    def _result(self, success: bool, message: str, state: CycleState, build: Optional[BuildStatus] = None,
                session: Optional[_Session] = None, error: Optional[str] = None) -> CycleResult:
        self._set_state(state)
        return CycleResult(
            success=success,
            message=message,
            state=state,
            current_retry=self.state.current_retry,
            build=build,
            analysis=session.analysis if session else None,
            fixes=session.report if session else None,
            error=error,
        )

    async def _run(self, token: CancellationToken, session: _Session,
                   status: Optional[BuildStatus]) -> CycleResult:
        while True:
            if status is None:
                status = await self._build_and_wait(token)
            self.state.mark_evaluated(status.build_number)

            if status.result == BuildResult.SUCCESS:
                logging.info(f"✅ Build #{status.build_number} succeeded")
                fixes = f" after {self.state.current_retry} automatic fix(es)" if self.state.current_retry else ""
                await self._notify(status, f"Build succeeded{fixes}")
                return self._result(True, f"build succeeded{fixes}", CycleState.SUCCESS, status, session)

            if status.result != BuildResult.FAILURE:
                result_name = status.result.value if status.result else "UNKNOWN"
                logging.warning(f"⚠️ Build #{status.build_number} finished with {result_name}, not remediating")
                return self._result(False, f"build finished with result {result_name}", CycleState.ABORTED,
                                    status, session)

            if self.state.current_retry >= self.state.max_retries:
                logging.error(f"❌ Build #{status.build_number} failed and {self.state.max_retries} fix attempts are used up")
                await self._notify(status, f"Automatic fixing gave up after {self.state.max_retries} attempts, "
                                           f"manual intervention required")
                return self._result(False, EXHAUSTED, CycleState.EXHAUSTED, status, session)

            self.state.current_retry += 1
            logging.info(f"🔄 Build #{status.build_number} failed, auto-fix attempt "
                         f"{self.state.current_retry}/{self.state.max_retries}")

            terminal = await self._remediate(status, token, session)
            if terminal is not None:
                return terminal

            logging.info(f"⏳ Waiting {self.config.settle_delay}s before re-triggering the build...")
            await token.sleep(self.config.settle_delay)
            status = None

    async def _build_and_wait(self, token: CancellationToken) -> BuildStatus:
        self._set_state(CycleState.TRIGGERING)

        baseline = None
        try:
            previous = await token.guard(self.jenkins.check_build_status())
            baseline = previous.build_number
        except (NotFoundError, UnknownBuildError) as e:
            logging.warning(f"Could not read the last build before triggering: {e.message}")

        await token.guard(self.jenkins.trigger_build(self.build_request))

        self._set_state(CycleState.POLLING)
        return await self._wait_for_completion(baseline, token)

    async def _wait_for_completion(self, baseline: Optional[int], token: CancellationToken) -> BuildStatus:
        """Poll until a build newer than baseline has finished"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.poll_timeout

        while True:
            try:
                status = await token.guard(self.jenkins.check_build_status())
                if status.has_build and (baseline is None or status.build_number > baseline):
                    if not status.building:
                        logging.info(f"Build #{status.build_number} finished: "
                                     f"{status.result.value if status.result else 'UNKNOWN'}")
                        return status
                    logging.info(f"⏳ Build #{status.build_number} running...")
                else:
                    logging.info("⏳ Waiting for the triggered build to start...")
            except UnknownBuildError as e:
                logging.warning(f"Build status check failed, will retry: {e.message}")

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise BuildTimeoutError(f"build did not finish within {self.config.poll_timeout:.0f}s")
            await token.sleep(min(self.config.poll_interval, remaining))

    async def _remediate(self, status: BuildStatus, token: CancellationToken,
                         session: _Session) -> Optional[CycleResult]:
        """One analyze -> fix -> commit pass. Returns a terminal result, or None to rebuild"""
        self._set_state(CycleState.ANALYZING_FAILURE)
        await self._notify(status, f"Auto-fix attempt {self.state.current_retry}/{self.state.max_retries} started")

        logs = await token.guard(self.jenkins.get_build_logs(status.build_number))

        analysis = await self._with_substep_retry(
            f"Analysis of build #{status.build_number}",
            lambda: self.analyzer.analyze(status.build_number, logs, status.url),
            token,
            retry_result=lambda a: not a.success,
        )
        session.analysis = analysis

        if not analysis.needs_fix:
            logging.info("ℹ️ Analysis says no fix is needed")
            return self._result(False, NOTHING_TO_FIX, CycleState.ABORTED, status, session)

        self._set_state(CycleState.REMEDIATING)
        report = RemediationReport()
        for issue in analysis.issues:
            report.outcomes.append(await self._fix_issue(issue, token))
        session.report = report

        logging.info(f"Fixes applied: {len(report.succeeded)} succeeded, {len(report.failed)} failed")
        if not report.any_succeeded:
            return self._result(False, NO_FIX_APPLIED, CycleState.ABORTED, status, session)

        self._set_state(CycleState.COMMITTING)
        description = analysis.summary or f"fix build #{status.build_number}"
        await self._with_substep_retry(
            "Commit of automated fix",
            lambda: self.git.commit_fix(description),
            token,
            retry_on=(GitCommandError,),
            terminal=(NoChangesToCommitError, PushRejectedError),
        )
        await self._notify(status, f"Fix committed and pushed:\n{summarize(report)}")
        return None

    async def _fix_issue(self, issue: Issue, token: CancellationToken) -> FixOutcome:
        return await self._with_substep_retry(
            f"Fix of {issue.type.value} in '{issue.file}'",
            lambda: self.fixer.remediate(issue),
            token,
            retry_result=lambda outcome: outcome.retryable,
        )

    async def _with_substep_retry(
        self,
        label: str,
        operation: Callable[[], Awaitable],
        token: CancellationToken,
        retry_result: Callable[[object], bool] = lambda result: False,
        retry_on: Tuple[Type[HealerError], ...] = (),
        terminal: Tuple[Type[HealerError], ...] = (),
    ):
        """
        Run a single sub-step, retrying transient failures with a fixed backoff.

        At most max_retries retries; after that the last result is returned
        or the last error raised. Backoff sleeps wake on cancellation.
        """

        def give_up(retry_state: tenacity.RetryCallState):
            logging.error(f"❌ {label} still failing after {retry_state.attempt_number} attempts")
            return retry_state.outcome.result()

        retrying = tenacity.AsyncRetrying(
            retry=(
                tenacity.retry_if_exception_type(retry_on) & tenacity.retry_if_not_exception_type(terminal)
            ) | tenacity.retry_if_result(retry_result),
            wait=tenacity.wait_fixed(self.config.retry_backoff),
            stop=tenacity.stop_after_attempt(self.state.max_retries + 1),
            sleep=token.sleep,
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            retry_error_callback=give_up,
            reraise=True,
        )

        async def attempt():
            return await token.guard(operation())

        return await retrying(attempt)

    async def _notify(self, status: Optional[BuildStatus], note: str) -> None:
        try:
            if status is None:
                await self.notifier.notify(note)
            else:
                await self.notifier.notify(
                    format_build_message(self.build_request.job_path, status, note),
                    build=status,
                    current_retry=self.state.current_retry,
                )
        except Exception as e:
            logging.warning(f"⚠️ Notification failed: {str(e)}")


class BuildWatchdog:
    """
    Periodic check for build completions the orchestrator did not cause.

    Only builds numbered above the state's last_evaluated_build are looked
    at, so each failure is acted on once. While stopped, poll_once does
    nothing; after a restart the next poll re-seeds the high-water mark, so
    builds that finished while stopped are not acted on.
    """

    def __init__(self, orchestrator: CICDOrchestrator):
        self.orchestrator = orchestrator
        self.jenkins = orchestrator.jenkins
        self.state = orchestrator.state
        self._reseed = False

    @property
    def enabled(self) -> bool:
        return self.state.watchdog_enabled

    def start(self) -> CycleResult:
        if self.state.watchdog_enabled:
            return CycleResult(False, "watchdog already running", state=self.state.state)
        self.state.watchdog_enabled = True
        self._reseed = True
        logging.info("👀 Build watchdog started")
        return CycleResult(True, "watchdog started", state=self.state.state)

    def stop(self) -> CycleResult:
        if not self.state.watchdog_enabled:
            return CycleResult(False, "watchdog not running", state=self.state.state)
        self.state.watchdog_enabled = False
        logging.info("Build watchdog stopped")
        return CycleResult(True, "watchdog stopped", state=self.state.state)

    async def poll_once(self) -> Optional[CycleResult]:
        if not self.state.watchdog_enabled:
            return None

        if self.orchestrator.is_processing:
            logging.info("Watchdog: cycle in progress, skipping")
            return None

        try:
            status = await self.jenkins.check_build_status()
        except HealerError as e:
            logging.warning(f"Watchdog: could not check build status: {e.message}")
            return None

        if not status.finished:
            return None

        last_seen = self.state.last_evaluated_build
        if last_seen is None or self._reseed:
            self._reseed = False
            logging.info(f"Watchdog: starting from build #{status.build_number}")
            self.state.mark_evaluated(status.build_number)
            return None
        if status.build_number <= last_seen:
            return None

        self.state.mark_evaluated(status.build_number)
        await self._notify(status)

        if status.result != BuildResult.FAILURE:
            return None

        logging.info(f"Watchdog: build #{status.build_number} failed, starting remediation")
        return await self.orchestrator.run_cycle(observed_failure=status)

    async def _notify(self, status: BuildStatus) -> None:
        note = ""
        try:
            detail = await self.jenkins.get_build_detail(status.build_number)
            changes = "\n".join(f"- {msg}" for msg in detail.changes if msg)
            note = f"Built by {detail.built_by} in {detail.duration_ms // 1000}s"
            if changes:
                note += f"\nChanges:\n{changes}"
        except HealerError as e:
            logging.warning(f"Watchdog: could not fetch build detail: {e.message}")
        await self.orchestrator._notify(status, note)
