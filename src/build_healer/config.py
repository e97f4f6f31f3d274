"""
Settings for the build healer, read from the environment
"""

import os
import json
from dataclasses import dataclass, field
from typing import Optional, Dict

from build_healer.models import BuildRequest


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    if value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if value.strip().lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"{name} must be true or false, got {value!r}")


def _float_env(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass
class HealerConfig:
    """Everything the orchestrator and its collaborators need to run"""
    jenkins_url: str
    jenkins_username: str
    jenkins_token: str
    job_path: str
    project_path: str
    build_tag: str = "origin/develop"
    app_env: str = "test1"
    build_command: str = "pnpm install && npm run build"
    output_dir: str = "dist"
    deploy_target: str = ""
    extra_parameters: Dict[str, str] = field(default_factory=dict)
    git_remote: str = "origin"
    target_branch: str = "develop"
    manifest_file: str = "package.json"
    poll_interval: float = 10.0
    poll_timeout: float = 300.0
    settle_delay: float = 30.0
    retry_backoff: float = 10.0
    http_timeout: float = 10.0
    log_timeout: float = 30.0
    git_timeout: float = 30.0
    llm_timeout: float = 120.0
    max_log_chars: int = 200_000
    notify_webhook_url: Optional[str] = None
    watchdog_enabled: bool = True

    @classmethod
    def from_env(cls) -> "HealerConfig":
        jenkins_url = os.getenv("JENKINS_URL")
        username = os.getenv("JENKINS_USERNAME")
        token = os.getenv("JENKINS_API_TOKEN")
        job_path = os.getenv("JENKINS_JOB_NAME")
        project_path = os.getenv("PROJECT_PATH")

        if not jenkins_url or not username or not token:
            raise ValueError("JENKINS_URL, JENKINS_USERNAME and JENKINS_API_TOKEN must be set")
        if not job_path:
            raise ValueError("JENKINS_JOB_NAME must be set")
        if not project_path:
            raise ValueError("PROJECT_PATH must be set")

        extra = os.getenv("JENKINS_EXTRA_PARAMETERS", "")
        try:
            extra_parameters = json.loads(extra) if extra else {}
        except json.JSONDecodeError as e:
            raise ValueError(f"JENKINS_EXTRA_PARAMETERS must be a JSON object: {e}")
        if not isinstance(extra_parameters, dict):
            raise ValueError("JENKINS_EXTRA_PARAMETERS must be a JSON object")

        return cls(
            jenkins_url=jenkins_url.rstrip("/"),
            jenkins_username=username,
            jenkins_token=token,
            job_path=job_path.strip("/"),
            project_path=project_path,
            build_tag=os.getenv("JENKINS_BUILD_TAG", "origin/develop"),
            app_env=os.getenv("JENKINS_APP_ENV", "test1"),
            build_command=os.getenv("JENKINS_BUILD_COMMAND", "pnpm install && npm run build"),
            output_dir=os.getenv("JENKINS_OUTPUT_DIR", "dist"),
            deploy_target=os.getenv("JENKINS_DEPLOY_TARGET", ""),
            extra_parameters={str(k): str(v) for k, v in extra_parameters.items()},
            git_remote=os.getenv("GIT_REMOTE", "origin"),
            target_branch=os.getenv("TARGET_BRANCH", "develop"),
            manifest_file=os.getenv("MANIFEST_FILE", "package.json"),
            poll_interval=_float_env("POLL_INTERVAL", 10.0),
            poll_timeout=_float_env("POLL_TIMEOUT", 300.0),
            settle_delay=_float_env("SETTLE_DELAY", 30.0),
            retry_backoff=_float_env("RETRY_BACKOFF", 10.0),
            http_timeout=_float_env("HTTP_TIMEOUT", 10.0),
            log_timeout=_float_env("LOG_TIMEOUT", 30.0),
            git_timeout=_float_env("GIT_TIMEOUT", 30.0),
            llm_timeout=_float_env("LLM_TIMEOUT", 120.0),
            max_log_chars=int(_float_env("MAX_LOG_CHARS", 200_000)),
            notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL") or None,
            watchdog_enabled=_bool_env("WATCHDOG_ENABLED", True),
        )

    def build_request(self) -> BuildRequest:
        return BuildRequest(
            job_path=self.job_path,
            tag=self.build_tag,
            app_env=self.app_env,
            build_command=self.build_command,
            output_dir=self.output_dir,
            deploy_target=self.deploy_target,
            extra_parameters=dict(self.extra_parameters),
        )
