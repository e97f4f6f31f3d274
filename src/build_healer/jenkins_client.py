"""
Jenkins API Client
Handles all interactions with the Jenkins REST API
"""

import logging
from typing import Optional, Dict, Tuple

import httpx

from build_healer.errors import (
    AuthError,
    BuildPermissionError,
    NotFoundError,
    NoChangesError,
    UnknownBuildError,
)
from build_healer.models import BuildRequest, BuildStatus, BuildDetail, BuildResult


PARAMETERS_PROPERTY = "hudson.model.ParametersDefinitionProperty"
NO_CHANGES_MARKERS = ("Nothing is submitted", "No changes")


def job_url_path(job_path: str) -> str:
    """
    Translate a nested job name into Jenkins' URL scheme.

    "test/web/app" -> "job/test/job/web/job/app"
    """
    parts = [p for p in job_path.strip("/").split("/") if p]
    if not parts:
        raise ValueError("job path must not be empty")
    return "/".join(f"job/{part}" for part in parts)


def parse_job_url_path(url_path: str) -> str:
    """Reverse of job_url_path: "job/test/job/web" -> "test/web" """
    parts = [p for p in url_path.strip("/").split("/") if p]
    if len(parts) % 2 != 0 or any(marker != "job" for marker in parts[0::2]):
        raise ValueError(f"not a Jenkins job URL path: {url_path!r}")
    return "/".join(parts[1::2])


class JenkinsClient:
    """Client for Jenkins build operations"""

    def __init__(
        self,
        base_url: str,
        username: str,
        token: str,
        job_path: str,
        timeout: float = 10.0,
        log_timeout: float = 30.0,
        max_log_chars: int = 200_000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not base_url or not username or not token:
            raise ValueError("Jenkins URL, username and API token must be set")

        self.base_url = base_url.rstrip("/")
        self.job_path = job_path
        self.timeout = timeout
        self.log_timeout = log_timeout
        self.max_log_chars = max_log_chars

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=httpx.BasicAuth(username, token),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config, transport: Optional[httpx.AsyncBaseTransport] = None) -> "JenkinsClient":
        return cls(
            base_url=config.jenkins_url,
            username=config.jenkins_username,
            token=config.jenkins_token,
            job_path=config.job_path,
            timeout=config.http_timeout,
            log_timeout=config.log_timeout,
            max_log_chars=config.max_log_chars,
            transport=transport,
        )

    async def close(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, action: str, **kwargs) -> httpx.Response:
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise UnknownBuildError(f"{action} failed: {e.__class__.__name__}: {e}")
        self._raise_for_status(response, action)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        if status == 401:
            raise AuthError(f"{action}: Jenkins authentication failed, check username and API token")
        if status == 403:
            raise BuildPermissionError(f"{action}: not permitted")
        if status == 404:
            raise NotFoundError(f"{action}: {response.request.url} not found")
        if status == 400:
            body = response.text or ""
            if any(marker in body for marker in NO_CHANGES_MARKERS):
                raise NoChangesError(f"{action}: Jenkins reports no new changes to build")
            raise UnknownBuildError(f"{action}: bad request: {body[:200]}")
        raise UnknownBuildError(f"{action}: Jenkins returned status {status}")

    async def test_connection(self) -> Dict:
        """Check that the server is reachable and accepts the credentials"""
        try:
            response = await self._request("GET", "/api/json", "Connection test")
            data = response.json()
            return {"success": True, "message": "Jenkins connection OK", "mode": data.get("mode")}
        except (AuthError, BuildPermissionError, NotFoundError, UnknownBuildError) as e:
            logging.warning(f"Jenkins connection test failed: {e.message}")
            return {"success": False, "message": e.message}

    async def get_crumb(self) -> Optional[Tuple[str, str]]:
        """
        Fetch the anti-CSRF crumb.

        Best-effort: installations with CSRF protection disabled return 404
        here, and the build request simply goes out without the header.
        """
        try:
            response = await self.client.get("/crumbIssuer/api/json")
            if response.status_code != 200:
                logging.info(f"No CSRF crumb available (status {response.status_code})")
                return None
            data = response.json()
            return data["crumbRequestField"], data["crumb"]
        except (httpx.HTTPError, ValueError, KeyError) as e:
            logging.warning(f"Could not fetch CSRF crumb: {str(e)}")
            return None

    async def get_job_info(self, job_path: Optional[str] = None) -> Dict:
        job = job_path or self.job_path
        response = await self._request("GET", f"/{job_url_path(job)}/api/json", f"Fetch job '{job}'")
        return response.json()

    @staticmethod
    def is_parameterized(job_info: Dict) -> bool:
        return any(
            (prop or {}).get("_class") == PARAMETERS_PROPERTY
            for prop in job_info.get("property") or []
        )

    async def trigger_build(self, request: BuildRequest) -> Dict:
        """Start a build, choosing the parameterized endpoint when the job needs it"""
        job = request.job_path or self.job_path
        url_path = job_url_path(job)

        crumb = await self.get_crumb()
        headers = {"Content-Type": "application/x-www-form-urlencoded"}
        if crumb:
            headers[crumb[0]] = crumb[1]
            logging.info("Using CSRF crumb for build request")

        endpoint = f"/{url_path}/build"
        data: Dict[str, str] = {}
        try:
            job_info = await self.get_job_info(job)
            if self.is_parameterized(job_info):
                logging.info("🔧 Parameterized job detected, using buildWithParameters")
                endpoint = f"/{url_path}/buildWithParameters"
                data = request.to_parameters()
        except (NotFoundError, UnknownBuildError, ValueError) as e:
            # Metadata is only used to pick the endpoint; the POST reports real failures
            logging.warning(f"Could not read job metadata, using plain build endpoint: {str(e)}")

        logging.info(f"🚀 Triggering Jenkins build: {self.base_url}{endpoint}")
        response = await self._request(
            "POST", endpoint, f"Trigger build of '{job}'", data=data, headers=headers
        )
        logging.info(f"✅ Jenkins build triggered (status {response.status_code})")
        return {
            "accepted": True,
            "status_code": response.status_code,
            "queue_url": response.headers.get("Location"),
        }

    async def check_build_status(self, job_path: Optional[str] = None) -> BuildStatus:
        """Status of the job's last build, or BuildStatus.no_build() if it never ran"""
        job_info = await self.get_job_info(job_path)
        last_build = job_info.get("lastBuild")
        if not last_build:
            return BuildStatus.no_build()

        detail = await self._fetch_build(last_build["url"], last_build.get("number"))
        return BuildStatus(
            build_number=detail.build_number,
            building=detail.building,
            result=detail.result,
            url=detail.url,
        )

    async def get_build_detail(self, build_number: int, job_path: Optional[str] = None) -> BuildDetail:
        job = job_path or self.job_path
        return await self._fetch_build(f"/{job_url_path(job)}/{build_number}/", build_number)

    async def _fetch_build(self, build_url: str, build_number: Optional[int]) -> BuildDetail:
        if not build_url.endswith("/"):
            build_url += "/"
        response = await self._request("GET", f"{build_url}api/json", f"Fetch build #{build_number}")
        data = response.json()

        changes = []
        change_set = data.get("changeSet") or {}
        for item in change_set.get("items") or []:
            changes.append(item.get("msg") or "")

        return BuildDetail(
            build_number=data.get("number", build_number),
            building=bool(data.get("building", False)),
            result=BuildResult.parse(data.get("result")),
            url=data.get("url") or build_url,
            duration_ms=int(data.get("duration") or 0),
            built_by=data.get("builtBy") or "N/A",
            changes=changes,
        )

    async def get_build_logs(self, build_number: int, job_path: Optional[str] = None) -> str:
        """
        Fetch the plain-text console log of a build.

        The body is streamed; only max_log_chars worth of head and tail are
        kept in memory, the middle of oversized logs is dropped.
        """
        job = job_path or self.job_path
        url = f"/{job_url_path(job)}/{build_number}/consoleText"
        action = f"Fetch console log of build #{build_number}"

        head_limit = self.max_log_chars // 2 if self.max_log_chars > 0 else None
        tail_limit = self.max_log_chars - head_limit if head_limit is not None else None
        head: list = []
        head_len = 0
        tail = ""
        total = 0

        try:
            async with self.client.stream(
                "GET", url, headers={"Accept": "text/plain"}, timeout=self.log_timeout
            ) as response:
                if response.status_code >= 300:
                    await response.aread()
                self._raise_for_status(response, action)

                async for chunk in response.aiter_text():
                    total += len(chunk)
                    if head_limit is None:
                        head.append(chunk)
                        continue
                    if head_len < head_limit:
                        take = chunk[:head_limit - head_len]
                        head.append(take)
                        head_len += len(take)
                        chunk = chunk[len(take):]
                    if chunk:
                        tail = (tail + chunk)[-tail_limit:] if tail_limit else ""
        except httpx.HTTPError as e:
            raise UnknownBuildError(f"{action} failed: {e.__class__.__name__}: {e}")

        head_text = "".join(head)
        omitted = total - len(head_text) - len(tail)
        if omitted <= 0:
            return head_text + tail

        logging.info(f"📋 Console log of build #{build_number} is {total} chars, dropped {omitted} from the middle")
        return f"{head_text}\n... [{omitted} characters truncated] ...\n{tail}"
