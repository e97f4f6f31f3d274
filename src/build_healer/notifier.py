"""
Build notifications to a chat webhook
"""

import logging
from typing import Optional

import httpx

from build_healer.models import BuildStatus, BuildResult


def format_build_message(job_path: str, status: BuildStatus, note: str = "") -> str:
    """Format a one-glance build status message"""
    if status.building:
        headline = f"🔄 Build running: {job_path} #{status.build_number}"
    elif status.result == BuildResult.SUCCESS:
        headline = f"✅ Build succeeded: {job_path} #{status.build_number}"
    elif status.result in (BuildResult.FAILURE, BuildResult.UNSTABLE):
        headline = f"❌ Build failed: {job_path} #{status.build_number}"
    else:
        result = status.result.value if status.result else "UNKNOWN"
        headline = f"ℹ️ Build {result}: {job_path} #{status.build_number}"

    lines = [headline]
    if status.url:
        lines.append(status.url)
    if note:
        lines.extend(["", note])
    return "\n".join(lines)


class BuildNotifier:
    """
    Posts build status messages to an incoming-webhook URL.

    Delivery is best-effort: failures are logged and swallowed so the
    orchestrator's state transitions never depend on the chat service.
    """

    def __init__(self, webhook_url: Optional[str], timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    async def notify(self, message: str, build: Optional[BuildStatus] = None, **metadata) -> bool:
        if not self.enabled:
            logging.info(f"Notifications not configured, skipping: {message.splitlines()[0] if message else ''}")
            return False

        payload = {
            "msg_type": "text",
            "content": {"text": message},
            "build": build.to_dict() if build else None,
            "metadata": metadata,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=payload)
                response.raise_for_status()
            logging.info("Notification sent")
            return True
        except httpx.HTTPError as e:
            logging.warning(f"⚠️ Could not send notification: {str(e)}")
            return False
