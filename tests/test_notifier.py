import json

import httpx
import pytest

from build_healer.models import BuildResult, BuildStatus
from build_healer.notifier import BuildNotifier, format_build_message

HOOK = "https://chat.example.com/hook/abc"


def test_message_format():
    status = BuildStatus(12, False, BuildResult.FAILURE, "http://jenkins.local/job/app/12/")
    text = format_build_message("test/web/app", status, "Auto-fix attempt 1/3 started")

    assert text.splitlines()[0] == "❌ Build failed: test/web/app #12"
    assert "http://jenkins.local/job/app/12/" in text
    assert text.endswith("Auto-fix attempt 1/3 started")


@pytest.mark.asyncio
async def test_notify_posts_text_message():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 0})

    status = BuildStatus(3, False, BuildResult.SUCCESS)
    notifier = BuildNotifier(HOOK, transport=httpx.MockTransport(handler))

    assert await notifier.notify("Build succeeded", build=status, current_retry=1) is True
    assert seen["url"] == HOOK
    assert seen["body"]["msg_type"] == "text"
    assert seen["body"]["content"] == {"text": "Build succeeded"}
    assert seen["body"]["build"]["build_number"] == 3
    assert seen["body"]["metadata"] == {"current_retry": 1}


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed():
    notifier = BuildNotifier(HOOK, transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    assert await notifier.notify("hello") is False


@pytest.mark.asyncio
async def test_disabled_without_url():
    notifier = BuildNotifier(None)
    assert notifier.enabled is False
    assert await notifier.notify("hello") is False
