from urllib.parse import parse_qs

import httpx
import pytest

from build_healer.errors import AuthError, NoChangesError, NotFoundError, UnknownBuildError
from build_healer.jenkins_client import JenkinsClient, job_url_path, parse_job_url_path
from build_healer.models import BuildRequest, BuildResult

BASE = "http://jenkins.local"


def make_client(handler, **kwargs) -> JenkinsClient:
    return JenkinsClient(BASE, "bot", "secret", "test/web/app", transport=httpx.MockTransport(handler), **kwargs)


def test_job_path_translation():
    assert job_url_path("test/web/app") == "job/test/job/web/job/app"
    assert job_url_path("/app/") == "job/app"
    assert parse_job_url_path("job/test/job/web/job/app") == "test/web/app"
    assert parse_job_url_path(job_url_path("a/b")) == "a/b"


@pytest.mark.parametrize("bad", ["job/test/web", "view/all"])
def test_parse_rejects_non_job_paths(bad):
    with pytest.raises(ValueError):
        parse_job_url_path(bad)


def test_empty_job_path_is_rejected():
    with pytest.raises(ValueError):
        job_url_path("/")


@pytest.mark.asyncio
async def test_status_without_any_build():
    def handler(request):
        assert request.url.path == "/job/test/job/web/job/app/api/json"
        return httpx.Response(200, json={"name": "app", "lastBuild": None})

    status = await make_client(handler).check_build_status()

    assert status.has_build is False
    assert status.build_number is None
    assert status.result is None


@pytest.mark.asyncio
async def test_status_of_last_build():
    def handler(request):
        if request.url.path == "/job/test/job/web/job/app/api/json":
            return httpx.Response(200, json={"lastBuild": {"number": 7, "url": f"{BASE}/job/test/job/web/job/app/7/"}})
        assert request.url.path == "/job/test/job/web/job/app/7/api/json"
        return httpx.Response(200, json={"number": 7, "building": False, "result": "FAILURE",
                                         "url": f"{BASE}/job/test/job/web/job/app/7/"})

    status = await make_client(handler).check_build_status()

    assert status.build_number == 7
    assert status.building is False
    assert status.result == BuildResult.FAILURE


@pytest.mark.asyncio
async def test_running_build_has_no_result():
    def handler(request):
        if request.url.path.endswith("/app/api/json"):
            return httpx.Response(200, json={"lastBuild": {"number": 8, "url": f"{BASE}/job/test/job/web/job/app/8/"}})
        return httpx.Response(200, json={"number": 8, "building": True, "result": None})

    status = await make_client(handler).check_build_status()

    assert status.building is True
    assert status.result is None


@pytest.mark.asyncio
@pytest.mark.parametrize("code,error", [(401, AuthError), (404, NotFoundError), (502, UnknownBuildError)])
async def test_http_errors_are_mapped(code, error):
    client = make_client(lambda request: httpx.Response(code, text="nope"))
    with pytest.raises(error):
        await client.check_build_status()


@pytest.mark.asyncio
async def test_transport_errors_become_unknown_build_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UnknownBuildError):
        await make_client(handler).check_build_status()


@pytest.mark.asyncio
async def test_connection_check_reports_bad_credentials():
    result = await make_client(lambda request: httpx.Response(401)).test_connection()
    assert result["success"] is False


@pytest.mark.asyncio
async def test_trigger_parameterized_build_with_crumb():
    seen = {}

    def handler(request):
        path = request.url.path
        if path == "/crumbIssuer/api/json":
            return httpx.Response(200, json={"crumbRequestField": "Jenkins-Crumb", "crumb": "c0ffee"})
        if path == "/job/test/job/web/job/app/api/json":
            return httpx.Response(200, json={"property": [
                {"_class": "hudson.model.ParametersDefinitionProperty", "parameterDefinitions": []},
            ]})
        seen["path"] = path
        seen["crumb"] = request.headers.get("Jenkins-Crumb")
        seen["form"] = parse_qs(request.content.decode())
        return httpx.Response(201, headers={"Location": f"{BASE}/queue/item/42/"})

    result = await make_client(handler).trigger_build(BuildRequest(job_path="test/web/app"))

    assert seen["path"] == "/job/test/job/web/job/app/buildWithParameters"
    assert seen["crumb"] == "c0ffee"
    assert seen["form"]["TAG"] == ["origin/develop"]
    assert seen["form"]["APP_BUILDCMD"] == ["pnpm install && npm run build"]
    assert result["accepted"] is True
    assert result["queue_url"] == f"{BASE}/queue/item/42/"


@pytest.mark.asyncio
async def test_trigger_plain_build_without_crumb():
    seen = {}

    def handler(request):
        path = request.url.path
        if path == "/crumbIssuer/api/json":
            return httpx.Response(404)
        if path.endswith("/api/json"):
            return httpx.Response(200, json={"property": []})
        seen["path"] = path
        seen["headers"] = request.headers
        return httpx.Response(201)

    await make_client(handler).trigger_build(BuildRequest(job_path="test/web/app"))

    assert seen["path"] == "/job/test/job/web/job/app/build"
    assert "Jenkins-Crumb" not in seen["headers"]


@pytest.mark.asyncio
async def test_trigger_with_nothing_to_build():
    def handler(request):
        if request.method == "GET":
            return httpx.Response(404)
        return httpx.Response(400, text="Nothing is submitted")

    with pytest.raises(NoChangesError):
        await make_client(handler).trigger_build(BuildRequest(job_path="test/web/app"))


@pytest.mark.asyncio
async def test_build_detail():
    def handler(request):
        assert request.url.path == "/job/test/job/web/job/app/9/api/json"
        return httpx.Response(200, json={
            "number": 9, "building": False, "result": "SUCCESS", "duration": 61000,
            "builtBy": "alex", "changeSet": {"items": [{"msg": "fix header"}, {"msg": "bump deps"}]},
        })

    detail = await make_client(handler).get_build_detail(9)

    assert detail.result == BuildResult.SUCCESS
    assert detail.duration_ms == 61000
    assert detail.built_by == "alex"
    assert detail.changes == ["fix header", "bump deps"]


@pytest.mark.asyncio
async def test_short_log_is_returned_whole():
    def handler(request):
        assert request.url.path == "/job/test/job/web/job/app/9/consoleText"
        return httpx.Response(200, text="line 1\nline 2\n")

    assert await make_client(handler).get_build_logs(9) == "line 1\nline 2\n"


@pytest.mark.asyncio
async def test_long_log_keeps_head_and_tail():
    body = "a" * 50 + "b" * 50

    logs = await make_client(lambda request: httpx.Response(200, text=body), max_log_chars=20).get_build_logs(9)

    assert logs == "a" * 10 + "\n... [80 characters truncated] ...\n" + "b" * 10


@pytest.mark.asyncio
async def test_missing_log():
    with pytest.raises(NotFoundError):
        await make_client(lambda request: httpx.Response(404)).get_build_logs(99)
