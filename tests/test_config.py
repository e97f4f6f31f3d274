import pytest

from build_healer.config import HealerConfig

REQUIRED = {
    "JENKINS_URL": "http://jenkins.local/",
    "JENKINS_USERNAME": "bot",
    "JENKINS_API_TOKEN": "secret",
    "JENKINS_JOB_NAME": "/test/web/app/",
    "PROJECT_PATH": "/srv/app",
}


@pytest.fixture
def env(monkeypatch):
    for name, value in REQUIRED.items():
        monkeypatch.setenv(name, value)
    for name in ("JENKINS_EXTRA_PARAMETERS", "POLL_INTERVAL", "NOTIFY_WEBHOOK_URL", "TARGET_BRANCH", "WATCHDOG_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_from_env_defaults(env):
    config = HealerConfig.from_env()

    assert config.jenkins_url == "http://jenkins.local"
    assert config.job_path == "test/web/app"
    assert config.target_branch == "develop"
    assert config.poll_interval == 10.0
    assert config.notify_webhook_url is None
    assert config.build_request().to_parameters()["TAG"] == "origin/develop"


def test_from_env_overrides(env):
    env.setenv("POLL_INTERVAL", "2.5")
    env.setenv("JENKINS_EXTRA_PARAMETERS", '{"BRANCH": "develop", "RETRIES": 2}')

    config = HealerConfig.from_env()

    assert config.poll_interval == 2.5
    assert config.build_request().to_parameters()["RETRIES"] == "2"


@pytest.mark.parametrize("missing", ["JENKINS_URL", "JENKINS_JOB_NAME", "PROJECT_PATH"])
def test_missing_required_variable(env, missing):
    env.delenv(missing)
    with pytest.raises(ValueError, match="must be set"):
        HealerConfig.from_env()


def test_invalid_numbers_and_parameters(env):
    env.setenv("POLL_INTERVAL", "soon")
    with pytest.raises(ValueError, match="POLL_INTERVAL"):
        HealerConfig.from_env()

    env.setenv("POLL_INTERVAL", "1")
    env.setenv("JENKINS_EXTRA_PARAMETERS", "[1, 2]")
    with pytest.raises(ValueError, match="JSON object"):
        HealerConfig.from_env()


def test_watchdog_switch(env):
    assert HealerConfig.from_env().watchdog_enabled is True

    env.setenv("WATCHDOG_ENABLED", "off")
    assert HealerConfig.from_env().watchdog_enabled is False

    env.setenv("WATCHDOG_ENABLED", "sometimes")
    with pytest.raises(ValueError, match="WATCHDOG_ENABLED"):
        HealerConfig.from_env()
