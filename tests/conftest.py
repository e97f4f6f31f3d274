import pytest

from build_healer.orchestrator import CICDOrchestrator
from fakes import FakeAnalyzer, FakeFixer, FakeGit, FakeJenkins, FakeNotifier, make_config


@pytest.fixture
def config(tmp_path):
    return make_config(str(tmp_path))


@pytest.fixture
def make_orchestrator(config):
    """Build an orchestrator from fakes; pass any collaborator to override it"""

    def factory(jenkins=None, analyzer=None, fixer=None, git=None, notifier=None, **config_overrides):
        cfg = config
        if config_overrides:
            cfg = make_config(config.project_path, **config_overrides)
        return CICDOrchestrator(
            config=cfg,
            jenkins=jenkins or FakeJenkins(),
            analyzer=analyzer or FakeAnalyzer(),
            fixer=fixer or FakeFixer(),
            git=git or FakeGit(),
            notifier=notifier or FakeNotifier(),
        )

    return factory
