import json
from types import SimpleNamespace

import pytest

from build_healer.code_fixer import CodeFixer, summarize
from build_healer.errors import ModelError
from build_healer.models import Issue, IssueType, RemediationReport
from build_healer.openai_client import OpenAIClient
from fakes import FakeLLM


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.js").write_text("const a = ;\nexport default a;\n", encoding="utf-8")
    (tmp_path / "package.json").write_text(json.dumps({"name": "app", "dependencies": {}}) + "\n", encoding="utf-8")
    return tmp_path


def issue(type_, file="src/main.js", message="Unexpected token"):
    return Issue(type=type_, file=file, message=message, line=1)


@pytest.mark.asyncio
async def test_syntax_fix_rewrites_file(project):
    llm = FakeLLM("```js\nconst a = 1;\nexport default a;\n```")

    outcome = await CodeFixer(llm, str(project)).remediate(issue(IssueType.SYNTAX_ERROR))

    assert outcome.success is True
    assert outcome.file == "src/main.js"
    assert (project / "src" / "main.js").read_text() == "const a = 1;\nexport default a;\n"
    assert "const a = ;" in llm.prompts[0]


@pytest.mark.asyncio
async def test_trailing_newline_is_kept(project):
    llm = FakeLLM("const a = 1;\nexport default a;")

    await CodeFixer(llm, str(project)).remediate(issue(IssueType.MODULE_RESOLUTION_ERROR))

    assert (project / "src" / "main.js").read_text().endswith("a;\n")


@pytest.mark.asyncio
async def test_build_agent_path_is_reanchored(project):
    llm = FakeLLM("const a = 1;\n")
    fixer = CodeFixer(llm, str(project))

    outcome = await fixer.remediate(issue(IssueType.SYNTAX_ERROR, file="/var/lib/jenkins/workspace/app/src/main.js"))

    assert outcome.success is True
    assert outcome.file == "src/main.js"


@pytest.mark.asyncio
async def test_paths_outside_project_are_refused(project, tmp_path_factory):
    outside = tmp_path_factory.mktemp("elsewhere") / "evil.js"
    outside.write_text("x\n")
    llm = FakeLLM()
    fixer = CodeFixer(llm, str(project))

    for path in ("../evil.js", str(outside)):
        outcome = await fixer.remediate(issue(IssueType.SYNTAX_ERROR, file=path))
        assert outcome.success is False
        assert outcome.error == "SourceFileNotFoundError"
        assert outcome.retryable is False

    assert llm.prompts == []
    assert outside.read_text() == "x\n"


@pytest.mark.asyncio
async def test_dependency_fix_goes_to_manifest(project):
    fixed = {"name": "app", "dependencies": {"lodash-es": "^4.17.21"}}
    llm = FakeLLM(json.dumps(fixed, indent=2))

    outcome = await CodeFixer(llm, str(project)).remediate(
        issue(IssueType.DEPENDENCY_ERROR, file="", message="Cannot find module 'lodash-es'")
    )

    assert outcome.success is True
    assert outcome.file == "package.json"
    assert json.loads((project / "package.json").read_text()) == fixed


@pytest.mark.asyncio
async def test_invalid_manifest_is_not_written(project):
    before = (project / "package.json").read_text()
    llm = FakeLLM('{"name": "app", "dependencies": {')

    outcome = await CodeFixer(llm, str(project)).remediate(issue(IssueType.DEPENDENCY_ERROR, file=""))

    assert outcome.success is False
    assert outcome.error == "ModelError"
    assert outcome.retryable is True
    assert (project / "package.json").read_text() == before


@pytest.mark.asyncio
async def test_configuration_fix(project):
    (project / "tsconfig.json").write_text('{"compilerOptions": {"target": "es3000"}}\n')
    llm = FakeLLM('{"compilerOptions": {"target": "es2020"}}')

    outcome = await CodeFixer(llm, str(project)).remediate(issue(IssueType.CONFIGURATION_ERROR, file="tsconfig.json"))

    assert outcome.success is True
    assert json.loads((project / "tsconfig.json").read_text())["compilerOptions"]["target"] == "es2020"


@pytest.mark.asyncio
async def test_other_issues_are_unsupported(project):
    llm = FakeLLM()
    outcome = await CodeFixer(llm, str(project)).remediate(issue(IssueType.OTHER, message="agent offline"))

    assert outcome.success is False
    assert outcome.error == "UnsupportedIssueError"
    assert outcome.retryable is False
    assert llm.prompts == []


@pytest.mark.asyncio
async def test_model_errors_are_retryable_outcomes(project):
    llm = FakeLLM(ModelError("LLM call failed: rate limited"), "   ")
    fixer = CodeFixer(llm, str(project))

    first = await fixer.remediate(issue(IssueType.SYNTAX_ERROR))
    second = await fixer.remediate(issue(IssueType.SYNTAX_ERROR))

    assert first.retryable is True
    assert second.error == "ModelError"
    assert (project / "src" / "main.js").read_text().startswith("const a = ;")


@pytest.mark.asyncio
async def test_truncated_model_answer_leaves_file_untouched(project):
    class CutOffCompletions:
        async def create(self, **params):
            message = SimpleNamespace(content="const a = 1;\nfunction main() {\n  return")
            return SimpleNamespace(choices=[SimpleNamespace(message=message, finish_reason="length")])

    llm = OpenAIClient(client=SimpleNamespace(chat=SimpleNamespace(completions=CutOffCompletions())), model="gpt-4o")
    before = (project / "src" / "main.js").read_text()

    outcome = await CodeFixer(llm, str(project)).remediate(issue(IssueType.SYNTAX_ERROR))

    assert outcome.success is False
    assert outcome.error == "ModelError"
    assert outcome.retryable is True
    assert (project / "src" / "main.js").read_text() == before


@pytest.mark.asyncio
async def test_token_budget_grows_with_file_size(project):
    (project / "src" / "big.js").write_text("export const x = 1;\n" * 3000)
    llm = FakeLLM("const a = 1;\n", "export const x = 2;\n")
    fixer = CodeFixer(llm, str(project))

    await fixer.remediate(issue(IssueType.SYNTAX_ERROR))
    await fixer.remediate(issue(IssueType.SYNTAX_ERROR, file="src/big.js"))

    assert llm.max_tokens[0] == 4000
    assert llm.max_tokens[1] > 20000


@pytest.mark.asyncio
async def test_report_summary(project):
    llm = FakeLLM("const a = 1;\n")
    fixer = CodeFixer(llm, str(project))
    report = RemediationReport([
        await fixer.remediate(issue(IssueType.SYNTAX_ERROR)),
        await fixer.remediate(issue(IssueType.SYNTAX_ERROR, file="src/missing.js")),
    ])

    assert len(report.succeeded) == 1
    assert len(report.failed) == 1
    text = summarize(report)
    assert "✅ src/main.js" in text
    assert "❌ src/missing.js" in text
