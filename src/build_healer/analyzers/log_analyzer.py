"""
Build log analysis: turn a failed build's console output into classified issues
"""

import logging
from typing import List, Optional

from build_healer.analyzers.log_patterns import (
    detect_issues,
    extract_relevant_section,
    is_toolchain_failure,
    same_file,
)
from build_healer.errors import ModelError
from build_healer.llm_response import parse_json_object
from build_healer.models import AnalysisResult, Issue, IssueType, Severity


SYSTEM_MESSAGE = """You are an expert DevOps engineer who diagnoses failed CI builds of JavaScript/TypeScript projects.
Extract only the issues that break the build. Answer with a single JSON object and nothing else: no prose, no Markdown."""

ISSUE_TYPES = ", ".join(t.value for t in IssueType)


def build_prompt(build_number: Optional[int], build_url: str, log_section: str) -> str:
    return f"""
Analyze the console log of failed Jenkins build #{build_number} ({build_url}).

Build Log (Error Section):
{log_section}

Return JSON in this EXACT shape:
{{
  "needsFix": true,
  "issues": [
    {{
      "type": "<one of: {ISSUE_TYPES}>",
      "file": "<path of the file to change, relative to the project root>",
      "message": "<the error message>",
      "line": <line number or null>,
      "severity": "<high|medium|low>"
    }}
  ],
  "summary": "<one sentence describing the fix>",
  "recommendations": ["<follow-up for a human>"],
  "priority": "<high|medium|low>"
}}

Classification rules:
- syntax_error: the source file does not parse or compile
- module_resolution_error: an import/require points at a file or export that does not exist
- dependency_error: a package is missing or its version conflicts (the fix goes in package.json)
- configuration_error: a build/tool config file is wrong (vite.config, tsconfig, .babelrc, ...)
- other: anything that cannot be fixed by editing a file
Set "needsFix" to false only if the failure is not caused by the repository contents
(agent offline, network outage, aborted by a user).
"""


def parse_analysis(content: str, pattern_issues: List[Issue]) -> AnalysisResult:
    """Decode the model answer; raises ModelError if it is not a usable object"""
    data = parse_json_object(content)

    raw_issues = data.get("issues")
    if raw_issues is None:
        raw_issues = []
    if not isinstance(raw_issues, list):
        raise ModelError("'issues' must be a list")

    issues = [Issue.from_dict(item) for item in raw_issues if isinstance(item, dict)]

    needs_fix = data.get("needsFix", data.get("needs_fix"))
    if needs_fix is None:
        needs_fix = bool(issues)
    needs_fix = bool(needs_fix)

    # Known error shapes override a vague or incomplete model answer
    for detected in pattern_issues:
        if not any(i.type == detected.type and same_file(i.file, detected.file) for i in issues):
            logging.info(f"Adding pattern-detected {detected.type.value} in '{detected.file}' missed by the model")
            issues.append(detected)
    if pattern_issues and not needs_fix:
        logging.warning("⚠️ Model said no fix needed, overriding based on detected error patterns")
        needs_fix = True

    recommendations = data.get("recommendations") or []
    if not isinstance(recommendations, list):
        recommendations = [str(recommendations)]

    return AnalysisResult(
        needs_fix=needs_fix,
        issues=issues,
        summary=str(data.get("summary") or ""),
        recommendations=[str(r) for r in recommendations],
        priority=Severity.parse(data.get("priority", "high" if issues else "medium")),
    )


class LogAnalyzer:
    """Classifies build-breaking issues with the help of the LLM"""

    def __init__(self, llm_client):
        self.llm = llm_client

    async def analyze(self, build_number: Optional[int], log_text: str, build_url: str = "") -> AnalysisResult:
        """
        Analyze a failed build's log.

        Never raises for model trouble: a failed call yields a degraded
        result with success=False, an unparseable answer a degraded result
        with success=True.
        """
        log_text = log_text or ""
        if is_toolchain_failure(log_text):
            logging.info("Detected frontend toolchain failure")
        section = extract_relevant_section(log_text)
        pattern_issues = detect_issues(section)

        prompt = build_prompt(build_number, build_url, section)
        try:
            response = await self.llm.invoke(prompt, SYSTEM_MESSAGE)
        except ModelError as e:
            logging.error(f"Error in AI analysis: {e.message}")
            return AnalysisResult.degraded(build_number, e.message, success=False)

        try:
            result = parse_analysis(response.content, pattern_issues)
        except ModelError as e:
            logging.warning(f"⚠️ Could not parse analysis of build #{build_number}: {e.message}")
            return AnalysisResult.degraded(build_number, e.message, success=True)

        if not result.summary:
            result.summary = f"Fix build #{build_number}: " + "; ".join(
                f"{i.type.value} in {i.file or 'manifest'}" for i in result.issues
            )

        logging.info(
            f"Analysis of build #{build_number}: needs_fix={result.needs_fix}, "
            f"{len(result.issues)} issue(s), priority={result.priority.value}"
        )
        return result
