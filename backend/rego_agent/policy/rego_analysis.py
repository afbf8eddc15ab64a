"""
Static inspection of Rego source text. Nothing here evaluates a policy.

Used for the validate/explain responses and to check that generated test
inputs carry the input.* fields the policy reads.
"""
import re
from typing import Any, List, Sequence, Tuple

from rego_agent.policy.schemas import LintIssue, TestCase

_PACKAGE_RE = re.compile(r"^\s*package\s+([^\s#]+)", re.MULTILINE)
_IMPORT_RE = re.compile(r"^\s*import\s+\S+", re.MULTILINE)
_RULE_HEAD_RE = re.compile(
    r"^(?:default\s+)?([A-Za-z_]\w*)"   # rule name
    r"(?:\s*\[[^\]]*\])?"               # partial set/object key
    r"(?:\s*\([^)]*\))?"                # function arguments
    r"\s*(?::=|=|\bif\b|\bcontains\b|\{)"
)
_INPUT_PATH_RE = re.compile(r"\binput((?:\.[A-Za-z_]\w*)+)")
_STRING_RE = re.compile(r'"(?:[^"\\\n]|\\.)*"|`[^`]*`')

_NON_RULE_WORDS = {"package", "import", "some", "every", "not", "else", "with", "as", "input", "data"}


def _strip_comment(line: str) -> str:
    return _STRING_RE.sub('""', line).split("#", 1)[0]


def extract_package_name(policy: str) -> str:
    match = _PACKAGE_RE.search(policy or "")
    return match.group(1) if match else "unknown"


def extract_rules(policy: str) -> List[str]:
    """Rule names declared at column zero, in order of first appearance."""
    rules: List[str] = []
    for line in (policy or "").splitlines():
        if not line or line[0].isspace():
            continue
        match = _RULE_HEAD_RE.match(_strip_comment(line))
        if match and match.group(1) not in _NON_RULE_WORDS and match.group(1) not in rules:
            rules.append(match.group(1))
    return rules


def estimate_complexity(policy: str) -> str:
    count = len(extract_rules(policy))
    if count <= 3:
        return "low"
    if count <= 8:
        return "medium"
    return "high"


def extract_input_paths(policy: str) -> List[Tuple[str, ...]]:
    """Dotted input.* references, e.g. input.user.role → ("user", "role")."""
    paths: List[Tuple[str, ...]] = []
    for line in (policy or "").splitlines():
        for match in _INPUT_PATH_RE.finditer(_strip_comment(line)):
            path = tuple(match.group(1).lstrip(".").split("."))
            if path not in paths:
                paths.append(path)
    return paths


def _has_path(value: Any, path: Sequence[str]) -> bool:
    if not path:
        return True
    if isinstance(value, list):
        return any(_has_path(item, path) for item in value)
    if isinstance(value, dict) and path[0] in value:
        return _has_path(value[path[0]], path[1:])
    return False


def check_test_inputs(policy: str, test_inputs: Sequence[TestCase]) -> List[str]:
    """
    Report input.* paths the policy reads that the test inputs do not carry.

    A top-level key no test case provides is reported once. A test case that
    has the top-level key but not the full path is reported per case.
    Non-object inputs are skipped.
    """
    cases = [(i, tc) for i, tc in enumerate(test_inputs, start=1) if isinstance(tc.input, dict)]
    if not cases:
        return []

    warnings: List[str] = []
    reported_tops = set()
    for path in extract_input_paths(policy):
        dotted = "input." + ".".join(path)
        top = path[0]
        if not any(top in tc.input for _, tc in cases):
            if top not in reported_tops:
                warnings.append(f"No test input provides input.{top}")
                reported_tops.add(top)
            continue
        for i, tc in cases:
            if top in tc.input and not _has_path(tc.input, path):
                warnings.append(f"Test case {i} ({tc.description}) is missing {dotted}")
    return warnings


def basic_syntax_check(policy: str) -> List[LintIssue]:
    """Cheap structural lint; not a parser."""
    issues: List[LintIssue] = []
    policy = policy or ""

    if not _PACKAGE_RE.search(policy):
        issues.append(LintIssue(
            type="error",
            message="Missing package declaration",
            suggestion="Add a package declaration at the top of the policy",
        ))

    if _IMPORT_RE.search(policy):
        issues.append(LintIssue(
            type="warning",
            message="Import statements detected",
            suggestion="Remove import statements - they are not needed for this use case",
        ))

    rules = extract_rules(policy)
    if "allow" not in rules and "deny" not in rules:
        issues.append(LintIssue(
            type="warning",
            message="No allow or deny rules found",
            suggestion="Consider adding explicit allow or deny rules",
        ))

    code = "\n".join(_strip_comment(line) for line in policy.splitlines())
    if code.count("{") != code.count("}"):
        issues.append(LintIssue(
            type="error",
            message="Unmatched braces detected",
            suggestion="Check for missing opening or closing braces",
        ))

    return issues
