"""
Response normalizer — turns raw LLM text into a PolicyRecord.

Model output is not contract-bound: it may be clean JSON, JSON wrapped in
prose or markdown fences, JSON whose "policy" field holds the whole object
again, double-escaped strings, truncated output, or plain Rego with no JSON
at all. classify_response() decides which of three shapes the text has
(JsonPayload | FencedBlock | PlainText) and a dedicated extractor handles
each one. normalize_response() never raises: the worst case is a record
whose policy is the trimmed raw text.
"""
import json
import re
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel

from rego_agent.core.logging import get_logger
from rego_agent.policy.schemas import PolicyRecord, TestCase

logger = get_logger(__name__)

DEFAULT_EXPLANATION = "Policy generated successfully"
DEFAULT_TEST_DESCRIPTION = "Test case"

_ESCAPES = {"n": "\n", '"': '"', "t": "    ", "r": "\r"}
_ESCAPE_RE = re.compile(r'\\([n"tr])')

_FENCE_RE = re.compile(r"```(?:[\w.+-]*[ \t]*\r?\n)?(.*?)```", re.DOTALL)
_PACKAGE_RE = re.compile(r"\bpackage\s+[A-Za-z_]")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_KEYWORD_RE = re.compile(r"\b(?:polic(?:y|ies)|allow(?:s|ed|ing)?|rules?)\b", re.IGNORECASE)
_CODE_HINT_RE = re.compile(r":=|==|[{}\[\]\"]")
_TEST_INPUTS_RE = re.compile(r'"test_inputs"\s*:\s*\[')
# String values of a JSON object cut off mid-stream (closing quote optional for policy)
_PARTIAL_POLICY_RE = re.compile(r'"policy"\s*:\s*"((?:[^"\\]|\\.)*)')
_PARTIAL_EXPLANATION_RE = re.compile(r'"explanation"\s*:\s*"((?:[^"\\]|\\.)*)"')

_RECORD_KEYS = ("policy", "explanation", "test_inputs")


# ═══════════════════════════════════════════════════════════════════
#  Parse variants
# ═══════════════════════════════════════════════════════════════════

class JsonPayload(BaseModel):
    kind: Literal["json"] = "json"
    data: dict
    embedded: bool = False  # True when cut out of surrounding text


class FencedBlock(BaseModel):
    kind: Literal["fenced"] = "fenced"
    code: str
    text: str


class PlainText(BaseModel):
    kind: Literal["plain"] = "plain"
    text: str


ParsedResponse = Union[JsonPayload, FencedBlock, PlainText]


# ═══════════════════════════════════════════════════════════════════
#  Low-level helpers
# ═══════════════════════════════════════════════════════════════════

def unescape(value: Any) -> Any:
    """Undo double-encoding: \\n → newline, \\" → ", \\t → 4 spaces, \\r → CR.

    Non-string values pass through untouched.
    """
    if not isinstance(value, str):
        return value
    return _ESCAPE_RE.sub(lambda m: _ESCAPES[m.group(1)], value)


def _loads_object(text: str) -> Optional[dict]:
    """json.loads that only accepts objects and never raises."""
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def find_balanced(text: str, start: int, open_char: str = "{", close_char: str = "}") -> Optional[str]:
    """
    Return text[start:end] where `end` closes the bracket opened at `start`.
    Brackets inside JSON string literals are ignored. None when unbalanced
    (typically truncated output).
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        value = json.dumps(value, ensure_ascii=False)
    return _scrub(value)


def _scrub(value: Any) -> Any:
    """Replace lone surrogates in every string of a JSON value; they cannot be UTF-8 encoded."""
    if isinstance(value, str):
        # e.g. produced by a "\udcff" JSON escape
        return value.encode("utf-8", "replace").decode("utf-8")
    if isinstance(value, dict):
        return {_scrub(k): _scrub(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_scrub(item) for item in value]
    return value


def _as_bool(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "no", "deny", "denied")
    return bool(value)


def normalize_test_inputs(raw: Any) -> List[TestCase]:
    """Coerce whatever the model put under test_inputs into TestCase objects."""
    if not isinstance(raw, list):
        return []
    cases = []
    for entry in raw:
        if isinstance(entry, dict):
            description = entry.get("description")
            cases.append(TestCase(
                description=_as_text(description) if description else DEFAULT_TEST_DESCRIPTION,
                input=_scrub(entry.get("input", {})),
                expected=_as_bool(entry.get("expected")),
            ))
        else:
            cases.append(TestCase(description=DEFAULT_TEST_DESCRIPTION, input=_scrub(entry), expected=True))
    return cases


# ═══════════════════════════════════════════════════════════════════
#  Classification
# ═══════════════════════════════════════════════════════════════════

def classify_response(raw_text: Optional[str]) -> ParsedResponse:
    """Decide which shape the model output has. First match wins."""
    text = _as_text(raw_text)
    stripped = text.strip()

    data = _loads_object(stripped)
    if data is not None:
        return JsonPayload(data=data)

    brace = stripped.find("{")
    if brace != -1:
        candidate = find_balanced(stripped, brace)
        if candidate is not None:
            data = _loads_object(candidate)
            # A bare Rego object literal inside prose is not a response payload
            if data is not None and any(k in data for k in _RECORD_KEYS):
                return JsonPayload(data=data, embedded=True)

    fence = _FENCE_RE.search(text)
    if fence:
        return FencedBlock(code=fence.group(1).strip(), text=text)

    return PlainText(text=text)


# ═══════════════════════════════════════════════════════════════════
#  Extractors
# ═══════════════════════════════════════════════════════════════════

def _unwrap_nested(policy: str) -> Optional[dict]:
    """Parse a policy string that is really a whole response object. One level only."""
    if not policy.lstrip().startswith("{"):
        return None
    for candidate in (policy, unescape(policy)):
        inner = _loads_object(candidate.strip())
        if inner is not None and "policy" in inner:
            return inner
    return None


def _from_json(payload: JsonPayload) -> dict:
    data = payload.data
    policy = data.get("policy")
    explanation = _as_text(data.get("explanation"))
    test_inputs = data.get("test_inputs", [])

    if isinstance(policy, dict) and "policy" in policy:
        inner = policy
    else:
        policy = _as_text(policy)
        inner = _unwrap_nested(policy)

    if inner is not None:
        logger.info("Unwrapped nested response object", extra={"event": "normalize_nested_unwrap"})
        policy = _as_text(inner.get("policy"))
        if "test_inputs" in inner:
            test_inputs = inner["test_inputs"]
        if not explanation.strip() and inner.get("explanation"):
            explanation = _as_text(inner["explanation"])

    return {
        "policy": unescape(policy),
        "explanation": unescape(explanation),
        "test_inputs": normalize_test_inputs(test_inputs),
    }


def extract_explanation(text: str) -> str:
    """First prose sentence mentioning a policy, an allow decision or a rule."""
    prose = _FENCE_RE.sub("\n", text)
    lines = [line.strip() for line in prose.splitlines() if line.strip()]
    for line in lines:
        for sentence in _SENTENCE_SPLIT_RE.split(line):
            if sentence[-1:] in (".", "!", "?") and _KEYWORD_RE.search(sentence):
                return sentence

    # Unpunctuated closing sentence; a lead-in ending in ":" or a code line does not count
    if lines:
        tail = _SENTENCE_SPLIT_RE.split(lines[-1])[-1]
        if (
            _KEYWORD_RE.search(tail)
            and not tail.endswith(":")
            and not tail.startswith("#")
            and not _CODE_HINT_RE.search(tail)
        ):
            return tail
    return DEFAULT_EXPLANATION


def extract_test_inputs(text: str) -> List[TestCase]:
    """Pull a `"test_inputs": [...]` fragment out of otherwise unparseable text."""
    match = _TEST_INPUTS_RE.search(text)
    if not match:
        return []
    fragment = find_balanced(text, match.end() - 1, "[", "]")
    if fragment is None:
        return []
    try:
        return normalize_test_inputs(json.loads(fragment))
    except (ValueError, RecursionError):
        return []


def _from_text(parsed: Union[FencedBlock, PlainText]) -> tuple[dict, str]:
    text = parsed.text
    prose = text
    explanation = None
    partial = None if isinstance(parsed, FencedBlock) else _PARTIAL_POLICY_RE.search(text)

    if isinstance(parsed, FencedBlock):
        policy, strategy = parsed.code, "fenced_block"
    elif partial and partial.group(1).strip():
        # Truncated JSON: keep whatever part of the policy string arrived
        policy, strategy = partial.group(1).strip(), "partial_json"
        found = _PARTIAL_EXPLANATION_RE.search(text)
        explanation = found.group(1) if found else DEFAULT_EXPLANATION
    else:
        package = _PACKAGE_RE.search(text)
        if package:
            policy, strategy = text[package.start():].strip(), "package_text"
            prose = text[:package.start()]
        else:
            policy, strategy = text.strip(), "raw_text"

    if explanation is None:
        explanation = extract_explanation(prose)

    fields = {
        "policy": unescape(policy),
        "explanation": unescape(explanation),
        "test_inputs": extract_test_inputs(text),
    }
    return fields, strategy


# ═══════════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════════

def normalize_response(raw_text: Optional[str]) -> PolicyRecord:
    """
    Convert raw completion text into a PolicyRecord. Never raises.

    metadata["normalization"] names the strategy that produced the record:
    direct_json, embedded_json, fenced_block, partial_json, package_text
    or raw_text.
    Anything but direct_json is a degraded parse and is logged as such.
    """
    text = _as_text(raw_text)
    try:
        parsed = classify_response(text)
        if isinstance(parsed, JsonPayload):
            fields = _from_json(parsed)
            strategy = "embedded_json" if parsed.embedded else "direct_json"
        else:
            fields, strategy = _from_text(parsed)
    except Exception:
        logger.exception("Normalizer failed, returning raw text", extra={"event": "normalize_failed"})
        fields = {
            "policy": unescape(text.strip()),
            "explanation": DEFAULT_EXPLANATION,
            "test_inputs": [],
        }
        strategy = "raw_text"

    if strategy != "direct_json":
        logger.warning(
            "Completion was not a clean JSON object, degraded parse used",
            extra={
                "event": "normalization_degraded",
                "strategy": strategy,
                "raw_length": len(text),
            },
        )

    return PolicyRecord(**fields, metadata={"normalization": strategy})
