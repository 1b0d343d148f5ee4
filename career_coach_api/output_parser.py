"""Lenient parsing of JSON returned by the model.

Models asked to "return only JSON" often wrap it in code fences or prose and
emit near-valid JSON. Parsing runs as a pipeline of small text transforms
followed by a strict ``json.loads``:

1. strip code fences
2. lenient parse: extract the JSON body, relax JSON5-isms, strict parse
3. on failure, repair (escape control characters, unescape ``\\_``) and run
   the lenient parse exactly once more

Anything still unparseable raises ``MalformedModelOutput``.
"""

import json
import re
from typing import Any

import structlog

from career_coach_api.observability import parser_repairs_total

logger = structlog.get_logger()

_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*")
_BARE_KEY_RE = re.compile(r"[A-Za-z_$][A-Za-z0-9_$-]*")
_LITERALS = {"true", "false", "null"}


class MalformedModelOutput(Exception):
    """Raised when model output cannot be turned into a JSON object."""

    def __init__(self, raw_text: str, reason: str = "Model output is not valid JSON"):
        super().__init__(reason)
        self.raw_text = raw_text
        self.reason = reason


def strip_code_fences(text: str) -> str:
    """Remove every triple-backtick marker (with optional language tag) and trim."""
    return _FENCE_RE.sub("", text).strip()


def extract_json_body(text: str) -> str:
    """Cut prose around the outermost JSON object or array.

    An object wins unless an array encloses it, so bracketed prose ahead of
    the object is dropped with the rest of the preamble.
    """
    brace, bracket = text.find("{"), text.find("[")
    if brace < 0 and bracket < 0:
        return text
    if brace < 0 or (0 <= bracket < brace and text.rfind("]") > text.rfind("}")):
        start, closer = bracket, "]"
    else:
        start, closer = brace, "}"
    end = text.rfind(closer)
    if end <= start:
        return text[start:]
    return text[start : end + 1]


def relax_json(text: str) -> str:
    """Rewrite single-quoted strings, unquoted keys and trailing commas as strict JSON.

    Walks the text once, tracking whether it is inside a string so that
    quotes, commas and brackets inside string values are left alone.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]

        if ch == '"' or ch == "'":
            quote = ch
            buf = ['"']
            i += 1
            while i < n and text[i] != quote:
                c = text[i]
                if c == "\\" and i + 1 < n:
                    nxt = text[i + 1]
                    # \' is meaningless in strict JSON
                    if nxt == "'":
                        buf.append("'")
                    else:
                        buf.append(c + nxt)
                    i += 2
                    continue
                if c == '"' and quote == "'":
                    buf.append('\\"')
                else:
                    buf.append(c)
                i += 1
            buf.append('"')
            out.append("".join(buf))
            i += 1
            continue

        if ch == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j < n and text[j] in "}]":
                i += 1
                continue
            out.append(ch)
            i += 1
            continue

        if ch.isalpha() or ch in "_$":
            match = _BARE_KEY_RE.match(text, i)
            word = match.group(0) if match else ch
            j = i + len(word)
            while j < n and text[j].isspace():
                j += 1
            if word not in _LITERALS and j < n and text[j] == ":":
                out.append(f'"{word}"')
            else:
                out.append(word)
            i += len(word)
            continue

        out.append(ch)
        i += 1
    return "".join(out)


def escape_control_characters(text: str) -> str:
    """Escape raw newlines, carriage returns and tabs that appear inside strings."""
    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            elif ch == "\n":
                out.append("\\n")
                continue
            elif ch == "\r":
                out.append("\\r")
                continue
            elif ch == "\t":
                out.append("\\t")
                continue
        elif ch == '"':
            in_string = True
        out.append(ch)
    return "".join(out)


def unescape_underscores(text: str) -> str:
    """Turn markdown-style ``\\_`` (invalid in JSON) back into ``_``."""
    return re.sub(r"(?<!\\)\\_", "_", text)


def _lenient_parse(text: str) -> Any:
    return json.loads(relax_json(extract_json_body(text)))


def _repair(text: str) -> str:
    return unescape_underscores(escape_control_characters(text))


def parse_model_output(raw_text: str) -> dict[str, Any]:
    """Parse model output into a JSON object, repairing it at most once.

    Raises:
        MalformedModelOutput: If the text is not a JSON object even after repair.
    """
    text = strip_code_fences(raw_text or "")
    if not text:
        raise MalformedModelOutput(raw_text, "Model output is empty")

    try:
        parsed = _lenient_parse(text)
    except json.JSONDecodeError as first_error:
        logger.info("Model output needs repair", error=str(first_error))
        parser_repairs_total.labels(outcome="attempted").inc()
        try:
            parsed = _lenient_parse(_repair(text))
        except json.JSONDecodeError as e:
            parser_repairs_total.labels(outcome="failed").inc()
            raise MalformedModelOutput(raw_text, f"Model output is not valid JSON: {e}") from e
        parser_repairs_total.labels(outcome="repaired").inc()

    if not isinstance(parsed, dict):
        raise MalformedModelOutput(raw_text, "Model output is not a JSON object")
    return parsed
