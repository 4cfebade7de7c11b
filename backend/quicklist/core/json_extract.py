import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional

from quicklist.core.errors import ExtractionFailure

logger = logging.getLogger(__name__)

# ```json ... ``` or ``` ... ``` (any language tag)
_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*[ \t]*\r?\n?(.*?)```", re.DOTALL)

# A backslash and whatever follows it (or a trailing backslash)
_ESCAPE_PAIR_RE = re.compile(r"\\.|\\$", re.DOTALL)


def repair_escapes(text: str) -> str:
    """
    Double every backslash that does not start a valid JSON escape, so a stray
    backslash in model text ("Home \\ Men") survives as a literal character.
    Valid escapes (\\n, \\", \\\\, \\u00e9 ...) are left untouched.
    """

    def fix(m: "re.Match[str]") -> str:
        pair = m.group(0)
        if len(pair) == 2 and pair[1] in '"\\/bfnrtu':
            return pair
        return "\\\\" + pair[1:]

    return _ESCAPE_PAIR_RE.sub(fix, text)


_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_TRAILING_COLON_RE = re.compile(r":\s*$")
_STRING_CONTROLS = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}
_CLOSERS = {"{": "}", "[": "]"}


def _close_brackets(text: str) -> str:
    stack: List[str] = []
    in_string = False
    escape_next = False
    for ch in text:
        if in_string:
            if escape_next:
                escape_next = False
            elif ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif stack and ch == _CLOSERS[stack[-1]]:
            stack.pop()
    return text + "".join(_CLOSERS[ch] for ch in reversed(stack))


def repair_structure(text: str) -> str:
    """
    Best-effort fix for model output that was cut off (maxOutputTokens) or
    loosely formatted:

      - raw newlines, carriage returns and tabs inside strings are escaped
      - invalid escapes are doubled, as in repair_escapes()
      - an unclosed final string is closed, or dropped when it opened a new
        key or array item
      - a trailing colon gets a null value
      - open brackets are closed and trailing commas removed
    """
    out: List[str] = []
    in_string = False
    string_start = 0
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if in_string:
            if ch == "\\":
                nxt = text[i + 1] if i + 1 < n else ""
                if nxt and nxt in '"\\/bfnrtu':
                    out.append(ch + nxt)
                    i += 2
                    continue
                out.append("\\\\")
                i += 1
                continue
            if ch in _STRING_CONTROLS:
                out.append(_STRING_CONTROLS[ch])
                i += 1
                continue
            if ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
            string_start = len(out)
        out.append(ch)
        i += 1

    repaired = "".join(out)
    if in_string:
        head = "".join(out[:string_start])
        if head.rstrip().endswith(("{", ",")):
            repaired = head
        else:
            repaired += '"'

    if _TRAILING_COLON_RE.search(repaired):
        repaired += " null"

    return _TRAILING_COMMA_RE.sub(r"\1", _close_brackets(repaired))


def _try_parse(candidate: Optional[str]) -> Optional[Dict[str, Any]]:
    if not candidate:
        return None
    candidate = candidate.strip()
    if not candidate:
        return None
    if "\\" in candidate:
        candidate = repair_escapes(candidate)
    try:
        obj = json.loads(candidate)
    except (ValueError, RecursionError):
        return None
    return obj if isinstance(obj, dict) else None


def _try_parse_repaired(candidate: Optional[str]) -> Optional[Dict[str, Any]]:
    if not candidate or not candidate.strip():
        return None
    try:
        obj = json.loads(repair_structure(candidate.strip()))
    except (ValueError, RecursionError):
        return None
    # an empty object recovered from a fragment says nothing
    return obj if isinstance(obj, dict) and obj else None


def _first_object_tail(text: str) -> Optional[str]:
    start = text.find("{")
    while start >= 0:
        if _could_open_object(text, start):
            return text[start:]
        start = text.find("{", start + 1)
    return None


def _fenced_blocks(text: str) -> Iterator[str]:
    for m in _FENCE_RE.finditer(text):
        yield m.group(1)


def slice_balanced(text: str, start: int) -> Optional[str]:
    """
    Return text[start:end+1] where end is the brace closing the one at
    `start`, or None when it never closes. Braces inside strings and
    escaped quotes do not count.
    """
    depth = 0
    in_string = False
    escape_next = False

    for i in range(start, len(text)):
        ch = text[i]

        if escape_next:
            escape_next = False
            continue
        if ch == "\\":
            escape_next = True
            continue

        if in_string:
            if ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
            if depth < 0:
                return None

    return None


def _could_open_object(text: str, start: int) -> bool:
    # "{" must be followed by a key or "}" to open a JSON object
    for ch in text[start + 1 : start + 64]:
        if not ch.isspace():
            return ch in '"}'
    return False


def _balanced_groups(text: str) -> Iterator[str]:
    """
    Yield the balanced group for every "{" in text order.

    One pass resolves every brace seen outside a string: a scan started at a
    nested "{" is in the same string/escape state as the enclosing scan, so
    its matching "}" is where the enclosing depth drops back below it. Braces
    met inside string values need their own forward scan. At depth zero the
    state resets, as a fresh scan from the next "{" would.
    """
    closes: Dict[int, int] = {}
    in_string_opens: List[int] = []
    stack: List[int] = []
    in_string = False
    escape_next = False

    n = len(text)
    i = text.find("{")
    while 0 <= i < n:
        if not stack:
            if text[i] != "{":
                i = text.find("{", i)
                continue
            in_string = False
            escape_next = False

        ch = text[i]
        if escape_next:
            escape_next = False
        elif ch == "\\":
            escape_next = True
        elif in_string:
            if ch == '"':
                in_string = False
            elif ch == "{":
                in_string_opens.append(i)
        elif ch == '"':
            in_string = True
        elif ch == "{":
            stack.append(i)
        elif ch == "}":
            closes[stack.pop()] = i
        i += 1

    for start in sorted(list(closes) + in_string_opens):
        if not _could_open_object(text, start):
            continue
        end = closes.get(start)
        if end is not None:
            yield text[start : end + 1]
        else:
            candidate = slice_balanced(text, start)
            if candidate:
                yield candidate


def extract_json(text: Any) -> Optional[Dict[str, Any]]:
    """
    Robust JSON extraction (handles fenced blocks, extra text, stray
    backslashes). Returns the first JSON object found, or None.

    Order:
      1) the whole trimmed text
      2) every fenced ``` block
      3) every balanced {...} group, left to right
      4) structural repair (repair_structure) of each fenced block, then of
         the text from the first "{" to the end
    Never raises.
    """
    if not isinstance(text, str):
        return None
    trimmed = text.strip()
    if not trimmed:
        return None

    obj = _try_parse(trimmed)
    if obj is not None:
        return obj

    for block in _fenced_blocks(trimmed):
        obj = _try_parse(block)
        if obj is not None:
            return obj

    for group in _balanced_groups(trimmed):
        obj = _try_parse(group)
        if obj is not None:
            return obj

    for block in _fenced_blocks(trimmed):
        obj = _try_parse_repaired(block)
        if obj is not None:
            return obj

    obj = _try_parse_repaired(_first_object_tail(trimmed))
    if obj is not None:
        logger.debug("recovered JSON object by structural repair")
    return obj


def require_json(text: Any) -> Dict[str, Any]:
    obj = extract_json(text)
    if obj is None:
        preview = text[:200] if isinstance(text, str) else repr(text)[:200]
        raise ExtractionFailure(details={"preview": preview})
    return obj


def _looks_base64(data: str) -> bool:
    return len(data) % 4 == 0 and re.fullmatch(r"[A-Za-z0-9+/=]+", data) is not None


def gemini_response_text(payload: Dict[str, Any]) -> str:
    """
    Join every text part of the first candidate in a generateContent
    response. Inline JSON/text parts are decoded when base64-encoded.
    """
    try:
        parts = payload["candidates"][0]["content"]["parts"] or []
    except (KeyError, IndexError, TypeError):
        return ""

    out: List[str] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        text = part.get("text")
        if isinstance(text, str) and text.strip():
            out.append(text.strip())
            continue

        inline = part.get("inlineData") or part.get("inline_data") or {}
        data = inline.get("data")
        mime = (inline.get("mimeType") or inline.get("mime_type") or "").lower()
        if not isinstance(data, str):
            continue
        if mime and not (mime.startswith("application/json") or mime.startswith("text/")):
            continue
        if _looks_base64(data):
            try:
                decoded = base64.b64decode(data).decode("utf-8").strip()
            except (binascii.Error, UnicodeDecodeError) as e:
                logger.warning("Failed to decode inline data from Gemini response: %s", e)
                continue
            if decoded:
                out.append(decoded)
        elif data.strip():
            out.append(data.strip())

    return "\n".join(out).strip()
