"""Decoder for completion-service replies.

Replies are untrusted free text. Two grammars are understood:

1. Delimited sections. A line consisting only of ``---NAME---`` opens the
   section ``NAME``; its body runs until the next marker line (any name) or the
   end of the text. Names are matched literally and case-sensitively, markers
   do not nest, and text before the first marker is ignored. When a name
   appears twice the first occurrence wins.

   Inside list sections every non-empty line is a pipe-delimited set of
   ``key:value`` tokens, e.g. ``id:2606:6342|name:Submit|type:button``. Keys
   split from values on the first colon only, because ids contain colons.

2. JSON fallback, used only when the text contains no marker line at all: the
   first fenced block tagged ``json``, otherwise the first balanced
   ``{...}``/``[...]`` span (in order of appearance) that parses.

``decode`` is pure and total for any input string: it returns either a
``Decoded`` or a ``DecodeFailure`` and never raises on malformed text.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from pydantic import ValidationError

from schemas import GeneratedArtifact, SkippedGeneration

MODES = ("list", "record", "generation")
DEFAULT_REQUIRED_KEYS = ("id", "name", "type")

MARKER_RE = re.compile(r"^---([A-Za-z0-9_]+)---$")
BULLET_RE = re.compile(r"^(?:[-*•]|\d+[.)])\s+")
FENCED_JSON_RE = re.compile(r"```json[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
FENCE_OPEN_RE = re.compile(r"^```[\w.+-]*[ \t]*(?:\n|$)")
FENCE_CLOSE_RE = re.compile(r"\n?```[ \t]*$")

_CLOSERS = {"{": "}", "[": "]"}
_TRUE_WORDS = {"true", "yes", "1"}


@dataclass(frozen=True)
class Decoded:
    value: Any
    grammar: str  # "sections" or "json"
    warnings: Tuple[str, ...] = ()

    ok = True


@dataclass(frozen=True)
class DecodeFailure:
    reason: str
    warnings: Tuple[str, ...] = ()

    ok = False


DecodeOutcome = Union[Decoded, DecodeFailure]


# --- section grammar ---------------------------------------------------------

def _trim_blank_lines(lines: List[str]) -> str:
    start, end = 0, len(lines)
    while start < end and not lines[start].strip():
        start += 1
    while end > start and not lines[end - 1].strip():
        end -= 1
    return "\n".join(line.rstrip() for line in lines[start:end])


def split_sections(text: str) -> List[Tuple[str, str]]:
    """Return ``(name, body)`` pairs in order of appearance."""
    sections: List[Tuple[str, str]] = []
    name: Optional[str] = None
    body: List[str] = []
    for line in text.splitlines():
        match = MARKER_RE.match(line.strip())
        if match:
            if name is not None:
                sections.append((name, _trim_blank_lines(body)))
            name = match.group(1)
            body = []
        elif name is not None:
            body.append(line)
    if name is not None:
        sections.append((name, _trim_blank_lines(body)))
    return sections


def sections_by_name(sections: Sequence[Tuple[str, str]]) -> Dict[str, str]:
    named: Dict[str, str] = {}
    for name, body in sections:
        named.setdefault(name, body)
    return named


def section_body(text: str, name: str) -> Optional[str]:
    return sections_by_name(split_sections(text)).get(name)


def _strip_bullet(line: str) -> str:
    return BULLET_RE.sub("", line.strip(), count=1)


def parse_pipe_line(line: str) -> Dict[str, str]:
    """``a:1|b:x:y`` -> ``{"a": "1", "b": "x:y"}``. Tokens without a key or value are ignored."""
    record: Dict[str, str] = {}
    for part in _strip_bullet(line).split("|"):
        key, sep, value = part.partition(":")
        key, value = key.strip(), value.strip()
        if sep and key and value:
            record[key] = value
    return record


def parse_key_values(body: str) -> Tuple[Dict[str, str], List[str]]:
    """One ``key: value`` pair per line, split on the first colon."""
    mapping: Dict[str, str] = {}
    warnings: List[str] = []
    for lineno, raw in enumerate(body.splitlines(), start=1):
        line = _strip_bullet(raw)
        if not line:
            continue
        key, sep, value = line.partition(":")
        key, value = key.strip(), value.strip()
        if not sep or not key or not value:
            warnings.append(f"line {lineno}: expected 'key: value', dropped: {line[:80]}")
            continue
        mapping[key] = value
    return mapping, warnings


def strip_code_fences(body: Optional[str]) -> str:
    if not body:
        return ""
    code = body.replace("\r\n", "\n").replace("\r", "\n").strip()
    code = FENCE_OPEN_RE.sub("", code, count=1)
    code = FENCE_CLOSE_RE.sub("", code, count=1)
    return code.strip()


def _first_line(body: Optional[str]) -> str:
    for line in (body or "").splitlines():
        if line.strip():
            return line.strip()
    return ""


# --- JSON grammar ------------------------------------------------------------

def _match_close(text: str, start: int) -> Optional[int]:
    stack: List[str] = []
    in_string = escaped = False
    for idx in range(start, len(text)):
        ch = text[idx]
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
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
            if not stack:
                return idx
    return None


def balanced_spans(text: str) -> Iterator[Tuple[int, int]]:
    """Yield ``(start, end)`` of top-level balanced bracket spans, left to right."""
    pos = 0
    while True:
        starts = [i for i in (text.find("{", pos), text.find("[", pos)) if i >= 0]
        if not starts:
            return
        start = min(starts)
        end = _match_close(text, start)
        if end is None:
            pos = start + 1
            continue
        yield start, end + 1
        pos = end + 1


def extract_json(text: str) -> Any:
    """Parse the embedded JSON payload of ``text``; raises ValueError when there is none."""
    for match in FENCED_JSON_RE.finditer(text):
        try:
            return json.loads(match.group(1).strip())
        except (ValueError, RecursionError):
            continue
    for start, end in balanced_spans(text):
        try:
            return json.loads(text[start:end])
        except (ValueError, RecursionError):
            continue
    raise ValueError("no parseable JSON found")


# --- record validation -------------------------------------------------------

def _scalar_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def _validate_records(candidates: Sequence[Tuple[str, Dict[str, str]]], required_keys: Sequence[str],
                      allowed_types: Optional[Any]) -> Tuple[Optional[List[Dict[str, str]]], List[str], Optional[str]]:
    records: List[Dict[str, str]] = []
    warnings: List[str] = []
    seen_ids = set()
    for label, record in candidates:
        missing = [key for key in required_keys if not record.get(key)]
        if missing:
            warnings.append(f"{label}: missing {', '.join(missing)}; dropped")
            continue
        record_id = record.get("id")
        if record_id is not None:
            if record_id in seen_ids:
                return None, warnings, f"duplicate id {record_id!r}"
            seen_ids.add(record_id)
        if allowed_types is not None and record.get("type") not in allowed_types:
            warnings.append(f"{label}: type {record.get('type')!r} not in allow-list; dropped")
            continue
        records.append(record)
    return records, warnings, None


def _line_candidates(body: str) -> List[Tuple[str, Dict[str, str]]]:
    return [(f"line {lineno}", parse_pipe_line(line))
            for lineno, line in enumerate(body.splitlines(), start=1) if line.strip()]


def _json_candidates(items: Sequence[Any]) -> Tuple[List[Tuple[str, Dict[str, str]]], List[str]]:
    candidates = []
    warnings = []
    for idx, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            warnings.append(f"item {idx}: not an object; dropped")
            continue
        record = {}
        for key, value in item.items():
            text = _scalar_text(value)
            if text is not None:
                record[str(key)] = text
        candidates.append((f"item {idx}", record))
    return candidates, warnings


# --- modes -------------------------------------------------------------------

def _decode_list(sections, payload, section, required_keys, allowed_types) -> DecodeOutcome:
    if sections is not None:
        body = sections_by_name(sections).get(section)
        if body is None:
            return DecodeFailure(f"section ---{section}--- not found")
        candidates, pre_warnings, grammar = _line_candidates(body), [], "sections"
    else:
        items = payload
        if isinstance(payload, dict):
            items = payload.get(section.lower(), payload.get("items"))
        if not isinstance(items, list):
            return DecodeFailure("JSON payload is not a list of records")
        candidates, pre_warnings = _json_candidates(items)
        grammar = "json"
    records, warnings, error = _validate_records(candidates, required_keys, allowed_types)
    warnings = pre_warnings + warnings
    if error:
        return DecodeFailure(error, tuple(warnings))
    return Decoded(records, grammar, tuple(warnings))


def _decode_record(sections, payload, list_sections) -> DecodeOutcome:
    if sections is None:
        if not isinstance(payload, dict):
            return DecodeFailure("JSON payload is not an object")
        return Decoded(payload, "json")
    value: Dict[str, Any] = {}
    warnings: List[str] = []
    for name, body in sections_by_name(sections).items():
        if name in list_sections:
            records, section_warnings, error = _validate_records(_line_candidates(body), list_sections[name], None)
            warnings.extend(f"{name} {w}" for w in section_warnings)
            if error:
                return DecodeFailure(f"section ---{name}---: {error}", tuple(warnings))
            value[name.lower()] = records
        else:
            mapping, section_warnings = parse_key_values(body)
            warnings.extend(f"{name} {w}" for w in section_warnings)
            value[name.lower()] = mapping
    return Decoded(value, "sections", tuple(warnings))


def _first_present(payload: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) not in (None, ""):
            return payload[key]
    return None


def _decode_generation(sections, payload) -> DecodeOutcome:
    warnings: List[str] = []
    try:
        if sections is not None:
            named = sections_by_name(sections)
            if "SKIP" not in named and "COMPONENT" not in named:
                return DecodeFailure("neither ---SKIP--- nor ---COMPONENT--- section present")
            if _first_line(named.get("SKIP")).lower() in _TRUE_WORDS:
                reason = _first_line(named.get("REASON")) or "skipped by completion service"
                return Decoded(SkippedGeneration(reason=reason), "sections")
            mapping, warnings = parse_key_values(named.get("MAPPING", ""))
            result = GeneratedArtifact(
                artifact_body=strip_code_fences(named.get("COMPONENT")),
                stylesheet_body=strip_code_fences(named.get("CSS")) or None,
                usage_example=_first_line(strip_code_fences(named.get("EXAMPLE"))) or None,
                notes=named.get("NOTES") or None,
                color_mapping=mapping,
            )
            return Decoded(result, "sections", tuple(warnings))

        if not isinstance(payload, dict):
            return DecodeFailure("JSON payload is not an object")
        skipped = _first_present(payload, "skipped", "skipImplementation")
        if skipped is True or str(skipped).lower() in _TRUE_WORDS:
            reason = _first_present(payload, "reason") or "skipped by completion service"
            return Decoded(SkippedGeneration(reason=str(reason)), "json")
        component = _first_present(payload, "artifact_body", "componentCode", "component")
        stylesheet = _first_present(payload, "stylesheet_body", "updatedCSS", "css")
        for label, field in (("component", component), ("stylesheet", stylesheet)):
            if field is not None and not isinstance(field, str):
                return DecodeFailure(f"JSON {label} is {type(field).__name__}, expected a string")
        mapping = _first_present(payload, "color_mapping", "colorMapping") or {}
        result = GeneratedArtifact(
            artifact_body=strip_code_fences(component),
            stylesheet_body=strip_code_fences(stylesheet) or None,
            usage_example=_first_present(payload, "usage_example", "usageExample"),
            notes=_first_present(payload, "notes"),
            color_mapping={str(k): str(v) for k, v in mapping.items()} if isinstance(mapping, dict) else {},
        )
        return Decoded(result, "json")
    except ValidationError as exc:
        return DecodeFailure(f"invalid generation result: {exc.errors()[0]['msg']}", tuple(warnings))


def decode(text: Any, mode: str, *, section: Optional[str] = None,
           required_keys: Sequence[str] = DEFAULT_REQUIRED_KEYS, allowed_types: Optional[Any] = None,
           list_sections: Optional[Mapping[str, Sequence[str]]] = None) -> DecodeOutcome:
    """
    Decode a completion reply.

    mode="list":       ``section`` names the list section (and the JSON key); returns ``List[Dict[str, str]]``.
    mode="record":     returns ``{section_name_lower: mapping or list}``; ``list_sections`` maps section
                       names parsed as pipe lines to their required keys.
    mode="generation": returns ``SkippedGeneration`` or ``GeneratedArtifact``.

    Bad arguments (unknown mode, list mode without a section) raise ValueError; bad text never does.
    """
    if mode not in MODES:
        raise ValueError(f"unknown decode mode: {mode!r}")
    if mode == "list" and not section:
        raise ValueError("list mode requires a section name")
    if not isinstance(text, str) or not text.strip():
        return DecodeFailure("empty response")

    sections: Optional[List[Tuple[str, str]]] = split_sections(text)
    payload: Any = None
    if not sections:
        sections = None
        try:
            payload = extract_json(text)
        except ValueError as exc:
            return DecodeFailure(f"no delimited sections and {exc}")

    if mode == "list":
        return _decode_list(sections, payload, section, tuple(required_keys), allowed_types)
    if mode == "record":
        return _decode_record(sections, payload, dict(list_sections or {}))
    return _decode_generation(sections, payload)
