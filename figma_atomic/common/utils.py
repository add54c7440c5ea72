import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

import yaml

# Progress event schema constants for lightweight validation/testing
PROGRESS_EVENT_SCHEMA: Dict[str, Tuple[type, ...]] = {
    "timestamp": (str,),
    "run_id": (str, type(None)),
    "stage": (str,),
    "status": (str,),
    "current": (int, type(None)),
    "total": (int, type(None)),
    "percent": (float, int, type(None)),
    "message": (str, type(None)),
    "artifact": (str, type(None)),
    "module_id": (str, type(None)),
    "extra": (dict,),
}
# `warning` is an event-level status for recoverable problems (dropped records, failed calls).
# It never overwrites a finished stage lifecycle status in pipeline_state.json.
PROGRESS_STATUS_VALUES = {"running", "done", "failed", "skipped", "queued", "warning"}


def load_settings(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return data or {}


def ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)


def save_json(path: str, data: Any):
    """Save JSON file, ensuring parent directory exists."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def save_text(path: str, text: str):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)


def save_jsonl(path: str, rows: Iterable[Dict[str, Any]]):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for row in rows:
            f.write(json.dumps(row, ensure_ascii=False) + "\n")


def append_jsonl(path: str, row):
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(row, ensure_ascii=False) + "\n")


def read_jsonl(path: str) -> Iterable[Dict[str, Any]]:
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            if line.strip():
                yield json.loads(line)


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _type_ok(val: Any, allowed: Tuple[type, ...]) -> bool:
    if val is None:
        return type(None) in allowed
    for typ in allowed:
        if typ is float and isinstance(val, (int, float)) and not isinstance(val, bool):
            return True
        if typ is int and isinstance(val, int) and not isinstance(val, bool):
            return True
        if isinstance(val, typ):
            return True
    return False


def validate_progress_event(event: Dict[str, Any]):
    """Lightweight runtime guard to keep progress events well-shaped."""
    missing = [k for k in PROGRESS_EVENT_SCHEMA if k not in event]
    if missing:
        raise ValueError(f"Missing progress event fields: {missing}")
    if event.get("status") not in PROGRESS_STATUS_VALUES:
        raise ValueError(f"Invalid progress status: {event.get('status')}")
    for key, allowed in PROGRESS_EVENT_SCHEMA.items():
        if not _type_ok(event.get(key), allowed):
            expected = ", ".join([t.__name__ if t is not type(None) else "None" for t in allowed])
            raise ValueError(f"Field '{key}' expected types [{expected}], got {type(event.get(key)).__name__}")


def format_event_line(event: Dict[str, Any]) -> str:
    """Render one progress event as a human-readable run log line."""
    parts = [event["timestamp"], f"[{event['stage']}]", event["status"].upper()]
    if event.get("current") is not None and event.get("total"):
        parts.append(f"({event['current']}/{event['total']})")
    if event.get("message"):
        parts.append(event["message"])
    if event.get("artifact"):
        parts.append(f"-> {event['artifact']}")
    return " ".join(parts)


class ProgressLogger:
    """
    Ordered run log for one pipeline run.
    - Appends JSONL events to progress_path (append-only).
    - Appends one human-readable line per event to log_path.
    - Updates pipeline_state.json with stage status + progress counters.
    Every sink is optional; a logger with no paths only validates and returns events.
    """

    def __init__(self, state_path: Optional[str] = None, progress_path: Optional[str] = None,
                 run_id: Optional[str] = None, log_path: Optional[str] = None):
        self.state_path = state_path
        self.progress_path = progress_path
        self.log_path = log_path
        self.run_id = run_id
        for path in (progress_path, state_path, log_path):
            if path:
                Path(path).parent.mkdir(parents=True, exist_ok=True)

    def log(self, stage: str, status: str, current: Optional[int] = None, total: Optional[int] = None,
            message: Optional[str] = None, artifact: Optional[str] = None, module_id: Optional[str] = None,
            extra: Optional[Dict[str, Any]] = None):
        now = utc_now()
        percent = None
        if current is not None and total:
            percent = round((current / total) * 100, 1)

        event = {
            "timestamp": now,
            "run_id": self.run_id,
            "stage": stage,
            "status": status,
            "current": current,
            "total": total,
            "percent": percent,
            "message": message,
            "artifact": artifact,
            "module_id": module_id,
            "extra": extra or {},
        }

        validate_progress_event(event)

        if self.progress_path:
            append_jsonl(self.progress_path, event)

        if self.log_path:
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(format_event_line(event) + "\n")

        if self.state_path:
            self._update_state(event)

        return event

    def warn(self, stage: str, message: str, module_id: Optional[str] = None, **extra):
        print(f"[{stage}] warning: {message}")
        return self.log(stage, "warning", message=message, module_id=module_id, extra=extra)

    def _update_state(self, event: Dict[str, Any]):
        state: Dict[str, Any] = {}
        if os.path.exists(self.state_path):
            with open(self.state_path, "r", encoding="utf-8") as f:
                state = json.load(f)
        stages = state.get("stages", {})
        if self.run_id:
            state["run_id"] = self.run_id
        stage_state = stages.get(event["stage"], {})
        state_status = event["status"]
        if state_status == "warning":
            prev = stage_state.get("status")
            state_status = prev if prev in {"done", "failed", "skipped"} else "running"
        warnings = stage_state.get("warnings", 0) + (1 if event["status"] == "warning" else 0)
        stage_state.update({
            "status": state_status,
            "artifact": event["artifact"] or stage_state.get("artifact"),
            "updated_at": event["timestamp"],
            "module_id": event["module_id"] or stage_state.get("module_id"),
            "warnings": warnings,
            "progress": {
                "current": event["current"],
                "total": event["total"],
                "percent": event["percent"],
                "message": event["message"],
            },
        })
        stages[event["stage"]] = stage_state
        state["stages"] = stages
        with open(self.state_path, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)


def log_llm_usage(model: str, prompt_tokens: int, completion_tokens: int, *,
                  provider: str = "openai", request_ms: float = None,
                  request_id: str = None, stage_id: str = None,
                  run_id: str = None, sink_env: str = "INSTRUMENT_SINK"):
    """
    Append a lightweight LLM usage event to the instrumentation sink if enabled.
    No-op when sink env var is unset.
    """
    sink = os.getenv(sink_env)
    if not sink:
        return None
    if prompt_tokens is None or completion_tokens is None:
        raise ValueError("prompt_tokens and completion_tokens are required")
    event = {
        "schema_version": "instrumentation_call_v1",
        "model": model,
        "provider": provider,
        "prompt_tokens": int(prompt_tokens),
        "completion_tokens": int(completion_tokens),
        "request_ms": request_ms,
        "request_id": request_id,
        "stage_id": stage_id or os.getenv("INSTRUMENT_STAGE"),
        "run_id": run_id or os.getenv("RUN_ID"),
        "created_at": utc_now(),
    }
    append_jsonl(sink, event)
    return event
