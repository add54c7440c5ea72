from .utils import (
    load_settings,
    ensure_dir,
    save_json,
    save_text,
    save_jsonl,
    append_jsonl,
    read_jsonl,
    ProgressLogger,
    PROGRESS_EVENT_SCHEMA,
    PROGRESS_STATUS_VALUES,
    validate_progress_event,
)
from .protocol import Decoded, DecodeFailure, decode

__all__ = [
    "load_settings",
    "ensure_dir",
    "save_json",
    "save_text",
    "save_jsonl",
    "append_jsonl",
    "read_jsonl",
    "ProgressLogger",
    "PROGRESS_EVENT_SCHEMA",
    "PROGRESS_STATUS_VALUES",
    "validate_progress_event",
    "Decoded",
    "DecodeFailure",
    "decode",
]
