import argparse
import json
from typing import Any, Dict, Iterable, List, Tuple, Type

from pydantic import BaseModel, ValidationError

from figma_atomic.common.utils import read_jsonl
from schemas import (
    ComponentSkipNote,
    ComponentSummary,
    ElementRecord,
    ExtractionResult,
    LLMCallUsage,
    RunSummary,
    SectionRecord,
)


SCHEMA_MAP: Dict[str, Type[BaseModel]] = {
    "section_record_v1": SectionRecord,
    "element_record_v1": ElementRecord,
    "extraction_result_v1": ExtractionResult,
    "component_summary_v1": ComponentSummary,
    "component_skip_v1": ComponentSkipNote,
    "run_summary_v1": RunSummary,
    "instrumentation_call_v1": LLMCallUsage,
}


def load_rows(path: str) -> Iterable[Dict[str, Any]]:
    """A ``.jsonl`` file yields each line; a ``.json`` file yields its object (or each item of its array)."""
    if path.endswith(".jsonl"):
        yield from read_jsonl(path)
        return
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, list):
        yield from data
    else:
        yield data


def validate_rows(model_cls: Type[BaseModel], rows: Iterable[Dict[str, Any]]) -> Tuple[int, List[str]]:
    total = 0
    errors = []
    for row in rows:
        total += 1
        try:
            model_cls(**row)
        except (ValidationError, TypeError) as e:
            errors.append(f"row {total}: {e}")
    return total, errors


def main():
    parser = argparse.ArgumentParser(description="Validate a JSON/JSONL artifact against schema.")
    parser.add_argument("--schema", required=True, choices=SCHEMA_MAP.keys())
    parser.add_argument("--file", required=True, help="Path to .json or .jsonl artifact")
    args = parser.parse_args()

    total, errors = validate_rows(SCHEMA_MAP[args.schema], load_rows(args.file))
    for err in errors:
        print(f"[ERROR] {err}")

    if errors:
        print(f"Validation finished with {len(errors)} errors out of {total} rows.")
        raise SystemExit(1)
    else:
        print(f"Validation OK: {total} rows match {args.schema}")


if __name__ == "__main__":
    main()
