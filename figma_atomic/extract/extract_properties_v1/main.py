import argparse
import json
import re
from typing import Any, Callable, Dict, Optional

from figma_atomic.common.openai_client import CompletionClient
from figma_atomic.common.prompt_loader import module_prompt
from figma_atomic.common.protocol import decode
from figma_atomic.common.stage_runner import StageResult, run_completion_stage
from figma_atomic.common.utils import ProgressLogger, save_json
from schemas import DesignNode, ElementRecord, ExtractionResult, Primitive, VariantRecord

MODULE_ID = "extract_properties_v1"
STAGE = "extract_properties"
MAX_NODE_CHARS = 12000

INT_RE = re.compile(r"^-?\d+$")
FLOAT_RE = re.compile(r"^-?\d+\.\d+$")


def coerce_scalar(value: Any) -> Primitive:
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if not isinstance(value, str):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    text = value.strip()
    lower = text.lower()
    if lower in ("true", "false"):
        return lower == "true"
    if lower == "null":
        return None
    if INT_RE.match(text):
        return int(text)
    if FLOAT_RE.match(text):
        return float(text)
    return text


def _variant(raw: Dict[str, Any]) -> VariantRecord:
    style = raw.get("style_values") or raw.get("styleValues")
    if not isinstance(style, dict):
        style = {k: v for k, v in raw.items() if k not in ("name", "description")}
    return VariantRecord(
        name=str(raw.get("name", "")).strip() or "default",
        description=str(raw.get("description") or ""),
        style_values={str(k): str(v) for k, v in style.items() if v is not None},
    )


def build_extraction(value: Dict[str, Any]) -> ExtractionResult:
    """Turn a decoded record (section or JSON grammar) into an ExtractionResult."""
    tokens = value.get("tokens") or {}
    variants = value.get("variants") or []
    if not isinstance(tokens, dict):
        raise ValueError("tokens must be a mapping")
    if not isinstance(variants, list):
        raise ValueError("variants must be a list")
    return ExtractionResult(
        tokens={str(k): coerce_scalar(v) for k, v in tokens.items()},
        variants=[_variant(v) for v in variants if isinstance(v, dict)],
    )


def node_json(node: Optional[DesignNode]) -> str:
    if node is None:
        return "(node data unavailable)"
    text = json.dumps(node.to_api(), ensure_ascii=False)
    if len(text) > MAX_NODE_CHARS:
        text = text[:MAX_NODE_CHARS] + " ...(truncated)"
    return text


def extract_properties(representative: ElementRecord, node: Optional[DesignNode], complete: Callable[..., str],
                       template: Optional[str] = None, logger: Optional[ProgressLogger] = None,
                       max_tokens: Optional[int] = None) -> StageResult:
    logger = logger or ProgressLogger()
    if node is None:
        logger.warn(STAGE, f"node {representative.id} not found in fetched tree; extracting from name only",
                    module_id=MODULE_ID)
    result = run_completion_stage(
        STAGE,
        template or module_prompt(__file__),
        {
            "COMPONENT_NAME": representative.name,
            "COMPONENT_TYPE": representative.category,
            "NODE_ID": representative.id,
            "NODE_JSON": node_json(node),
        },
        complete,
        lambda text: decode(text, "record", list_sections={"VARIANTS": ("name",)}),
        ExtractionResult(),
        logger,
        build=build_extraction,
        max_tokens=max_tokens,
    )
    logger.log(STAGE, "done" if result.ok else "failed",
               message=f"{representative.name}: {len(result.value.tokens)} tokens, "
                       f"{len(result.value.variants)} variants",
               module_id=MODULE_ID)
    return result


def main():
    parser = argparse.ArgumentParser(description="Extract design tokens and variants for one component node.")
    parser.add_argument("--node", required=True, help="JSON file holding the component's Figma node document")
    parser.add_argument("--category", required=True, help="component type, e.g. button")
    parser.add_argument("--out", required=True, help="extraction.json")
    parser.add_argument("--model", default="gpt-4.1-mini")
    parser.add_argument("--max-tokens", type=int, default=1500)
    parser.add_argument("--progress-file")
    parser.add_argument("--state-file")
    parser.add_argument("--run-id")
    args = parser.parse_args()

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    with open(args.node, "r", encoding="utf-8") as f:
        node = DesignNode.from_api(json.load(f))
    element = ElementRecord(id=node.id, name=node.name, category=args.category)
    client = CompletionClient(model=args.model)
    result = extract_properties(element, node, client.complete, logger=logger, max_tokens=args.max_tokens)
    save_json(args.out, result.value.model_dump())
    print(f"[extract] {len(result.value.tokens)} tokens, {len(result.value.variants)} variants → {args.out}")


if __name__ == "__main__":
    main()
