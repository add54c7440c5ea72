import argparse
import json
from typing import Callable, Dict, List, Optional

from figma_atomic.common.openai_client import CompletionClient
from figma_atomic.common.prompt_loader import module_prompt
from figma_atomic.common.protocol import decode
from figma_atomic.common.stage_runner import StageResult, run_completion_stage, stage_failure
from figma_atomic.common.utils import ProgressLogger, save_jsonl
from schemas import SECTION_CATEGORIES, DesignNode, DesignReference, SectionRecord

MODULE_ID = "classify_sections_v1"
STAGE = "classify_sections"

CATEGORY_ALIASES = {
    "section": "generic-section",
    "generic": "generic-section",
    "nav": "navigation",
    "navbar": "navigation",
    "banner": "hero",
}


def fetch_design(fetch: Callable[[str, str], DesignNode], ref: DesignReference,
                 logger: Optional[ProgressLogger] = None) -> StageResult:
    """Fetch the referenced node; any fetch error yields ``value=None``."""
    try:
        node = fetch(ref.file_key, ref.node_id)
    except Exception as exc:  # FetchError, transport errors: all treated as an empty response
        return stage_failure(STAGE, "fetch", f"{type(exc).__name__}: {exc}", None, logger)
    if logger:
        logger.log(STAGE, "running", message=f"fetched {node.name or node.id} ({len(node.children)} children)",
                   module_id=MODULE_ID)
    return StageResult(STAGE, node)


def heuristic_category(name: str, index: int, total: int) -> str:
    lower = (name or "").lower()
    if index == 0 and "header" in lower:
        return "header"
    if index == total - 1 and "footer" in lower:
        return "footer"
    if "hero" in lower or "banner" in lower:
        return "hero"
    if "nav" in lower:
        return "navigation"
    if "content" in lower or "product" in lower:
        return "content"
    return "generic-section"


def heuristic_sections(root: DesignNode) -> List[SectionRecord]:
    total = len(root.children)
    return [SectionRecord(id=child.id, name=child.name, category=heuristic_category(child.name, idx, total))
            for idx, child in enumerate(root.children)]


def normalize_category(value: str) -> Optional[str]:
    key = (value or "").strip().lower()
    key = CATEGORY_ALIASES.get(key, key)
    return key if key in SECTION_CATEGORIES else None


def format_section_list(root: DesignNode) -> str:
    return "\n".join(f"- id: {child.id} | name: {child.name} | type: {child.type}" for child in root.children)


def build_sections(root: DesignNode, records: List[Dict[str, str]], warn: Callable[[str], None]) -> List[SectionRecord]:
    """One record per top-level child, in source order. Children the reply omits get the heuristic category."""
    child_ids = {child.id for child in root.children}
    decoded: Dict[str, str] = {}
    for record in records:
        if record["id"] not in child_ids:
            warn(f"section id {record['id']} is not a top-level child; dropped")
            continue
        category = normalize_category(record["category"])
        if category is None:
            warn(f"unknown section category {record['category']!r} for {record['id']}; using generic-section")
            category = "generic-section"
        decoded[record["id"]] = category

    total = len(root.children)
    sections = []
    for idx, child in enumerate(root.children):
        category = decoded.get(child.id)
        if category is None:
            category = heuristic_category(child.name, idx, total)
            warn(f"section {child.id} missing from reply; heuristic category {category}")
        sections.append(SectionRecord(id=child.id, name=child.name, category=category))
    return sections


def classify_sections(root: DesignNode, complete: Callable[..., str], template: Optional[str] = None,
                      logger: Optional[ProgressLogger] = None, max_tokens: Optional[int] = None,
                      heuristic_fallback: bool = False) -> StageResult:
    logger = logger or ProgressLogger()
    if not root.children:
        logger.warn(STAGE, f"node {root.id} has no top-level children")
        return StageResult(STAGE, [])

    def warn(message: str):
        logger.warn(STAGE, message, module_id=MODULE_ID)

    result = run_completion_stage(
        STAGE,
        template or module_prompt(__file__),
        {
            "NODE_NAME": root.name,
            "SECTION_LIST": format_section_list(root),
            "CATEGORIES": ", ".join(SECTION_CATEGORIES),
        },
        complete,
        lambda text: decode(text, "list", section="SECTIONS", required_keys=("id", "category")),
        [],
        logger,
        build=lambda records: build_sections(root, records, warn),
        max_tokens=max_tokens,
    )
    if not result.ok and heuristic_fallback:
        result.value = heuristic_sections(root)
        warn(f"using heuristic categories for {len(result.value)} sections")
    logger.log(STAGE, "done" if result.ok else "failed", current=len(result.value), total=len(root.children),
               message=f"classified {len(result.value)} sections", module_id=MODULE_ID)
    return result


def main():
    parser = argparse.ArgumentParser(description="Classify the top-level children of a design node into sections.")
    parser.add_argument("--node", required=True, help="JSON file holding a Figma node document")
    parser.add_argument("--out", required=True, help="sections.jsonl")
    parser.add_argument("--model", default="gpt-4.1-mini")
    parser.add_argument("--max-tokens", type=int, default=1000)
    parser.add_argument("--heuristic-fallback", action="store_true")
    parser.add_argument("--progress-file")
    parser.add_argument("--state-file")
    parser.add_argument("--run-id")
    args = parser.parse_args()

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    with open(args.node, "r", encoding="utf-8") as f:
        root = DesignNode.from_api(json.load(f))
    client = CompletionClient(model=args.model)
    result = classify_sections(root, client.complete, logger=logger, max_tokens=args.max_tokens,
                               heuristic_fallback=args.heuristic_fallback)
    save_jsonl(args.out, [s.model_dump() for s in result.value])
    print(f"[classify] {len(result.value)} sections → {args.out}")


if __name__ == "__main__":
    main()
