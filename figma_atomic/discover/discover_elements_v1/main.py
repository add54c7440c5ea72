import argparse
import json
import os
import re
from typing import AbstractSet, Callable, Dict, Iterator, List, Optional

from figma_atomic.common.allow_list import load_allow_list
from figma_atomic.common.openai_client import CompletionClient
from figma_atomic.common.prompt_loader import module_prompt
from figma_atomic.common.protocol import decode
from figma_atomic.common.stage_runner import StageResult, run_completion_stage
from figma_atomic.common.utils import ProgressLogger, save_jsonl, save_text
from schemas import DesignNode, ElementRecord, SectionRecord

MODULE_ID = "discover_elements_v1"
STAGE = "discover_elements"


def flatten_nodes(node: DesignNode) -> Iterator[DesignNode]:
    """Pre-order walk: the node itself, then each child subtree in order."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children))


def format_element_list(nodes: List[DesignNode]) -> str:
    return "\n".join(f"{n.name} | {n.type} | {n.id}" for n in nodes)


def section_slug(section: SectionRecord) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", section.name.lower()).strip("-")
    return slug or re.sub(r"[^A-Za-z0-9]+", "-", section.id).strip("-") or "section"


def build_elements(records: List[Dict[str, str]], known_ids: AbstractSet[str],
                   warn: Callable[[str], None]) -> List[ElementRecord]:
    elements = []
    for record in records:
        if record["id"] not in known_ids:
            warn(f"element id {record['id']} is not in section subtree; dropped")
            continue
        elements.append(ElementRecord(id=record["id"], name=record["name"], category=record["type"]))
    return elements


def render_report(section: SectionRecord, nodes: List[DesignNode], result: StageResult) -> str:
    lines = [
        f"# Section analysis: {section.name}",
        "",
        f"- id: `{section.id}`",
        f"- category: {section.category}",
        f"- nodes scanned: {len(nodes)}",
        f"- components found: {len(result.value)}",
        "",
        "## Components",
        "",
    ]
    if result.value:
        lines += ["| Name | Type | ID |", "|---|---|---|"]
        lines += [f"| {e.name} | {e.category} | `{e.id}` |" for e in result.value]
    else:
        lines.append("_none_")
    if result.error:
        lines += ["", "## Error", "", f"{result.error.kind}: {result.error.message}"]
    if result.warnings:
        lines += ["", "## Warnings", ""] + [f"- {w}" for w in result.warnings]
    lines += ["", "## Raw response", "", "```", (result.raw_response or "").strip(), "```", ""]
    return "\n".join(lines)


def discover_elements(section: SectionRecord, section_node: DesignNode, complete: Callable[..., str],
                      allow_list: AbstractSet[str], template: Optional[str] = None,
                      logger: Optional[ProgressLogger] = None, max_tokens: Optional[int] = None,
                      report_dir: Optional[str] = None) -> StageResult:
    """
    Ask the completion service which nodes of ``section_node`` are allow-listed atoms.

    Records whose type is outside ``allow_list`` never leave the decoder; ids that do not
    belong to the section subtree are dropped here. Order follows the reply.
    """
    logger = logger or ProgressLogger()
    nodes = list(flatten_nodes(section_node))
    known_ids = {n.id for n in nodes}
    logger.log(STAGE, "running", message=f"scanning {len(nodes)} nodes in {section.name}", module_id=MODULE_ID)

    def warn(message: str):
        logger.warn(STAGE, message, module_id=MODULE_ID)

    result = run_completion_stage(
        STAGE,
        template or module_prompt(__file__),
        {
            "SECTION_NAME": section.name,
            "SECTION_CATEGORY": section.category,
            "ELEMENT_LIST": format_element_list(nodes),
            "VALID_COMPONENTS": ", ".join(sorted(allow_list)),
        },
        complete,
        lambda text: decode(text, "list", section="COMPONENTS", allowed_types=allow_list),
        [],
        logger,
        build=lambda records: build_elements(records, known_ids, warn),
        max_tokens=max_tokens,
    )

    report_path = None
    if report_dir:
        report_path = os.path.join(report_dir, f"section-{section_slug(section)}.md")
        save_text(report_path, render_report(section, nodes, result))
    logger.log(STAGE, "done" if result.ok else "failed", current=len(result.value), total=len(nodes),
               message=f"found {len(result.value)} components", artifact=report_path, module_id=MODULE_ID)
    return result


def main():
    parser = argparse.ArgumentParser(description="Discover allow-listed UI atoms inside one section node.")
    parser.add_argument("--node", required=True, help="JSON file holding the section's Figma node document")
    parser.add_argument("--category", default="generic-section")
    parser.add_argument("--out", required=True, help="elements.jsonl")
    parser.add_argument("--allow-list", help="Markdown allow-list (defaults to configs/allowed_components.md)")
    parser.add_argument("--report-dir", help="Directory for the section analysis report")
    parser.add_argument("--model", default="gpt-4.1-mini")
    parser.add_argument("--max-tokens", type=int, default=2000)
    parser.add_argument("--progress-file")
    parser.add_argument("--state-file")
    parser.add_argument("--run-id")
    args = parser.parse_args()

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    with open(args.node, "r", encoding="utf-8") as f:
        node = DesignNode.from_api(json.load(f))
    section = SectionRecord(id=node.id, name=node.name, category=args.category)
    client = CompletionClient(model=args.model)
    result = discover_elements(section, node, client.complete, load_allow_list(args.allow_list), logger=logger,
                               max_tokens=args.max_tokens, report_dir=args.report_dir)
    save_jsonl(args.out, [e.model_dump() for e in result.value])
    print(f"[discover] {len(result.value)} components → {args.out}")


if __name__ == "__main__":
    main()
