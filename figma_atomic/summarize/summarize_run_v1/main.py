import argparse
import json
import os
from typing import Callable, List, Optional, Tuple

from figma_atomic.common.openai_client import CompletionClient
from figma_atomic.common.prompt_loader import module_prompt
from figma_atomic.common.protocol import Decoded, DecodeFailure, DecodeOutcome, extract_json, section_body, strip_code_fences
from figma_atomic.common.stage_runner import StageResult, run_completion_stage
from figma_atomic.common.utils import ProgressLogger, save_json, save_text
from schemas import RunSummary

MODULE_ID = "summarize_run_v1"
STAGE = "summarize"


def decode_showcase(text: str) -> DecodeOutcome:
    if not isinstance(text, str) or not text.strip():
        return DecodeFailure("empty response")
    body = section_body(text, "APP_CONTENT")
    grammar = "sections"
    if body is None:
        try:
            payload = extract_json(text)
        except ValueError:
            return DecodeFailure("no ---APP_CONTENT--- section and no JSON payload")
        body = payload.get("app_content") or payload.get("appContent") if isinstance(payload, dict) else None
        grammar = "json"
    code = strip_code_fences(body if isinstance(body, str) else "")
    if not code:
        return DecodeFailure("APP_CONTENT is empty")
    return Decoded(code, grammar)


def format_component_list(generated: List[Tuple[str, Optional[str]]]) -> str:
    lines = []
    for name, usage in generated:
        lines.append(f"- {name} (./components/atoms/{name}/{name}): {usage or f'<{name} />'}")
    return "\n".join(lines)


def write_showcase(output_dir: str, generated: List[Tuple[str, Optional[str]]], section_name: str,
                   complete: Callable[..., str], template: Optional[str] = None,
                   logger: Optional[ProgressLogger] = None, max_tokens: Optional[int] = None) -> StageResult:
    """Ask for an App.tsx showcasing the generated components; ``value`` is the written path or None."""
    result = run_completion_stage(
        STAGE,
        template or module_prompt(__file__),
        {"COMPONENT_LIST": format_component_list(generated), "SECTION_NAME": section_name},
        complete,
        decode_showcase,
        None,
        logger,
        max_tokens=max_tokens,
    )
    if result.ok:
        path = os.path.join(output_dir, "App.tsx")
        save_text(path, result.value + "\n")
        result.value = path
    return result


def render_summary_markdown(summary: RunSummary) -> str:
    lines = [
        f"# Run summary: {summary.run_id or 'unnamed run'}",
        "",
        f"- reference: {summary.reference}",
        f"- state: {summary.state}",
        f"- started: {summary.started_at or '-'}",
        f"- ended: {summary.ended_at or '-'}",
        f"- elements discovered: {summary.element_count}",
    ]
    if summary.showcase:
        lines.append(f"- showcase: {summary.showcase}")

    lines += ["", "## Sections", ""]
    if summary.sections:
        for section in summary.sections:
            marker = " (processed)" if section.id == summary.processed_section else ""
            lines.append(f"- {section.name} `{section.id}`: {section.category}{marker}")
    else:
        lines.append("_none_")

    lines += ["", "## Components", ""]
    if summary.groups:
        lines += ["| Component | Category | Status | Instances |", "|---|---|---|---|"]
        for group in summary.groups:
            lines.append(f"| {group.component_name} | {group.category} | {group.status} | {group.instance_count} |")
    else:
        lines.append("_none_")

    deferred = [(g, i) for g in summary.groups for i in g.deferred_instances]
    if summary.deferred_sections or deferred:
        lines += ["", "## Available for future processing", ""]
        for section in summary.deferred_sections:
            lines.append(f"- section {section.name} `{section.id}` ({section.category})")
        for group, instance_id in deferred:
            lines.append(f"- {group.category} instance `{instance_id}`")

    if summary.errors:
        lines += ["", "## Errors", ""]
        lines += [f"- [{e.stage}] {e.kind}: {e.message}" for e in summary.errors]
    return "\n".join(lines) + "\n"


def summarize_run(summary: RunSummary, run_dir: str, output_dir: Optional[str] = None,
                  complete: Optional[Callable[..., str]] = None, showcase: bool = True,
                  generated: Optional[List[Tuple[str, Optional[str]]]] = None, section_name: str = "",
                  template: Optional[str] = None, logger: Optional[ProgressLogger] = None,
                  max_tokens: Optional[int] = None) -> StageResult:
    """Optionally write the showcase, then write run_summary.json/.md; ``value`` is the final RunSummary."""
    logger = logger or ProgressLogger()
    generated = generated or []
    errors = list(summary.errors)
    showcase_path = None
    if showcase and generated and complete is not None and output_dir:
        shown = write_showcase(output_dir, generated, section_name, complete, template, logger, max_tokens)
        if shown.error:
            errors.append(shown.error)
        showcase_path = shown.value

    summary = summary.model_copy(update={"showcase": showcase_path, "errors": errors})
    json_path = os.path.join(run_dir, "run_summary.json")
    save_json(json_path, summary.model_dump())
    save_text(os.path.join(run_dir, "run_summary.md"), render_summary_markdown(summary))
    logger.log(STAGE, "done", message=f"{len(summary.groups)} groups, {len(summary.errors)} errors",
               artifact=json_path, module_id=MODULE_ID)
    return StageResult(STAGE, summary)


def main():
    parser = argparse.ArgumentParser(description="Render run_summary.md (and optionally App.tsx) from run_summary.json.")
    parser.add_argument("--summary", required=True, help="run_summary.json")
    parser.add_argument("--run-dir", required=True)
    parser.add_argument("--output-dir", help="Generated project root; enables the showcase")
    parser.add_argument("--model", default="gpt-4.1-mini")
    parser.add_argument("--max-tokens", type=int, default=4000)
    args = parser.parse_args()

    with open(args.summary, "r", encoding="utf-8") as f:
        summary = RunSummary(**json.load(f))
    generated = [(g.component_name, None) for g in summary.groups if g.status == "generated"]
    client = CompletionClient(model=args.model) if args.output_dir else None
    result = summarize_run(summary, args.run_dir, args.output_dir, client.complete if client else None,
                           showcase=bool(args.output_dir), generated=generated, max_tokens=args.max_tokens)
    print(f"[summarize] state={result.value.state} showcase={result.value.showcase or '-'}")


if __name__ == "__main__":
    main()
