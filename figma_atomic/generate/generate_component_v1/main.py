import argparse
import json
from typing import AbstractSet, Callable, Optional

from figma_atomic.common.openai_client import CompletionClient
from figma_atomic.common.prompt_loader import module_prompt
from figma_atomic.common.protocol import decode
from figma_atomic.common.stage_runner import StageResult, run_completion_stage
from figma_atomic.common.utils import ProgressLogger, save_json
from schemas import GENERATION_RESULT, ElementRecord, ExtractionResult, SkippedGeneration

MODULE_ID = "generate_component_v1"
STAGE = "generate_artifact"


def format_tokens(extraction: ExtractionResult) -> str:
    if not extraction.tokens:
        return "(none extracted)"
    return "\n".join(f"- {k}: {v}" for k, v in extraction.tokens.items())


def format_variants(extraction: ExtractionResult) -> str:
    if not extraction.variants:
        return "(single default variant)"
    lines = []
    for variant in extraction.variants:
        styles = ", ".join(f"{k}={v}" for k, v in variant.style_values.items())
        lines.append(f"- {variant.name}: {variant.description} {styles}".rstrip())
    return "\n".join(lines)


def generate_component(representative: ElementRecord, component_name: str, extraction: ExtractionResult,
                       complete: Callable[..., str], stylesheet: str = "",
                       skip_categories: AbstractSet[str] = frozenset(), template: Optional[str] = None,
                       logger: Optional[ProgressLogger] = None, max_tokens: Optional[int] = None) -> StageResult:
    """
    Produce a GenerationResult for one group representative.

    Categories in ``skip_categories`` are skipped without a completion call. Any stage failure
    yields a SkippedGeneration carrying the failure as its reason, with ``error`` set.
    """
    logger = logger or ProgressLogger()
    if representative.category in skip_categories:
        reason = f"{representative.category} elements are configured as non-implementable"
        logger.log(STAGE, "skipped", message=f"{component_name}: {reason}", module_id=MODULE_ID)
        return StageResult(STAGE, SkippedGeneration(reason=reason))

    result = run_completion_stage(
        STAGE,
        template or module_prompt(__file__),
        {
            "COMPONENT_NAME": component_name,
            "COMPONENT_TYPE": representative.category,
            "TOKENS": format_tokens(extraction),
            "VARIANTS": format_variants(extraction),
            "CURRENT_CSS": stylesheet or "(empty)",
        },
        complete,
        lambda text: decode(text, "generation"),
        SkippedGeneration(reason="generation failed"),
        logger,
        build=GENERATION_RESULT.validate_python,
        max_tokens=max_tokens,
    )
    if result.error:
        result.value = SkippedGeneration(reason=f"generation failed ({result.error.kind}): {result.error.message}")
        logger.log(STAGE, "failed", message=f"{component_name}: {result.error.message}", module_id=MODULE_ID)
    elif result.value.skipped:
        logger.log(STAGE, "skipped", message=f"{component_name}: {result.value.reason}", module_id=MODULE_ID)
    else:
        logger.log(STAGE, "done", message=f"{component_name}: generated", module_id=MODULE_ID)
    return result


def main():
    parser = argparse.ArgumentParser(description="Generate a React component for one extracted element.")
    parser.add_argument("--element", required=True, help="JSON file with an element record {id, name, category}")
    parser.add_argument("--extraction", required=True, help="extraction.json from extract_properties_v1")
    parser.add_argument("--name", required=True, help="derived component name")
    parser.add_argument("--css", help="current index.css to pass as context")
    parser.add_argument("--out", required=True, help="generation.json")
    parser.add_argument("--model", default="gpt-4.1-mini")
    parser.add_argument("--max-tokens", type=int, default=4000)
    parser.add_argument("--progress-file")
    parser.add_argument("--state-file")
    parser.add_argument("--run-id")
    args = parser.parse_args()

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    with open(args.element, "r", encoding="utf-8") as f:
        element = ElementRecord(**json.load(f))
    with open(args.extraction, "r", encoding="utf-8") as f:
        extraction = ExtractionResult(**json.load(f))
    stylesheet = ""
    if args.css:
        with open(args.css, "r", encoding="utf-8") as f:
            stylesheet = f.read()
    client = CompletionClient(model=args.model)
    result = generate_component(element, args.name, extraction, client.complete, stylesheet=stylesheet,
                                logger=logger, max_tokens=args.max_tokens)
    save_json(args.out, result.value.model_dump())
    print(f"[generate] {args.name}: {'skipped' if result.value.skipped else 'generated'} → {args.out}")


if __name__ == "__main__":
    main()
