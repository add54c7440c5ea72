import argparse
import os
import sys
import uuid
from datetime import datetime
from typing import Any, AbstractSet, Callable, Dict, List, Mapping, Optional

import yaml
from tqdm import tqdm

from figma_atomic.adapter.group_components_v1.main import deferred_instances, group_by_category
from figma_atomic.classify.classify_sections_v1.main import classify_sections, fetch_design
from figma_atomic.common.allow_list import load_allow_list
from figma_atomic.common.figma_client import FigmaClient
from figma_atomic.common.openai_client import CompletionClient
from figma_atomic.common.stage_runner import StageResult
from figma_atomic.common.utils import ProgressLogger, ensure_dir, load_settings, save_json, save_text, utc_now
from figma_atomic.discover.discover_elements_v1.main import discover_elements, flatten_nodes
from figma_atomic.export.materialize_artifacts_v1.main import (
    TAILWIND_IMPORT,
    ArtifactMaterializer,
    derive_component_name,
    materialize_result,
)
from figma_atomic.extract.extract_properties_v1.main import extract_properties
from figma_atomic.generate.generate_component_v1.main import generate_component
from figma_atomic.locate.parse_reference_v1.main import FatalPipelineError, locate_reference
from figma_atomic.summarize.summarize_run_v1.main import summarize_run
from schemas import (
    ComponentGroup,
    DesignNode,
    ExtractionResult,
    GroupOutcome,
    RunSettings,
    RunSummary,
    SectionRecord,
    StageError,
)

DEFAULT_SETTINGS_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), "configs", "settings.default.yaml")

STATES = (
    "locate_reference",
    "classify_sections",
    "discover_elements",
    "extract_properties",
    "generate_artifact",
    "summarize",
    "done",
    "aborted",
)


def _default_run_id(base: str = "figma") -> str:
    """
    Generate a timestamped run_id so runs never share a run directory.
    Format: <base>-YYYYMMDD-HHMMSS-<6hex>
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"{base}-{ts}-{uuid.uuid4().hex[:6]}"


def load_run_settings(path: Optional[str] = None) -> RunSettings:
    if path is None:
        if not os.path.exists(DEFAULT_SETTINGS_PATH):
            return RunSettings()
        path = DEFAULT_SETTINGS_PATH
    if not os.path.exists(path):
        raise SystemExit(f"Settings file not found: {path}")
    return RunSettings(**load_settings(path))


def snapshot_settings(run_dir: str, settings: RunSettings) -> str:
    """Write the effective settings (after CLI overrides) next to the run artifacts."""
    path = os.path.join(run_dir, "snapshots", "settings.yaml")
    ensure_dir(os.path.dirname(path))
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(settings.model_dump(), f, sort_keys=False)
    return path


def prepare_output(output_dir: str, run_dir: str, settings: RunSettings) -> Dict[str, str]:
    """Create the output tree, seed index.css and snapshot settings. Skipped by --skip-setup."""
    ensure_dir(os.path.join(output_dir, "components", "atoms"))
    ensure_dir(run_dir)
    stylesheet = os.path.join(output_dir, "index.css")
    if not os.path.exists(stylesheet):
        save_text(stylesheet, TAILWIND_IMPORT + "\n")
    return {"settings": snapshot_settings(run_dir, settings), "stylesheet": stylesheet}


class Pipeline:
    """
    Runs one reference through the fixed stage sequence:

        locate_reference -> classify_sections -> discover_elements
          -> for each group: extract_properties -> generate_artifact
          -> summarize -> done

    Only FatalPipelineError (raised in locate_reference, before any network call) leaves
    ``run``; it moves the pipeline to ``aborted``. Every other failure is recorded on the
    run summary and the run continues. ``complete`` and ``fetch`` are built from the
    resolved credentials unless injected.
    """

    def __init__(self, settings: RunSettings, allow_list: AbstractSet[str], output_dir: str, run_dir: str,
                 logger: Optional[ProgressLogger] = None, run_id: Optional[str] = None,
                 complete: Optional[Callable[..., str]] = None,
                 fetch: Optional[Callable[[str, str], DesignNode]] = None):
        self.settings = settings
        self.allow_list = frozenset(allow_list)
        self.output_dir = output_dir
        self.run_dir = run_dir
        self.run_id = run_id
        self.logger = logger or ProgressLogger(run_id=run_id)
        self.complete = complete
        self.fetch = fetch
        self.materializer = ArtifactMaterializer(output_dir, self.logger)
        self.state: Optional[str] = None
        self.history: List[str] = []
        self.errors: List[StageError] = []
        self._usage: Dict[str, Optional[str]] = {}

    def _enter(self, state: str):
        self.state = state
        self.history.append(state)

    def _record(self, result: StageResult) -> StageResult:
        if result.error:
            self.errors.append(result.error)
        return result

    def _build_clients(self, figma_token: str, api_key: str):
        if self.fetch is None:
            client = FigmaClient(figma_token, base_url=self.settings.fetch.base_url,
                                 timeout=self.settings.fetch.timeout)
            self.fetch = client.fetch_node
        if self.complete is None:
            self.complete = CompletionClient(model=self.settings.model, api_key=api_key,
                                             temperature=self.settings.temperature).complete

    def run(self, reference: str, figma_token: Optional[str] = None, api_key: Optional[str] = None,
            env: Optional[Mapping[str, str]] = None) -> RunSummary:
        started_at = utc_now()
        self._enter("locate_reference")
        try:
            ref, figma_token, api_key = locate_reference(reference, figma_token, api_key, env=env, logger=self.logger)
        except FatalPipelineError as exc:
            self._enter("aborted")
            self.logger.log("locate_reference", "failed", message=str(exc), module_id="parse_reference_v1")
            aborted = RunSummary(run_id=self.run_id, reference=reference or "", state="aborted",
                                 started_at=started_at, ended_at=utc_now(),
                                 errors=[StageError(stage="locate_reference", kind="fatal", message=str(exc))])
            save_json(os.path.join(self.run_dir, "run_summary.json"), aborted.model_dump())
            raise
        self._build_clients(figma_token, api_key)
        stages = self.settings.stages

        self._enter("classify_sections")
        fetched = self._record(fetch_design(self.fetch, ref, self.logger))
        root: Optional[DesignNode] = fetched.value
        sections: List[SectionRecord] = []
        if root is not None:
            classified = self._record(classify_sections(
                root, self.complete, logger=self.logger, max_tokens=stages.classify_sections.max_tokens,
                heuristic_fallback=stages.classify_sections.heuristic_fallback))
            sections = classified.value
        else:
            self.logger.log("classify_sections", "failed", message="nothing fetched; no sections",
                            module_id="classify_sections_v1")

        outcomes: List[GroupOutcome] = []
        element_count = 0
        processed = None
        if sections:
            section = sections[0]
            processed = section.id
            for deferred in sections[1:]:
                self.logger.log("deferred", "queued", message=f"section {deferred.name} ({deferred.id})",
                                module_id="classify_sections_v1")
            section_node = next((c for c in root.children if c.id == section.id), None)

            self._enter("discover_elements")
            discovered = self._record(discover_elements(
                section, section_node, self.complete, self.allow_list, logger=self.logger,
                max_tokens=stages.discover_elements.max_tokens,
                report_dir=os.path.join(self.run_dir, "analysis") if stages.discover_elements.write_report else None))
            element_count = len(discovered.value)
            node_index = {n.id: n for n in flatten_nodes(section_node)}
            outcomes = self._process_groups(group_by_category(discovered.value), node_index)

        self._enter("summarize")
        summary = RunSummary(
            run_id=self.run_id,
            reference=ref.url,
            state="done",
            started_at=started_at,
            sections=sections,
            processed_section=processed,
            deferred_sections=sections[1:],
            element_count=element_count,
            groups=outcomes,
            errors=self.errors,
        )
        generated = [(o.component_name, self._usage_example(o)) for o in outcomes if o.status == "generated"]
        summary = summary.model_copy(update={"ended_at": utc_now()})
        result = summarize_run(summary, self.run_dir, self.output_dir, self.complete,
                               showcase=stages.summarize.showcase, generated=generated,
                               section_name=sections[0].name if sections else "", logger=self.logger,
                               max_tokens=stages.summarize.max_tokens)
        self._enter("done")
        return result.value

    def _usage_example(self, outcome: GroupOutcome) -> Optional[str]:
        return self._usage.get(outcome.component_name)

    def _process_groups(self, groups: List[ComponentGroup], node_index: Dict[str, DesignNode]) -> List[GroupOutcome]:
        outcomes = []
        total = len(groups)
        for idx, group in enumerate(tqdm(groups, desc="components", disable=not self.settings.progress_bar), start=1):
            self.logger.log("generate_artifact", "running", current=idx, total=total,
                            message=f"{group.category}: {group.representative.name}")
            outcomes.append(self._process_group(group, node_index))
        return outcomes

    def _process_group(self, group: ComponentGroup, node_index: Dict[str, DesignNode]) -> GroupOutcome:
        stages = self.settings.stages
        skip_categories = frozenset(stages.generate_artifact.skip_categories)
        rep = group.representative
        name = derive_component_name(rep.name)

        self._enter("extract_properties")
        if rep.category in skip_categories:
            extraction = StageResult("extract_properties", ExtractionResult())
        else:
            extraction = self._record(extract_properties(rep, node_index.get(rep.id), self.complete,
                                                         logger=self.logger,
                                                         max_tokens=stages.extract_properties.max_tokens))

        self._enter("generate_artifact")
        generation = self._record(generate_component(
            rep, name, extraction.value, self.complete, stylesheet=self.materializer.read_stylesheet(),
            skip_categories=skip_categories, logger=self.logger, max_tokens=stages.generate_artifact.max_tokens))
        result = generation.value
        materialize_result(self.materializer, name, rep, result, extraction.value, run_id=self.run_id)

        if generation.error:
            status = "failed"
        elif result.skipped:
            status = "skipped"
        else:
            status = "generated"
            self._usage[name] = result.usage_example
        return GroupOutcome(
            category=group.category,
            representative=rep.id,
            component_name=name,
            instance_count=len(group.instances),
            status=status,
            deferred_instances=[e.id for e in deferred_instances(group)],
            reason=result.reason if result.skipped else None,
        )


def print_error_banner(exc: FatalPipelineError):
    print(f"\n❌ ERROR: {exc}", file=sys.stderr)
    if exc.hints:
        print("", file=sys.stderr)
        for hint in exc.hints:
            print(f"  {hint}", file=sys.stderr)
    print("", file=sys.stderr)


def apply_overrides(settings: RunSettings, args: argparse.Namespace) -> RunSettings:
    updates: Dict[str, Any] = {}
    if args.model:
        updates["model"] = args.model
    if args.output:
        updates["output_dir"] = args.output
    if args.allow_list:
        updates["allow_list"] = args.allow_list
    if args.no_progress_bar:
        updates["progress_bar"] = False
    return settings.model_copy(update=updates)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate React atom components from a Figma frame.")
    parser.add_argument("reference", help="Figma URL, e.g. https://www.figma.com/design/<KEY>/<Name>?node-id=1-2")
    parser.add_argument("-o", "--output", help="Output directory for the generated project (default from settings)")
    parser.add_argument("--skip-setup", action="store_true", help="Do not create output directories or snapshots")
    parser.add_argument("--settings", help="Settings YAML (default configs/settings.default.yaml)")
    parser.add_argument("--figma-token", help="Figma access token (default $FIGMA_ACCESS_TOKEN)")
    parser.add_argument("--api-key", help="Completion API key (default $OPENAI_API_KEY)")
    parser.add_argument("--model", help="Completion model override")
    parser.add_argument("--run-id", help="Run identifier (default: timestamped)")
    parser.add_argument("--allow-list", help="Markdown file listing allowed component types")
    parser.add_argument("--instrument", action="store_true",
                        help="Record per-call token usage to <run_dir>/instrumentation_calls.jsonl")
    parser.add_argument("--no-progress-bar", action="store_true")
    args = parser.parse_args(argv)

    settings = apply_overrides(load_run_settings(args.settings), args)
    run_id = args.run_id or _default_run_id()
    output_dir = settings.output_dir
    run_dir = os.path.join(output_dir, "runs", run_id)
    os.environ["RUN_ID"] = run_id
    if args.instrument:
        os.environ["INSTRUMENT_SINK"] = os.path.join(run_dir, "instrumentation_calls.jsonl")

    if not args.skip_setup:
        prepare_output(output_dir, run_dir, settings)
    logger = ProgressLogger(
        state_path=os.path.join(run_dir, "pipeline_state.json"),
        progress_path=os.path.join(run_dir, "pipeline_events.jsonl"),
        run_id=run_id,
        log_path=os.path.join(run_dir, "run.log"),
    )
    allow_list = load_allow_list(settings.allow_list)
    pipeline = Pipeline(settings, allow_list, output_dir, run_dir, logger=logger, run_id=run_id)

    print(f"[run] {run_id} → {run_dir}")
    try:
        summary = pipeline.run(args.reference, figma_token=args.figma_token, api_key=args.api_key)
    except FatalPipelineError as exc:
        print_error_banner(exc)
        raise SystemExit(1)

    generated = sum(1 for g in summary.groups if g.status == "generated")
    print(f"✅ {summary.state}: {generated}/{len(summary.groups)} components generated, "
          f"{len(summary.errors)} stage errors")
    if summary.errors:
        print(f"   warnings logged to {os.path.join(run_dir, 'run.log')}")
    return 0


if __name__ == "__main__":
    main()
