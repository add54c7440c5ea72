import argparse
import json
import os
import re
from typing import List, Optional, Union

from figma_atomic.common.utils import ProgressLogger, save_json, save_text, utc_now
from schemas import (
    GENERATION_RESULT,
    ComponentSkipNote,
    ComponentSummary,
    ElementRecord,
    ExtractionResult,
    GenerationResult,
)

MODULE_ID = "materialize_artifacts_v1"
STAGE = "generate_artifact"
TAILWIND_IMPORT = '@import "tailwindcss";'
WORD_SPLIT_RE = re.compile(r"[\s_-]+")
NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


def derive_component_name(display_name: str) -> str:
    """``"primary button-large"`` -> ``"PrimaryButtonLarge"``; empty input -> ``"Component"``."""
    words = [w for w in WORD_SPLIT_RE.split(display_name or "") if w]
    name = "".join(w[0].upper() + w[1:].lower() for w in words)
    return NON_ALNUM_RE.sub("", name) or "Component"


class ArtifactMaterializer:
    """
    Writes generated artifacts under ``output_dir``:

        components/atoms/<Name>/<Name>.tsx
        components/atoms/<Name>/summary.json
        index.css

    Every write overwrites; nothing is merged.
    """

    def __init__(self, output_dir: str, logger: Optional[ProgressLogger] = None):
        self.output_dir = output_dir
        self.components_dir = os.path.join(output_dir, "components", "atoms")
        self.stylesheet_path = os.path.join(output_dir, "index.css")
        self.logger = logger or ProgressLogger()

    def component_dir(self, name: str) -> str:
        return os.path.join(self.components_dir, name)

    def read_stylesheet(self) -> str:
        if not os.path.exists(self.stylesheet_path):
            return ""
        with open(self.stylesheet_path, "r", encoding="utf-8") as f:
            return f.read()

    def write_stylesheet(self, body: str) -> str:
        if TAILWIND_IMPORT not in body:
            body = f"{TAILWIND_IMPORT}\n\n{body.lstrip()}"
        save_text(self.stylesheet_path, body if body.endswith("\n") else body + "\n")
        return self.stylesheet_path

    def write_component(self, name: str, artifact_body: str, stylesheet_body: Optional[str] = None) -> str:
        path = os.path.join(self.component_dir(name), f"{name}.tsx")
        save_text(path, artifact_body if artifact_body.endswith("\n") else artifact_body + "\n")
        if stylesheet_body:
            self.write_stylesheet(stylesheet_body)
        self.logger.log(STAGE, "running", message=f"wrote {name}.tsx", artifact=path, module_id=MODULE_ID)
        return path

    def write_metadata(self, name: str, record: Union[ComponentSummary, ComponentSkipNote]) -> str:
        path = os.path.join(self.component_dir(name), "summary.json")
        save_json(path, record.model_dump())
        self.logger.log(STAGE, "running", message=f"wrote {name} {record.schema_version}", artifact=path,
                        module_id=MODULE_ID)
        return path


def materialize_result(materializer: ArtifactMaterializer, name: str, element: ElementRecord,
                       result: GenerationResult, extraction: Optional[ExtractionResult] = None,
                       run_id: Optional[str] = None) -> List[str]:
    """
    One artifact write plus one metadata write for a generated result; a metadata-only
    skip note for a skipped one.
    """
    if result.skipped:
        note = ComponentSkipNote(name=name, source_id=element.id, category=element.category,
                                 reason=result.reason, skipped_at=utc_now(), run_id=run_id)
        return [materializer.write_metadata(name, note)]

    artifact_path = materializer.write_component(name, result.artifact_body, result.stylesheet_body)
    summary = ComponentSummary(
        name=name,
        source_id=element.id,
        category=element.category,
        generated_at=utc_now(),
        usage_example=result.usage_example,
        variant_count=len(extraction.variants) if extraction else 0,
        run_id=run_id,
    )
    return [artifact_path, materializer.write_metadata(name, summary)]


def main():
    parser = argparse.ArgumentParser(description="Write a generation result to the component tree.")
    parser.add_argument("--generation", required=True, help="generation.json from generate_component_v1")
    parser.add_argument("--element", required=True, help="JSON file with the element record")
    parser.add_argument("--extraction", help="extraction.json (for the variant count)")
    parser.add_argument("--output-dir", default="output")
    parser.add_argument("--name", help="component name (derived from the element name when omitted)")
    parser.add_argument("--progress-file")
    parser.add_argument("--state-file")
    parser.add_argument("--run-id")
    args = parser.parse_args()

    logger = ProgressLogger(state_path=args.state_file, progress_path=args.progress_file, run_id=args.run_id)
    with open(args.generation, "r", encoding="utf-8") as f:
        result = GENERATION_RESULT.validate_python(json.load(f))
    with open(args.element, "r", encoding="utf-8") as f:
        element = ElementRecord(**json.load(f))
    extraction = None
    if args.extraction:
        with open(args.extraction, "r", encoding="utf-8") as f:
            extraction = ExtractionResult(**json.load(f))
    name = args.name or derive_component_name(element.name)
    paths = materialize_result(ArtifactMaterializer(args.output_dir, logger), name, element, result, extraction,
                               run_id=args.run_id)
    for path in paths:
        print(f"[materialize] {path}")


if __name__ == "__main__":
    main()
