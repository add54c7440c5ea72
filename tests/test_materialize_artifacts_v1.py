import json
from unittest.mock import Mock

import pytest

from figma_atomic.export.materialize_artifacts_v1.main import (
    TAILWIND_IMPORT,
    ArtifactMaterializer,
    derive_component_name,
    materialize_result,
)
from schemas import (
    ComponentSkipNote,
    ComponentSummary,
    ElementRecord,
    ExtractionResult,
    GeneratedArtifact,
    SkippedGeneration,
    VariantRecord,
)
from validate_artifact import SCHEMA_MAP

BUTTON = ElementRecord(id="2:1", name="Button 1", category="button")


@pytest.mark.parametrize("display,expected", [
    ("Button 1", "Button1"),
    ("primary button-large", "PrimaryButtonLarge"),
    ("icon_arrow  left", "IconArrowLeft"),
    ("CTA", "Cta"),
    ("Hello, World!", "HelloWorld"),
    ("   ", "Component"),
    ("!!!", "Component"),
])
def test_derive_component_name(display, expected):
    assert derive_component_name(display) == expected


def test_skipped_result_is_metadata_only():
    materializer = Mock(spec=ArtifactMaterializer)
    materialize_result(materializer, "Button1", BUTTON, SkippedGeneration(reason="decorative"))
    materializer.write_component.assert_not_called()
    materializer.write_metadata.assert_called_once()
    name, record = materializer.write_metadata.call_args[0]
    assert name == "Button1"
    assert isinstance(record, ComponentSkipNote)
    assert record.reason == "decorative"
    assert record.source_id == "2:1"


def test_generated_result_one_artifact_one_metadata():
    materializer = Mock(spec=ArtifactMaterializer)
    result = GeneratedArtifact(artifact_body="export const Button1 = () => null;", stylesheet_body=".a {}",
                               usage_example="<Button1 />")
    extraction = ExtractionResult(variants=[VariantRecord(name="a"), VariantRecord(name="b")])
    materialize_result(materializer, "Button1", BUTTON, result, extraction, run_id="r1")
    materializer.write_component.assert_called_once_with("Button1", "export const Button1 = () => null;", ".a {}")
    materializer.write_metadata.assert_called_once()
    record = materializer.write_metadata.call_args[0][1]
    assert isinstance(record, ComponentSummary)
    assert record.variant_count == 2
    assert record.usage_example == "<Button1 />"
    assert record.category == "button"
    assert record.run_id == "r1"


def test_files_written_and_overwritten(tmp_path):
    materializer = ArtifactMaterializer(str(tmp_path))
    first = GeneratedArtifact(artifact_body="export const V = 1;", stylesheet_body=":root { --a: 1; }")
    paths = materialize_result(materializer, "Button1", BUTTON, first)
    tsx = tmp_path / "components" / "atoms" / "Button1" / "Button1.tsx"
    summary = tmp_path / "components" / "atoms" / "Button1" / "summary.json"
    assert paths == [str(tsx), str(summary)]
    assert tsx.read_text(encoding="utf-8") == "export const V = 1;\n"

    css = (tmp_path / "index.css").read_text(encoding="utf-8")
    assert css.startswith(TAILWIND_IMPORT)
    assert css.count(TAILWIND_IMPORT) == 1

    materialize_result(materializer, "Button1", BUTTON, GeneratedArtifact(artifact_body="export const V = 2;"))
    assert tsx.read_text(encoding="utf-8") == "export const V = 2;\n"

    data = json.loads(summary.read_text(encoding="utf-8"))
    assert data["schema_version"] == "component_summary_v1"
    SCHEMA_MAP[data["schema_version"]](**data)


def test_stylesheet_keeps_existing_import(tmp_path):
    materializer = ArtifactMaterializer(str(tmp_path))
    materializer.write_stylesheet(f"{TAILWIND_IMPORT}\n:root {{}}")
    assert materializer.read_stylesheet() == f"{TAILWIND_IMPORT}\n:root {{}}\n"
