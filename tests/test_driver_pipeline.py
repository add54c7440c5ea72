import json
import os
from unittest.mock import Mock

import pytest

import driver
from driver import Pipeline
from figma_atomic.common.figma_client import FetchError
from figma_atomic.common.utils import ProgressLogger
from figma_atomic.locate.parse_reference_v1.main import InvalidReferenceError, MissingCredentialsError
from schemas import DesignNode, GenerateArtifactSettings, PipelineStages, RunSettings

URL = "https://www.figma.com/design/KEY/Landing?node-id=0-1"
CREDS = {"FIGMA_ACCESS_TOKEN": "figd", "OPENAI_API_KEY": "sk"}

ROOT = DesignNode.from_api({
    "id": "0:1",
    "name": "Landing",
    "type": "FRAME",
    "children": [
        {"id": "1:1", "name": "Hero", "type": "FRAME", "children": [
            {"id": "2:1", "name": "Button 1", "type": "INSTANCE"},
            {"id": "2:2", "name": "Button 2", "type": "INSTANCE"},
            {"id": "2:3", "name": "Icon A", "type": "VECTOR"},
        ]},
        {"id": "1:2", "name": "Footer", "type": "FRAME"},
    ],
})

REPLIES = {
    "showcases UI atoms": "---APP_CONTENT---\nexport default function App() { return null; }\n",
    "Classify every child": "---SECTIONS---\nid:1:1|name:Hero|category:hero\nid:1:2|name:Footer|category:footer\n",
    "identifying reusable UI atoms": "\n".join([
        "---COMPONENTS---",
        "id:2:1|name:Button 1|type:button",
        "id:2:2|name:Button 2|type:button",
        "id:2:3|name:Icon A|type:icon",
    ]),
    "extracting design tokens": "---TOKENS---\nbackground: #0F172A\n---VARIANTS---\nname:primary|description:Filled\n",
    "React + TypeScript component": "\n".join([
        "---COMPONENT---",
        "export function Button1() { return <button />; }",
        "---CSS---",
        ":root { --primary: #0F172A; }",
        "---EXAMPLE---",
        "<Button1 />",
    ]),
}


class FakeCompletion:
    def __init__(self, overrides=None):
        self.replies = dict(REPLIES, **(overrides or {}))
        self.prompts = []

    def __call__(self, prompt, max_tokens=None, stage_id=None):
        self.prompts.append((stage_id, prompt))
        for needle, reply in self.replies.items():
            if needle in prompt:
                return reply
        raise AssertionError(f"unexpected prompt for {stage_id}")


def _pipeline(tmp_path, complete, fetch=None, settings=None):
    out = tmp_path / "out"
    run_dir = out / "runs" / "r1"
    logger = ProgressLogger(
        state_path=str(run_dir / "pipeline_state.json"),
        progress_path=str(run_dir / "pipeline_events.jsonl"),
        run_id="r1",
        log_path=str(run_dir / "run.log"),
    )
    return Pipeline(settings or RunSettings(progress_bar=False), frozenset({"button", "input"}), str(out),
                    str(run_dir), logger=logger, run_id="r1", complete=complete,
                    fetch=fetch or Mock(return_value=ROOT))


def test_end_to_end_button_scenario(tmp_path):
    complete = FakeCompletion()
    fetch = Mock(return_value=ROOT)
    pipeline = _pipeline(tmp_path, complete, fetch)
    summary = pipeline.run(URL, env=CREDS)

    fetch.assert_called_once_with("KEY", "0:1")
    assert summary.state == "done"
    assert pipeline.history == ["locate_reference", "classify_sections", "discover_elements",
                                "extract_properties", "generate_artifact", "summarize", "done"]
    assert [s for s, _ in complete.prompts] == ["classify_sections", "discover_elements", "extract_properties",
                                                "generate_artifact", "summarize"]

    assert summary.processed_section == "1:1"
    assert [s.id for s in summary.deferred_sections] == ["1:2"]
    assert summary.element_count == 2
    assert len(summary.groups) == 1
    group = summary.groups[0]
    assert (group.category, group.representative, group.instance_count) == ("button", "2:1", 2)
    assert group.deferred_instances == ["2:2"]
    assert group.component_name == "Button1"
    assert group.status == "generated"
    assert summary.errors == []

    out = tmp_path / "out"
    atoms = out / "components" / "atoms"
    assert (atoms / "Button1" / "Button1.tsx").exists()
    meta = json.loads((atoms / "Button1" / "summary.json").read_text(encoding="utf-8"))
    assert meta["name"] == "Button1"
    assert meta["source_id"] == "2:1"
    assert meta["variant_count"] == 1
    assert meta["usage_example"] == "<Button1 />"
    assert not (atoms / "IconA").exists()
    assert (out / "index.css").read_text(encoding="utf-8").startswith('@import "tailwindcss";')
    assert (out / "App.tsx").exists()

    run_dir = out / "runs" / "r1"
    assert json.loads((run_dir / "run_summary.json").read_text(encoding="utf-8"))["state"] == "done"
    assert (run_dir / "analysis" / "section-hero.md").exists()
    assert "[classify_sections] DONE" in (run_dir / "run.log").read_text(encoding="utf-8")


def test_skip_category_writes_metadata_only(tmp_path):
    settings = RunSettings(progress_bar=False, stages=PipelineStages(
        generate_artifact=GenerateArtifactSettings(skip_categories=["button"])))
    complete = FakeCompletion()
    summary = _pipeline(tmp_path, complete, settings=settings).run(URL, env=CREDS)

    assert [s for s, _ in complete.prompts] == ["classify_sections", "discover_elements"]
    assert summary.groups[0].status == "skipped"
    button_dir = tmp_path / "out" / "components" / "atoms" / "Button1"
    assert not (button_dir / "Button1.tsx").exists()
    note = json.loads((button_dir / "summary.json").read_text(encoding="utf-8"))
    assert note["schema_version"] == "component_skip_v1"
    assert note["skipped"] is True


def test_invalid_reference_aborts_before_network(tmp_path):
    complete = Mock()
    fetch = Mock()
    pipeline = _pipeline(tmp_path, complete, fetch)
    with pytest.raises(InvalidReferenceError):
        pipeline.run("https://www.figma.com/design/KEY/Landing", env=CREDS)
    complete.assert_not_called()
    fetch.assert_not_called()
    assert pipeline.state == "aborted"
    data = json.loads((tmp_path / "out" / "runs" / "r1" / "run_summary.json").read_text(encoding="utf-8"))
    assert data["state"] == "aborted"
    assert data["errors"][0]["kind"] == "fatal"


def test_missing_credentials_aborts(tmp_path):
    complete = Mock()
    pipeline = _pipeline(tmp_path, complete)
    with pytest.raises(MissingCredentialsError):
        pipeline.run(URL, env={})
    complete.assert_not_called()


def test_fetch_failure_still_finishes(tmp_path):
    complete = Mock()
    summary = _pipeline(tmp_path, complete, fetch=Mock(side_effect=FetchError("Figma API error 500"))).run(
        URL, env=CREDS)
    assert summary.state == "done"
    assert summary.groups == []
    assert [e.kind for e in summary.errors] == ["fetch"]
    complete.assert_not_called()


def test_generation_failure_is_recorded_and_run_continues(tmp_path):
    complete = FakeCompletion({"React + TypeScript component": "I cannot do that."})
    summary = _pipeline(tmp_path, complete).run(URL, env=CREDS)
    assert summary.state == "done"
    assert summary.groups[0].status == "failed"
    assert [e.stage for e in summary.errors] == ["generate_artifact"]
    assert summary.showcase is None


def test_cli_fatal_exit_codes(tmp_path, monkeypatch, capsys):
    monkeypatch.setenv("RUN_ID", "placeholder")
    monkeypatch.setenv("FIGMA_ACCESS_TOKEN", "figd")
    monkeypatch.setenv("OPENAI_API_KEY", "sk")
    with pytest.raises(SystemExit) as err:
        driver.main(["not-a-url", "-o", str(tmp_path), "--run-id", "bad", "--no-progress-bar"])
    assert err.value.code == 1
    assert "ERROR" in capsys.readouterr().err

    monkeypatch.delenv("FIGMA_ACCESS_TOKEN")
    with pytest.raises(SystemExit) as err:
        driver.main([URL, "-o", str(tmp_path), "--run-id", "nocreds", "--skip-setup"])
    assert err.value.code == 1
    assert "FIGMA_ACCESS_TOKEN" in capsys.readouterr().err
    assert not os.path.exists(tmp_path / "runs" / "nocreds" / "snapshots")


def test_cli_success_wires_clients(tmp_path, monkeypatch):
    monkeypatch.setenv("RUN_ID", "placeholder")
    monkeypatch.setenv("FIGMA_ACCESS_TOKEN", "figd")
    monkeypatch.setenv("OPENAI_API_KEY", "sk")
    fake = FakeCompletion()

    class FakeFigmaClient:
        def __init__(self, token, base_url=None, timeout=None):
            assert token == "figd"

        def fetch_node(self, file_key, node_id):
            return ROOT

    class FakeCompletionClient:
        def __init__(self, model=None, api_key=None, temperature=0.0):
            assert api_key == "sk"
            self.complete = fake

    monkeypatch.setattr(driver, "FigmaClient", FakeFigmaClient)
    monkeypatch.setattr(driver, "CompletionClient", FakeCompletionClient)
    code = driver.main([URL, "-o", str(tmp_path), "--run-id", "ok", "--no-progress-bar"])
    assert code == 0
    assert (tmp_path / "runs" / "ok" / "snapshots" / "settings.yaml").exists()
    assert (tmp_path / "components" / "atoms" / "Button1" / "Button1.tsx").exists()
    icon_note = json.loads((tmp_path / "components" / "atoms" / "IconA" / "summary.json").read_text(encoding="utf-8"))
    assert icon_note["schema_version"] == "component_skip_v1"
    assert not (tmp_path / "components" / "atoms" / "IconA" / "IconA.tsx").exists()


def test_malformed_generation_json_does_not_abort_run(tmp_path):
    complete = FakeCompletion({"React + TypeScript component": '{"componentCode": ["<Button1 />"], "css": 5}'})
    summary = _pipeline(tmp_path, complete).run(URL, env=CREDS)
    assert summary.state == "done"
    assert summary.groups[0].status == "failed"
    assert [(e.stage, e.kind) for e in summary.errors] == [("generate_artifact", "decode")]
