import os

import pytest

from figma_atomic.common.prompt_loader import PromptTemplateError, load_prompt, module_prompt, prompt_body, render_prompt

STAGE_DIRS = [
    "classify/classify_sections_v1",
    "discover/discover_elements_v1",
    "extract/extract_properties_v1",
    "generate/generate_component_v1",
    "summarize/summarize_run_v1",
]


def test_prompt_body_strips_leading_documentation():
    template = "# Title\nSome notes about {{X}}.\n## AI Prompt\nDo {{X}} now.\n## AI Prompt\nkept"
    assert prompt_body(template) == "Do {{X}} now.\n## AI Prompt\nkept"


def test_prompt_body_without_marker_is_whole_template():
    assert prompt_body("  Just {{X}}\n") == "Just {{X}}"


def test_render_prompt_exact_token_replacement():
    rendered = render_prompt("## AI Prompt\n{{A}} {{ A }} {{B}} {{C}}", {"A": "1", "B": None})
    assert rendered == "1 {{ A }}  {{C}}"


def test_render_prompt_replaces_every_occurrence_without_escaping():
    assert render_prompt("{{N}}-{{N}}", {"N": "<b>&"}) == "<b>&-<b>&"


def test_load_prompt_missing_file(tmp_path):
    with pytest.raises(PromptTemplateError):
        load_prompt(str(tmp_path / "nope.md"))


@pytest.mark.parametrize("stage_dir", STAGE_DIRS)
def test_stage_templates_have_prompt_body(stage_dir):
    root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    main_py = os.path.join(root, "figma_atomic", stage_dir, "main.py")
    template = module_prompt(main_py)
    body = prompt_body(template)
    assert body
    assert body != template.strip()
    assert "---" in body
