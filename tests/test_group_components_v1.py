import pytest
from pydantic import ValidationError

from figma_atomic.adapter.group_components_v1.main import deferred_instances, group_by_category
from schemas import ComponentGroup, ElementRecord


def _el(id_, name, category):
    return ElementRecord(id=id_, name=name, category=category)


ELEMENTS = [
    _el("1", "Save", "button"),
    _el("2", "Email", "input"),
    _el("3", "Cancel", "button"),
    _el("4", "Pricing", "card"),
    _el("5", "Name", "input"),
]


def test_groups_in_first_seen_order_with_first_representative():
    groups = group_by_category(ELEMENTS)
    assert [g.category for g in groups] == ["button", "input", "card"]
    assert [g.representative.id for g in groups] == ["1", "2", "4"]
    assert [[e.id for e in g.instances] for g in groups] == [["1", "3"], ["2", "5"], ["4"]]


def test_grouping_is_deterministic():
    assert group_by_category(ELEMENTS) == group_by_category(list(ELEMENTS))


def test_button_scenario_single_group():
    groups = group_by_category([_el("2:1", "Button 1", "button"), _el("2:2", "Button 2", "button")])
    assert len(groups) == 1
    assert groups[0].representative.name == "Button 1"
    assert [e.name for e in groups[0].instances] == ["Button 1", "Button 2"]
    assert [e.name for e in deferred_instances(groups[0])] == ["Button 2"]


def test_empty_input():
    assert group_by_category([]) == []


def test_group_invariants_enforced():
    with pytest.raises(ValidationError):
        ComponentGroup(category="button", representative=ELEMENTS[0], instances=[])
    with pytest.raises(ValidationError):
        ComponentGroup(category="button", representative=ELEMENTS[0], instances=[ELEMENTS[2]])
