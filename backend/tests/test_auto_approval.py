"""Unit tests for entity auto-approval rules."""
from __future__ import annotations

from dms.models.entity import Entity
from dms.schemas.entities import AutoApprovalConfig
from dms.services.auto_approval import get_config, qualifies, set_config


def _entity(**config) -> Entity:
    entity = Entity(name="Gwange", type="COMMUNITY", meta={})
    set_config(entity, AutoApprovalConfig(enabled=True, **config))
    return entity


def test_disabled_entity_never_qualifies() -> None:
    entity = Entity(name="Bulumkutu", type="COMMUNITY", auto_approve_enabled=False)
    assert qualifies(entity, kind="assessments", item_type="HEALTH", priority="LOW") is False
    assert qualifies(None, kind="assessments", item_type="HEALTH", priority="LOW") is False


def test_config_round_trips_through_entity_metadata() -> None:
    entity = _entity(scope="assessments", assessment_types=["WASH"], max_priority="HIGH")

    assert entity.auto_approve_enabled is True
    assert "enabled" not in entity.meta["autoApproval"]

    cfg = get_config(entity)
    assert cfg.enabled is True
    assert cfg.scope == "assessments"
    assert [t.value for t in cfg.assessment_types] == ["WASH"]


def test_scope_types_and_priority_are_enforced() -> None:
    entity = _entity(scope="assessments", assessment_types=["WASH", "FOOD"], max_priority="MEDIUM")

    assert qualifies(entity, kind="assessments", item_type="WASH", priority="MEDIUM") is True
    assert qualifies(entity, kind="assessments", item_type="HEALTH", priority="LOW") is False
    assert qualifies(entity, kind="assessments", item_type="FOOD", priority="HIGH") is False
    assert qualifies(entity, kind="responses", item_type="FOOD", priority="LOW") is False


def test_empty_type_list_allows_every_type() -> None:
    entity = _entity(scope="both")
    assert qualifies(entity, kind="responses", item_type="SHELTER", priority="LOW") is True


def test_documentation_requirement() -> None:
    entity = _entity(requires_documentation=True)

    assert qualifies(entity, kind="assessments", item_type="HEALTH", priority="LOW") is False
    assert qualifies(entity, kind="assessments", item_type="HEALTH", priority="LOW", attachments=["photo.jpg"]) is True
