"""
Tests for the differ.

Tests:
- Create / update / replace / no-op / destroy decisions
- Replacement cascades through references
- Computed fields and removed attributes
- UNKNOWN marker semantics
"""

import copy

import pytest
from conftest import INSTANCE, NETWORK, SECURITY_GROUP, SUBNET, applied_state, scenario

from converge.core.exceptions import UnknownResourceKindError
from converge.core.types import ChangeAction
from converge.engine.differ import UNKNOWN, _Unknown, compute_changes, contains_unknown
from converge.engine.graph import build_graph
from converge.model.resources import Declarations, ResourceDecl, ResourceId
from converge.state.models import ResourceState


def diff(declarations, state, registry):
    changes = compute_changes(declarations, build_graph(declarations), state, registry)
    return {c.resource_id: c for c in changes}


class TestCreate:
    """Resources missing from state are created."""

    def test_empty_state_creates_everything(self, declarations, registry):
        changes = diff(declarations, {}, registry)

        assert [c.action for c in changes.values()] == [ChangeAction.CREATE] * 4

    def test_references_to_new_resources_are_unknown(self, declarations, registry):
        changes = diff(declarations, {}, registry)

        assert changes[SUBNET].planned["network_id"] is UNKNOWN
        assert changes[INSTANCE].planned["security_group_ids"] == [UNKNOWN]
        assert changes[NETWORK].planned["cidr_block"] == "10.0.0.0/16"

    def test_changes_follow_declaration_order(self, declarations, registry):
        changes = compute_changes(declarations, build_graph(declarations), {}, registry)

        assert [c.resource_id for c in changes] == [NETWORK, SUBNET, SECURITY_GROUP, INSTANCE]


class TestNoop:
    """Matching state produces no changes."""

    def test_applied_state_is_noop(self, declarations, registry):
        changes = diff(declarations, applied_state(declarations), registry)

        assert all(c.action == ChangeAction.NOOP for c in changes.values())

    def test_computed_fields_are_ignored(self, declarations, registry):
        state = applied_state(declarations)
        state[INSTANCE].attributes["public_ip"] = "198.51.100.7"

        changes = diff(declarations, state, registry)

        assert changes[INSTANCE].action == ChangeAction.NOOP

    def test_references_resolve_from_stored_producers(self, declarations, registry):
        changes = diff(declarations, applied_state(declarations), registry)

        assert changes[SUBNET].planned["network_id"] == "network-main"
        assert changes[INSTANCE].planned["security_group_ids"] == ["security_group-web"]


class TestUpdate:
    """Mutable field changes update in place."""

    def test_mutable_field_change(self, registry):
        state = applied_state(scenario())

        changes = diff(scenario(instance_type="t3.large"), state, registry)

        assert changes[INSTANCE].action == ChangeAction.UPDATE
        assert changes[INSTANCE].changed_fields == ("instance_type",)
        assert changes[INSTANCE].replace_fields == ()
        assert changes[SUBNET].action == ChangeAction.NOOP

    def test_removed_attribute_is_a_change(self, registry):
        declarations = Declarations(resources=(
            ResourceDecl(ResourceId("network", "main"), {"cidr_block": "10.0.0.0/16"}),
        ))
        state = applied_state(Declarations(resources=(
            ResourceDecl(ResourceId("network", "main"), {"cidr_block": "10.0.0.0/16", "tags": {"a": "b"}}),
        )))

        changes = diff(declarations, state, registry)

        assert changes[NETWORK].action == ChangeAction.UPDATE
        assert changes[NETWORK].changed_fields == ("tags",)

    def test_drifted_attribute_is_a_change(self, declarations, registry):
        state = applied_state(declarations)
        state[INSTANCE].attributes["instance_type"] = "t3.xlarge"

        changes = diff(declarations, state, registry)

        assert changes[INSTANCE].action == ChangeAction.UPDATE


class TestReplace:
    """Replace-forcing fields and their cascade."""

    def test_replace_field_forces_replace(self, registry):
        state = applied_state(scenario())

        changes = diff(scenario(image_id="ami-0def5678"), state, registry)

        assert changes[INSTANCE].action == ChangeAction.REPLACE
        assert changes[INSTANCE].replace_fields == ("image_id",)
        assert changes[INSTANCE].forced_replacement

    def test_replace_wins_over_update(self, registry):
        state = applied_state(scenario())

        changes = diff(scenario(image_id="ami-0def5678", instance_type="t3.large"), state, registry)

        assert changes[INSTANCE].action == ChangeAction.REPLACE
        assert changes[INSTANCE].changed_fields == ("image_id", "instance_type")

    def test_replacement_cascades_through_references(self, registry):
        state = applied_state(scenario())

        changes = diff(scenario(cidr_block="10.9.0.0/16"), state, registry)

        assert changes[NETWORK].action == ChangeAction.REPLACE
        assert changes[SUBNET].action == ChangeAction.REPLACE
        assert changes[SUBNET].replace_fields == ("network_id",)
        assert changes[SECURITY_GROUP].action == ChangeAction.REPLACE
        assert changes[INSTANCE].action == ChangeAction.REPLACE
        assert changes[SUBNET].planned["network_id"] is UNKNOWN

    def test_unknown_on_mutable_field_is_an_update(self, registry):
        state = applied_state(scenario())

        changes = diff(scenario(sg_name="web-sg-2"), state, registry)

        assert changes[SECURITY_GROUP].action == ChangeAction.REPLACE
        assert changes[INSTANCE].action == ChangeAction.UPDATE
        assert changes[INSTANCE].changed_fields == ("security_group_ids",)

    def test_deposed_objects_are_carried(self, declarations, registry):
        state = applied_state(declarations)
        state[INSTANCE].deposed = ["instance-old"]

        changes = diff(declarations, state, registry)

        assert changes[INSTANCE].action == ChangeAction.NOOP
        assert changes[INSTANCE].deposed == ("instance-old",)
        assert changes[INSTANCE].has_deposed


class TestDestroy:
    """Stored resources that are no longer declared."""

    def test_undeclared_resources_are_destroyed_in_identity_order(self, declarations, registry):
        state = applied_state(declarations)

        changes = compute_changes(Declarations(), build_graph(Declarations()), state, registry)

        assert [c.resource_id for c in changes] == sorted(state)
        assert all(c.action == ChangeAction.DESTROY for c in changes)

    def test_unknown_kind_in_state(self, registry):
        rid = ResourceId("load_balancer", "main")
        state = {rid: ResourceState(resource_id=rid, remote_id="lb-1")}

        with pytest.raises(UnknownResourceKindError):
            compute_changes(Declarations(), build_graph(Declarations()), state, registry)

    def test_unknown_declared_kind(self, registry):
        declarations = Declarations(resources=(ResourceDecl(ResourceId("load_balancer", "main")),))

        with pytest.raises(UnknownResourceKindError):
            compute_changes(declarations, build_graph(declarations), {}, registry)


class TestUnknownMarker:
    """The UNKNOWN singleton."""

    def test_singleton(self):
        assert _Unknown() is UNKNOWN

    def test_contains_unknown_at_depth(self):
        assert contains_unknown({"a": [1, {"b": UNKNOWN}]})
        assert not contains_unknown({"a": [1, {"b": None}]})

    def test_deepcopy_keeps_identity(self):
        assert copy.deepcopy({"x": UNKNOWN})["x"] is UNKNOWN
