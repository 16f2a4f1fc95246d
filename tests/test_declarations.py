"""
Tests for declaration documents and the resource model.
"""

import json

import pytest
from conftest import INSTANCE, NETWORK, SECURITY_GROUP, SUBNET, scenario_document

from converge.core.exceptions import DeclarationError, DuplicateResourceError
from converge.model import (
    Declarations,
    Reference,
    ResourceDecl,
    ResourceId,
    declarations_from_dict,
    load_declarations,
    lookup_path,
    substitute,
)
from converge.model.declarations import parse_value
from converge.model.resources import iter_references


class TestReferenceNotation:
    """Both reference spellings parse to Reference markers."""

    def test_ref_mapping(self):
        value = parse_value({"ref": "network.main.id"})

        assert value == Reference(NETWORK, ("id",))

    def test_interpolation_string(self):
        value = parse_value("${instance.web.security_group_ids.0}")

        assert value == Reference(INSTANCE, ("security_group_ids", 0))

    def test_partial_interpolation_is_a_literal(self):
        assert parse_value("prefix-${network.main.id}") == "prefix-${network.main.id}"

    def test_mapping_with_other_keys_is_data(self):
        value = parse_value({"ref": "network.main.id", "note": "x"})

        assert value == {"ref": "network.main.id", "note": "x"}

    def test_nested_references(self):
        value = parse_value({"rules": [{"target": "${network.main.id}"}]})

        assert list(iter_references(value)) == [Reference(NETWORK, ("id",))]

    def test_reference_needs_attribute(self):
        with pytest.raises(DeclarationError):
            Reference.parse("network.main")

    def test_reference_str(self):
        assert str(Reference.parse("subnet.web.id")) == "${subnet.web.id}"


class TestDeclarationsFromDict:
    """Document validation."""

    def test_scenario(self):
        declarations = declarations_from_dict(scenario_document())

        assert declarations.ids == [NETWORK, SUBNET, SECURITY_GROUP, INSTANCE]
        assert declarations.get(SUBNET).attributes["network_id"] == Reference(NETWORK, ("id",))
        assert [o.name for o in declarations.outputs] == ["public_ip", "instance_arn"]
        assert declarations.outputs[1].sensitive

    def test_lifecycle_and_depends_on(self):
        document = {
            "resources": [
                {"kind": "internet_gateway", "name": "gw"},
                {
                    "kind": "instance",
                    "name": "web",
                    "depends_on": ["internet_gateway.gw"],
                    "lifecycle": {"create_before_destroy": True},
                },
            ],
        }

        declarations = declarations_from_dict(document)

        decl = declarations.get(INSTANCE)
        assert decl.depends_on == (ResourceId("internet_gateway", "gw"),)
        assert decl.create_before_destroy

    def test_empty_document(self):
        assert len(declarations_from_dict({})) == 0

    def test_unknown_top_level_key(self):
        with pytest.raises(DeclarationError):
            declarations_from_dict({"resources": [], "variables": {}})

    def test_missing_name(self):
        with pytest.raises(DeclarationError):
            declarations_from_dict({"resources": [{"kind": "network"}]})

    def test_duplicate_resource(self):
        document = {"resources": [{"kind": "network", "name": "main"}, {"kind": "network", "name": "main"}]}

        with pytest.raises(DuplicateResourceError) as exc_info:
            declarations_from_dict(document)

        assert exc_info.value.resource == NETWORK

    def test_duplicate_output(self):
        document = {"outputs": [{"name": "ip", "value": 1}, {"name": "ip", "value": 2}]}

        with pytest.raises(DeclarationError):
            declarations_from_dict(document)

    def test_dot_in_name_is_rejected(self):
        with pytest.raises(DeclarationError):
            declarations_from_dict({"resources": [{"kind": "network", "name": "a.b"}]})


class TestLoadDeclarations:
    """Files on disk."""

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "web.yaml"
        path.write_text(
            "resources:\n"
            "  - kind: network\n"
            "    name: main\n"
            "    attributes:\n"
            "      cidr_block: 10.0.0.0/16\n"
            "  - kind: subnet\n"
            "    name: web\n"
            "    attributes:\n"
            "      network_id: \"${network.main.id}\"\n",
            encoding="utf-8",
        )

        declarations = load_declarations(path)

        assert declarations.get(SUBNET).attributes["network_id"] == Reference(NETWORK, ("id",))

    def test_json_file(self, tmp_path):
        path = tmp_path / "web.json"
        path.write_text(json.dumps(scenario_document()), encoding="utf-8")

        declarations = load_declarations(path)

        assert len(declarations) == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(DeclarationError):
            load_declarations(tmp_path / "missing.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("resources: [\n", encoding="utf-8")

        with pytest.raises(DeclarationError):
            load_declarations(path)

    def test_non_mapping_document(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")

        with pytest.raises(DeclarationError):
            load_declarations(path)


class TestValueHelpers:
    """substitute and lookup_path."""

    def test_substitute_replaces_at_depth(self):
        value = {"a": [Reference.parse("network.main.id"), {"b": Reference.parse("subnet.web.arn")}]}

        result = substitute(value, lambda ref: f"<{ref.target}>")

        assert result == {"a": ["<network.main>", {"b": "<subnet.web>"}]}

    def test_lookup_path(self):
        attributes = {"ingress": [{"port": 22}, {"port": 80}]}

        assert lookup_path(attributes, ("ingress", 1, "port")) == 80

    def test_lookup_missing_path(self):
        with pytest.raises(KeyError):
            lookup_path({"ingress": []}, ("ingress", 0))

    def test_membership_and_position(self):
        declarations = Declarations(resources=(ResourceDecl(NETWORK),))

        assert NETWORK in declarations
        assert declarations.position(NETWORK) == 0
        assert declarations.position(SUBNET) is None
