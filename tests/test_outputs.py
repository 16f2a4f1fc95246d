"""
Tests for output resolution and report rendering.
"""

import pytest
from conftest import INSTANCE, applied_state, scenario

from converge.config.constants import SENSITIVE_PLACEHOLDER, UNKNOWN_PLACEHOLDER
from converge.core.exceptions import UnresolvedReferenceError
from converge.engine.differ import compute_changes
from converge.engine.graph import build_graph
from converge.engine.outputs import OutputValue, output_references, resolve_outputs
from converge.engine.planner import Plan
from converge.engine.report import ApplyReport, PlanReport
from converge.model.resources import OutputDecl, Reference
from converge.utils.security import redact_sensitive_info, registered_secrets


@pytest.fixture
def state():
    applied = applied_state(scenario())
    applied[INSTANCE].attributes["public_ip"] = "198.51.100.7"
    return applied


class TestResolveOutputs:
    """Outputs are evaluated against state attributes."""

    def test_plain_and_sensitive(self, state):
        outputs = resolve_outputs(scenario().outputs, state)

        assert outputs["instance_arn"].value == state[INSTANCE].attributes["arn"]
        assert outputs["instance_arn"].sensitive
        assert outputs["public_ip"].value == "198.51.100.7"
        assert not outputs["public_ip"].sensitive

    def test_nested_values(self, state):
        declared = [OutputDecl(
            name="endpoints",
            value={"subnet": Reference.parse("subnet.web.id"), "ports": [22, 80]},
        )]

        outputs = resolve_outputs(declared, state)

        assert outputs["endpoints"].value == {"subnet": "subnet-web", "ports": [22, 80]}

    def test_list_index_path(self, state):
        declared = [OutputDecl(name="first_sg", value=Reference.parse("instance.web.security_group_ids.0"))]

        outputs = resolve_outputs(declared, state)

        assert outputs["first_sg"].value == "security_group-web"

    def test_missing_attribute(self, state):
        declared = [OutputDecl(name="dns", value=Reference.parse("instance.web.public_dns"))]

        with pytest.raises(UnresolvedReferenceError):
            resolve_outputs(declared, state)

    def test_missing_resource(self):
        declared = [OutputDecl(name="ip", value=Reference.parse("instance.web.public_ip"))]

        with pytest.raises(UnresolvedReferenceError) as exc_info:
            resolve_outputs(declared, {})

        assert str(exc_info.value.source) == "output.ip"

    def test_sensitive_values_are_registered(self, state):
        resolve_outputs(scenario().outputs, state)

        assert state[INSTANCE].attributes["arn"] in registered_secrets()
        assert redact_sensitive_info(f"arn is {state[INSTANCE].attributes['arn']}") == "arn is [REDACTED]"

    def test_output_references(self):
        refs = output_references(scenario().outputs)

        assert {str(r) for r in refs} == {"${instance.web.public_ip}", "${instance.web.arn}"}


class TestOutputValue:
    """Sensitive values stay out of repr and display."""

    def test_repr_hides_sensitive_value(self):
        out = OutputValue(name="db_password", value="hunter2-secret", sensitive=True)

        assert "hunter2-secret" not in repr(out)
        assert SENSITIVE_PLACEHOLDER in repr(out)
        assert out.display == SENSITIVE_PLACEHOLDER

    def test_display_plain(self):
        assert OutputValue(name="ip", value="198.51.100.4").display == "198.51.100.4"
        assert OutputValue(name="ports", value=[22, 80]).display == "[22, 80]"


class TestPlanReport:
    """Plan rendering."""

    def test_unknown_values_render_as_placeholder(self, engine, declarations):
        graph = build_graph(declarations)
        changes = compute_changes(declarations, graph, {}, engine.registry)
        plan = Plan(changes=tuple(changes))

        data = PlanReport(plan).as_dict()

        subnet = next(c for c in data["changes"] if c["resource"] == "subnet.web")
        assert subnet["planned"]["network_id"] == UNKNOWN_PLACEHOLDER

    async def test_text_lists_changes(self, engine, declarations):
        plan = await engine.plan(declarations)

        text = PlanReport(plan).render_text()

        assert "+ network.main" in text
        assert "Plan: 4 to add, 0 to change, 0 to replace, 0 to destroy." in text

    def test_text_without_changes(self):
        assert PlanReport(Plan()).render_text().startswith("No changes.")


class TestApplyReport:
    """Apply report views."""

    async def test_render_text_hides_sensitive_outputs(self, engine, declarations):
        report = await engine.apply(declarations)

        text = report.render_text()

        assert "instance_arn = (sensitive)" in text
        assert f"public_ip = {report.outputs['public_ip'].value}" in text
        assert "Apply succeeded: 4 added, 0 changed, 0 destroyed." in text

    async def test_as_dict_lists_items_in_plan_order(self, engine, declarations):
        report = await engine.apply(declarations)

        data = report.as_dict()

        assert data["status"] == "succeeded"
        assert [i["resource"] for i in data["items"]] == [
            "network.main", "subnet.web", "security_group.web", "instance.web",
        ]
        assert all(i["status"] == "succeeded" for i in data["items"])

    def test_empty_report_succeeds(self):
        report = ApplyReport(plan=Plan())

        assert report.ok
        assert report.failed_item is None

