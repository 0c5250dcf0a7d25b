"""Unit tests for settings.py (template resolution and idempotent writes)."""

import pytest

from label_enablement.errors import AmbiguousMatchError, NotFoundError
from label_enablement.models import DirectorySetting, SettingTemplate, StepStatus
from label_enablement.settings import IdempotentSettingWriter, SettingResolver
from tests.fakes import GROUP_UNIFIED_TEMPLATE, FakeGraphClient, group_unified_setting


class TestResolveTemplate:
    """Tests for SettingResolver.resolve_template."""

    def test_exact_display_name_match(self, graph_client, audit_logger):
        """Test the template is matched on its exact display name, not a prefix."""
        resolver = SettingResolver(graph_client, audit_logger)

        template = resolver.resolve_template("Group.Unified")

        assert template.id == GROUP_UNIFIED_TEMPLATE["id"]
        assert template.display_name == "Group.Unified"
        assert [value.name for value in template.values] == ["EnableMIPLabels", "EnableGroupCreation"]
        assert template.values[0].default_value == "False"

    def test_same_template_on_repeated_calls(self, graph_client, audit_logger):
        """Test resolution is deterministic within a run."""
        resolver = SettingResolver(graph_client, audit_logger)

        ids = {resolver.resolve_template("Group.Unified").id for _ in range(5)}

        assert ids == {GROUP_UNIFIED_TEMPLATE["id"]}

    def test_match_is_case_sensitive(self, graph_client, audit_logger):
        """Test a differently cased name does not match."""
        resolver = SettingResolver(graph_client, audit_logger)

        with pytest.raises(NotFoundError):
            resolver.resolve_template("group.unified")

    def test_missing_template_raises_not_found(self, audit_logger):
        """Test an empty template catalogue raises NotFoundError."""
        resolver = SettingResolver(FakeGraphClient(templates=[]), audit_logger)

        with pytest.raises(NotFoundError, match="Group.Unified"):
            resolver.resolve_template("Group.Unified")

    def test_duplicate_display_names_are_ambiguous(self, audit_logger):
        """Test several templates sharing the display name raise instead of picking one."""
        duplicate = dict(GROUP_UNIFIED_TEMPLATE, id="another-id")
        resolver = SettingResolver(FakeGraphClient(templates=[GROUP_UNIFIED_TEMPLATE, duplicate]), audit_logger)

        with pytest.raises(AmbiguousMatchError):
            resolver.resolve_template("Group.Unified")


class TestResolveInstance:
    """Tests for SettingResolver.resolve_instance."""

    def test_absent_instance_returns_none(self, graph_client, audit_logger):
        """Test no existing setting is a normal result, not an error."""
        resolver = SettingResolver(graph_client, audit_logger)
        template = resolver.resolve_template("Group.Unified")

        assert resolver.resolve_instance(template) is None

    def test_instance_matched_on_template_id(self, audit_logger):
        """Test the setting whose templateId matches is returned with its values in order."""
        other = {"id": "other", "templateId": "08d542b9-071f-4e16-94b0-74abb372e3d9", "values": []}
        graph = FakeGraphClient(settings=[other, group_unified_setting("False")])
        resolver = SettingResolver(graph, audit_logger)

        instance = resolver.resolve_instance(resolver.resolve_template("Group.Unified"))

        assert instance.id == "setting-1"
        assert [value.name for value in instance.values] == [
            "EnableGroupCreation",
            "EnableMIPLabels",
            "UsageGuidelinesUrl",
        ]
        assert instance.get_flag("EnableMIPLabels") is False

    def test_two_instances_for_one_template_are_ambiguous(self, audit_logger):
        """Test a broken at-most-one invariant is reported."""
        second = dict(group_unified_setting("True"), id="setting-2")
        graph = FakeGraphClient(settings=[group_unified_setting("False"), second])
        resolver = SettingResolver(graph, audit_logger)

        with pytest.raises(AmbiguousMatchError):
            resolver.resolve_instance(resolver.resolve_template("Group.Unified"))


@pytest.fixture
def template():
    return SettingTemplate.from_api(GROUP_UNIFIED_TEMPLATE)


class TestEnsureValueEnabled:
    """Tests for IdempotentSettingWriter.ensure_value_enabled."""

    def test_creates_setting_when_absent(self, graph_client, audit_logger, template):
        """Test a missing setting is created with only the target pair."""
        writer = IdempotentSettingWriter(graph_client, audit_logger)

        outcome = writer.ensure_value_enabled(template, None, "EnableMIPLabels")

        assert outcome.status is StepStatus.SUCCEEDED
        assert graph_client.writes == [
            (
                "create",
                {
                    "templateId": GROUP_UNIFIED_TEMPLATE["id"],
                    "values": [{"name": "EnableMIPLabels", "value": "True"}],
                },
            )
        ]

    def test_updates_only_the_target_value(self, audit_logger, template):
        """Test a False value is flipped and every other pair is sent unchanged."""
        graph = FakeGraphClient(settings=[group_unified_setting("False")])
        writer = IdempotentSettingWriter(graph, audit_logger)
        instance = DirectorySetting.from_api(group_unified_setting("False"))

        outcome = writer.ensure_value_enabled(template, instance, "EnableMIPLabels")

        assert outcome.status is StepStatus.SUCCEEDED
        assert graph.writes == [
            (
                "update",
                "setting-1",
                [
                    {"name": "EnableGroupCreation", "value": "true"},
                    {"name": "EnableMIPLabels", "value": "True"},
                    {"name": "UsageGuidelinesUrl", "value": ""},
                ],
            )
        ]
        # the caller's copy is not mutated
        assert instance.get_value("EnableMIPLabels") == "False"

    def test_no_remote_call_when_already_enabled(self, audit_logger, template):
        """Test an already True value is left alone."""
        graph = FakeGraphClient(settings=[group_unified_setting("True")])
        writer = IdempotentSettingWriter(graph, audit_logger)
        instance = DirectorySetting.from_api(group_unified_setting("True"))

        outcome = writer.ensure_value_enabled(template, instance, "EnableMIPLabels")

        assert outcome.status is StepStatus.SKIPPED_NO_CHANGE
        assert graph.writes == []

    def test_lowercase_value_is_rewritten(self, audit_logger, template):
        """Test comparison is exact, so "true" is normalised to "True"."""
        graph = FakeGraphClient(settings=[group_unified_setting("true")])
        writer = IdempotentSettingWriter(graph, audit_logger)
        instance = DirectorySetting.from_api(group_unified_setting("true"))

        outcome = writer.ensure_value_enabled(template, instance, "EnableMIPLabels")

        assert outcome.status is StepStatus.SUCCEEDED
        assert len(graph.writes) == 1

    def test_missing_pair_is_appended(self, audit_logger, template):
        """Test an instance without the setting name gets it appended."""
        payload = group_unified_setting("False")
        payload["values"] = [item for item in payload["values"] if item["name"] != "EnableMIPLabels"]
        graph = FakeGraphClient(settings=[payload])
        writer = IdempotentSettingWriter(graph, audit_logger)

        writer.ensure_value_enabled(template, DirectorySetting.from_api(payload), "EnableMIPLabels")

        _, _, values = graph.writes[0]
        assert values[-1] == {"name": "EnableMIPLabels", "value": "True"}
        assert len(values) == 3

    def test_second_run_is_a_no_op(self, graph_client, audit_logger, template):
        """Test two resolve-then-write passes issue exactly one mutating call."""
        resolver = SettingResolver(graph_client, audit_logger)
        writer = IdempotentSettingWriter(graph_client, audit_logger)

        first = writer.ensure_value_enabled(template, resolver.resolve_instance(template), "EnableMIPLabels")
        second = writer.ensure_value_enabled(template, resolver.resolve_instance(template), "EnableMIPLabels")

        assert first.status is StepStatus.SUCCEEDED
        assert second.status is StepStatus.SKIPPED_NO_CHANGE
        assert len(graph_client.writes) == 1

    def test_remote_rejection_becomes_failed_outcome(self, audit_logger, template, audit_events):
        """Test a rejected write is reported as a failed outcome carrying the error."""
        writer = IdempotentSettingWriter(FakeGraphClient(fail_writes=True), audit_logger)

        outcome = writer.ensure_value_enabled(template, None, "EnableMIPLabels")

        assert outcome.status is StepStatus.FAILED
        assert outcome.error.status == 403
        assert "403" in outcome.detail
        assert audit_events()[-1]["message"] == "setting_write_failed"
