"""Unit tests for models.py."""

import pytest

from label_enablement.errors import NotFoundError
from label_enablement.models import (
    STEP_ORDER,
    STEP_PROFILES,
    STEP_STATES,
    DirectorySetting,
    RunReport,
    RunState,
    SettingValue,
    StepName,
    StepOutcome,
    format_flag,
    parse_flag,
)


class TestFlags:
    def test_format(self):
        assert format_flag(True) == "True"
        assert format_flag(False) == "False"

    @pytest.mark.parametrize("raw,expected", [("True", True), ("False", False), ("true", None), ("", None), (None, None)])
    def test_parse_is_exact(self, raw, expected):
        assert parse_flag(raw) is expected


class TestDirectorySetting:
    def test_with_flag_returns_copy(self):
        setting = DirectorySetting(
            template_id="t",
            id="s",
            values=[SettingValue("A", "x"), SettingValue("EnableMIPLabels", "False")],
        )

        updated = setting.with_flag("EnableMIPLabels", True)

        assert updated.values == [SettingValue("A", "x"), SettingValue("EnableMIPLabels", "True")]
        assert setting.get_value("EnableMIPLabels") == "False"
        assert updated.id == "s"

    def test_payload(self):
        setting = DirectorySetting(template_id="t", values=[SettingValue("EnableMIPLabels", "True")])

        assert setting.to_payload() == {
            "templateId": "t",
            "values": [{"name": "EnableMIPLabels", "value": "True"}],
        }


class TestStateMachine:
    def test_every_step_has_a_state(self):
        assert set(STEP_STATES) == set(StepName)
        assert [STEP_STATES[step] for step in STEP_ORDER][-1] is RunState.SYNC_TRIGGERED

    def test_profiles_follow_canonical_order(self):
        for steps in STEP_PROFILES.values():
            assert list(steps) == sorted(steps, key=STEP_ORDER.index)


class TestRunReport:
    def test_exit_codes(self):
        assert RunReport(run_id="r", state=RunState.DONE).exit_code == 0
        assert RunReport(run_id="r", state=RunState.FAILED).exit_code == 1
        assert RunReport(run_id="r", state=RunState.SETTING_ENABLED).exit_code == 1

    def test_summary(self):
        error = NotFoundError("template missing")
        report = RunReport(
            run_id="r",
            outcomes=[
                StepOutcome.skipped(StepName.MODULES, "bypassed"),
                StepOutcome.failed(StepName.GRAPH_CONNECT, error),
            ],
            state=RunState.FAILED,
            failed_step=StepName.GRAPH_CONNECT,
            error=error,
        )

        summary = report.summary()

        assert summary["state"] == "Failed"
        assert summary["failed_step"] == "graph_connect"
        assert summary["error"] == "template missing"
        assert summary["steps"][0] == {"step": "modules", "status": "skipped-no-change", "detail": "bypassed"}
        assert summary["steps"][1]["error_type"] == "NotFoundError"
