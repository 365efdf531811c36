"""Tests for the hrflow command line and the leave-approval sample."""

import json

import pytest

from hrflow.errors import StructuralViolationError
from hrflow.main import WorkflowEngine, main
from hrflow.ir.schema import (
    Action,
    Actor,
    CustomCondition,
    InstanceStatus,
    Role,
    TaskStatus,
    WorkflowStructure,
)
from hrflow.runtime.directory import StaticApproverDirectory
from hrflow.runtime.router import Outcome
from hrflow.samples import LEAVE_APPROVAL_ID, leave_approval_structure


def _write_sample(tmp_path, capsys):
    assert main(["sample"]) == 0
    path = tmp_path / "leave.json"
    path.write_text(capsys.readouterr().out, encoding="utf-8")
    return path


class TestCommandLine:
    def test_sample_round_trips(self, tmp_path, capsys):
        path = _write_sample(tmp_path, capsys)
        raw = json.loads(path.read_text(encoding="utf-8"))
        assert raw["workflow"]["id"] == LEAVE_APPROVAL_ID
        assert raw["steps"][1]["step_name"] == "Pending Manager Review"
        loaded = WorkflowStructure.model_validate(raw)
        expected = leave_approval_structure()
        assert loaded.steps == expected.steps
        assert loaded.transitions == expected.transitions
        assert loaded.definition.name == "Leave Approval"

    def test_validate_accepts_sample(self, tmp_path, capsys):
        path = _write_sample(tmp_path, capsys)
        assert main(["validate", "--structure-file", str(path)]) == 0
        assert json.loads(capsys.readouterr().out) == []

    def test_validate_reports_errors(self, tmp_path, capsys):
        structure = leave_approval_structure()
        structure.steps[0].initial = False
        path = tmp_path / "broken.json"
        path.write_text(structure.to_json(), encoding="utf-8")

        assert main(["validate", "--structure-file", str(path)]) == 1
        codes = [item["code"] for item in json.loads(capsys.readouterr().out)]
        assert codes == ["no_initial_step"]

    def test_publish_writes_version_registry(self, tmp_path, capsys, monkeypatch):
        monkeypatch.delenv("HRFLOW_DATA_ROOT", raising=False)
        path = _write_sample(tmp_path, capsys)
        data_root = tmp_path / "data"

        assert main(["publish", "--structure-file", str(path), "--data-root", str(data_root)]) == 0
        assert json.loads(capsys.readouterr().out)["version"] == "1.0.0"
        assert main(["publish", "--structure-file", str(path), "--data-root", str(data_root), "--bump", "major"]) == 0
        assert json.loads(capsys.readouterr().out)["version"] == "2.0.0"
        assert (data_root / "versions" / f"{LEAVE_APPROVAL_ID}.json").exists()


class TestLeaveApprovalSample:
    def _engine(self):
        directory = StaticApproverDirectory({Role.MANAGER: ["mgr-1"], Role.HR_MANAGER: ["hr-1"]})
        engine = WorkflowEngine(directory=directory)
        engine.publish(leave_approval_structure())
        return engine

    def test_short_leave_is_approved_by_manager(self):
        engine = self._engine()
        employee = Actor(user_id="emp-7", role=Role.EMPLOYEE)
        instance = engine.start_instance(LEAVE_APPROVAL_ID, employee, context={"long_leave": "false"})
        (task,) = engine.get_my_tasks("emp-7")
        engine.process_task_action(instance.id, task.id, Action(action="submit"), employee)

        (review,) = engine.get_my_tasks("mgr-1", TaskStatus.PENDING)
        result = engine.process_task_action(
            instance.id, review.id, Action(action="approve"), Actor(user_id="mgr-1", role=Role.MANAGER)
        )

        assert result.outcome == Outcome.COMPLETED
        assert result.warnings == []
        assert engine.get_instance(instance.id).current_step_id == f"{LEAVE_APPROVAL_ID}-approved"

    def test_long_leave_goes_through_hr(self):
        engine = self._engine()
        employee = Actor(user_id="emp-7", role=Role.EMPLOYEE)
        instance = engine.start_instance(LEAVE_APPROVAL_ID, employee, context={"long_leave": "true"})
        (task,) = engine.get_my_tasks("emp-7")
        engine.process_task_action(instance.id, task.id, Action(action="submit"), employee)
        (review,) = engine.get_my_tasks("mgr-1", TaskStatus.PENDING)

        result = engine.process_task_action(
            instance.id, review.id, Action(action="approve"), Actor(user_id="mgr-1", role=Role.MANAGER)
        )

        assert result.outcome == Outcome.ADVANCED
        assert result.new_step_id == f"{LEAVE_APPROVAL_ID}-hr-review"
        assert result.warnings == []

        (hr_task,) = engine.get_my_tasks("hr-1")
        result = engine.process_task_action(
            instance.id, hr_task.id, Action(action="reject"), Actor(user_id="hr-1", role=Role.HR_MANAGER)
        )
        current = engine.get_instance(instance.id)
        assert current.status == InstanceStatus.COMPLETED
        assert current.current_step_id == f"{LEAVE_APPROVAL_ID}-rejected"

    def test_request_without_leave_flag_terminates(self):
        engine = self._engine()
        employee = Actor(user_id="emp-7", role=Role.EMPLOYEE)
        instance = engine.start_instance(LEAVE_APPROVAL_ID, employee)
        (task,) = engine.get_my_tasks("emp-7")
        engine.process_task_action(instance.id, task.id, Action(action="submit"), employee)
        (review,) = engine.get_my_tasks("mgr-1", TaskStatus.PENDING)

        result = engine.process_task_action(
            instance.id, review.id, Action(action="approve"), Actor(user_id="mgr-1", role=Role.MANAGER)
        )

        assert result.outcome == Outcome.TERMINATED
        assert result.termination_reason == "no_matching_transition"
        assert result.warnings == []

    def test_engine_refuses_unregistered_custom_condition(self):
        structure = leave_approval_structure()
        structure.transitions[1].condition = CustomCondition(name="over_budget")
        engine = WorkflowEngine(
            directory=StaticApproverDirectory({Role.MANAGER: ["mgr-1"], Role.HR_MANAGER: ["hr-1"]})
        )

        assert [item.code for item in engine.validate(structure)] == ["unknown_condition"]
        with pytest.raises(StructuralViolationError):
            engine.publish(structure)

        engine.registry.register("over_budget", lambda params, ctx: False)
        record, _ = engine.publish(structure)
        assert record.version == "1.0.0"

    def test_engine_sessions_share_the_backend(self):
        engine = self._engine()
        session = engine.open_session()
        session.create("Expense Claim", "")
        session.add_step("Draft", initial=True)
        session.sync()
        assert [item.name for item in engine.backend.list_workflows()] == ["Expense Claim"]
