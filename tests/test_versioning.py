"""Tests for definition publishing, settings and telemetry sinks."""

import json

import pytest

from hrflow.config import EngineSettings
from hrflow.errors import DefinitionNotPublishedError, StructuralViolationError
from hrflow.ir.versioning import (
    DefinitionVersionManager,
    bump_semver,
    normalize_definition_id,
    parse_semver,
)
from hrflow.runtime.telemetry import TelemetryCollector


class TestSemver:
    def test_bump_parts(self):
        assert bump_semver("1.2.3") == "1.2.4"
        assert bump_semver("1.2.3", "minor") == "1.3.0"
        assert bump_semver("1.2.3", "major") == "2.0.0"

    def test_invalid_version(self):
        with pytest.raises(ValueError):
            parse_semver("v1")
        with pytest.raises(ValueError):
            bump_semver("1.0.0", "build")

    def test_normalize_definition_id(self):
        assert normalize_definition_id(" leave approval/v2 ") == "leave_approval_v2"
        assert normalize_definition_id("***") == "workflow"


class TestDefinitionVersionManager:
    def test_publish_assigns_increasing_versions(self, linear_structure):
        versions = DefinitionVersionManager()
        first, _ = versions.publish(linear_structure)
        second, _ = versions.publish(linear_structure, bump_part="minor")

        assert (first.version, second.version) == ("1.0.0", "1.1.0")
        assert versions.latest_version("linear") == "1.1.0"
        assert versions.next_version("linear") == "1.1.1"
        assert versions.get("linear", "1.0.0") == first

    def test_published_snapshot_is_frozen(self, linear_structure):
        versions = DefinitionVersionManager()
        record, _ = versions.publish(linear_structure)
        linear_structure.steps[1].name = "Changed later"
        assert versions.get("linear").structure.steps[1].name == "Review"
        assert record.structure.steps[1].name == "Review"

    def test_missing_versions(self, linear_structure):
        versions = DefinitionVersionManager()
        assert versions.latest_version("linear") is None
        assert versions.next_version("linear") == "1.0.0"
        with pytest.raises(DefinitionNotPublishedError):
            versions.get("linear")
        versions.publish(linear_structure)
        with pytest.raises(DefinitionNotPublishedError):
            versions.get("linear", "9.9.9")

    def test_invalid_structure_is_not_published(self, make_structure):
        versions = DefinitionVersionManager()
        structure = make_structure([{"id": "a"}], [], workflow_id="broken")
        with pytest.raises(StructuralViolationError) as excinfo:
            versions.publish(structure)
        assert {item.code for item in excinfo.value.violations} == {"no_initial_step", "no_final_step"}
        assert versions.list_versions("broken") == []

    def test_registry_is_mirrored_to_disk(self, tmp_path, linear_structure):
        DefinitionVersionManager(str(tmp_path)).publish(linear_structure)

        raw = json.loads((tmp_path / "linear.json").read_text(encoding="utf-8"))
        assert [row["version"] for row in raw] == ["1.0.0"]

        reloaded = DefinitionVersionManager(str(tmp_path))
        assert reloaded.get("linear").structure == linear_structure
        record, _ = reloaded.publish(linear_structure)
        assert record.version == "1.0.1"


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in (
            "HRFLOW_DATA_ROOT",
            "HRFLOW_TELEMETRY",
            "HRFLOW_DEFAULT_DUE_DAYS",
            "HRFLOW_REJECTING_ACTIONS",
            "HRFLOW_PROVISIONAL_PREFIX",
            "HRFLOW_LOG_LEVEL",
        ):
            monkeypatch.delenv(name, raising=False)
        settings = EngineSettings.from_env()
        assert settings.rejecting_actions == ["reject", "deny", "decline"]
        assert settings.telemetry_dir is None
        assert settings.default_due_days == 3

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HRFLOW_DATA_ROOT", str(tmp_path))
        monkeypatch.setenv("HRFLOW_TELEMETRY", "true")
        monkeypatch.setenv("HRFLOW_DEFAULT_DUE_DAYS", "")
        monkeypatch.setenv("HRFLOW_REJECTING_ACTIONS", "Reject, send_back")
        monkeypatch.setenv("HRFLOW_LOG_LEVEL", "debug")

        settings = EngineSettings.from_env()

        assert settings.default_due_days is None
        assert settings.rejecting_actions == ["reject", "send_back"]
        assert settings.telemetry_dir == tmp_path / "telemetry"
        assert settings.versions_dir == tmp_path / "versions"
        assert settings.log_level == "DEBUG"


class TestTelemetrySink:
    def test_events_are_appended_as_jsonl(self, tmp_path):
        collector = TelemetryCollector(str(tmp_path))
        collector.log("trace-1", "instance_started", step_id="a")
        collector.log("trace-1", "instance_completed")

        lines = (tmp_path / "trace-1.jsonl").read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["instance_started", "instance_completed"]
        summary = collector.summarize("trace-1")
        assert summary["event_count"] == 2
        assert summary["counts"] == {"instance_started": 1, "instance_completed": 1}
        assert [item.data for item in collector.events("trace-1", "instance_started")] == [{"step_id": "a"}]
