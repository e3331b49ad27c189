"""Tests for the job queue CLI commands."""

import json
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from renote.cli import cli
from renote.cli.orchestrator import orchestrator_app
from renote.orchestrator.models import JobStatus
from renote.orchestrator.queue import JobQueue

runner = CliRunner()


@pytest.fixture
def db(tmp_path: Path) -> Path:
    return tmp_path / "queue.db"


def _job_ids(db: Path):
    queue = JobQueue(db)
    try:
        return [job.job_id for job in queue.query(newest_first=True)]
    finally:
        queue.close()


def _enqueue(db: Path, *args: str):
    return runner.invoke(orchestrator_app, ["enqueue", *args, "--db", str(db)])


def test_enqueue_and_list_jobs(db: Path) -> None:
    result = _enqueue(db, "sync-entity", "--entity", "page-1", "--owner", "user-1")
    assert result.exit_code == 0, result.output
    assert "Enqueued sync-entity job" in result.output

    result = runner.invoke(orchestrator_app, ["jobs", "--db", str(db), "--format", "json"])
    assert result.exit_code == 0, result.output
    jobs = json.loads(result.output)
    assert len(jobs) == 1
    assert jobs[0]["job_type"] == "sync-entity"
    assert jobs[0]["entity_id"] == "page-1"
    assert jobs[0]["owner_id"] == "user-1"
    assert jobs[0]["priority"] == 1
    assert jobs[0]["trigger_type"] == "user"


def test_enqueue_with_trigger_priority_and_payload(db: Path) -> None:
    result = _enqueue(
        db,
        "generate-derived-content",
        "--account", "acct-1",
        "--trigger", "bulk",
        "--priority", "4",
        "--payload", '{"priority_threshold": 50}',
    )
    assert result.exit_code == 0, result.output

    queue = JobQueue(db)
    try:
        job = queue.query()[0]
    finally:
        queue.close()
    assert job.priority == 4
    assert job.trigger_type.value == "bulk"
    assert job.payload == {"priority_threshold": 50, "account_id": "acct-1"}
    assert job.entity_type == "account"


@pytest.mark.parametrize(
    "args",
    [
        ["reindex"],
        ["cleanup", "--priority", "42"],
        ["cleanup", "--trigger", "cron"],
        ["cleanup", "--payload", "[1, 2]"],
        ["cleanup", "--payload", "{not json"],
    ],
)
def test_enqueue_rejects_invalid_input(db: Path, args) -> None:
    result = _enqueue(db, *args)

    assert result.exit_code == 1


def test_jobs_filters_and_empty_message(db: Path) -> None:
    _enqueue(db, "cleanup")
    _enqueue(db, "sync-entity", "--entity", "page-1")

    result = runner.invoke(
        orchestrator_app,
        ["jobs", "--db", str(db), "--job-type", "cleanup", "--format", "yaml"],
    )
    assert result.exit_code == 0, result.output
    jobs = yaml.safe_load(result.output)
    assert [job["job_type"] for job in jobs] == ["cleanup"]

    result = runner.invoke(orchestrator_app, ["jobs", "--db", str(db), "--status", "failed"])
    assert result.exit_code == 0
    assert "No jobs found matching criteria" in result.output


def test_jobs_rejects_unknown_status(db: Path) -> None:
    result = runner.invoke(orchestrator_app, ["jobs", "--db", str(db), "--status", "sleeping"])

    assert result.exit_code == 1
    assert "Valid statuses" in result.output


def test_jobs_table_output(db: Path) -> None:
    _enqueue(db, "cleanup")

    result = runner.invoke(orchestrator_app, ["jobs", "--db", str(db)])

    assert result.exit_code == 0
    assert "Jobs (1)" in result.output


def test_show_job(db: Path) -> None:
    _enqueue(db, "cleanup")
    job_id = _job_ids(db)[0]

    result = runner.invoke(orchestrator_app, ["show", job_id, "--db", str(db), "--format", "json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["job_id"] == job_id

    result = runner.invoke(orchestrator_app, ["show", "missing", "--db", str(db)])
    assert result.exit_code == 1
    assert "not found" in result.output


def test_cancel_job(db: Path) -> None:
    _enqueue(db, "cleanup")
    job_id = _job_ids(db)[0]

    result = runner.invoke(
        orchestrator_app, ["cancel", job_id, "--db", str(db), "--reason", "duplicate"]
    )
    assert result.exit_code == 0, result.output
    assert "cancelled" in result.output

    queue = JobQueue(db)
    try:
        job = queue.get(job_id)
    finally:
        queue.close()
    assert job.status == JobStatus.CANCELLED
    assert job.error == "duplicate"

    result = runner.invoke(orchestrator_app, ["cancel", job_id, "--db", str(db)])
    assert result.exit_code == 1
    assert "Cannot cancel job" in result.output

    result = runner.invoke(orchestrator_app, ["cancel", "missing", "--db", str(db)])
    assert result.exit_code == 1


def test_clear_pending_jobs(db: Path) -> None:
    for entity in ("page-1", "page-2", "page-3"):
        _enqueue(db, "sync-entity", "--entity", entity, "--owner", "user-1")
    _enqueue(db, "cleanup", "--owner", "user-2")

    result = runner.invoke(
        orchestrator_app,
        ["clear", "--db", str(db), "--owner", "user-1", "--entity", "page-1", "--entity", "page-2", "--yes"],
    )
    assert result.exit_code == 0, result.output
    assert "Cleared 2 pending jobs" in result.output

    result = runner.invoke(orchestrator_app, ["clear", "--db", str(db), "--yes"])
    assert "Cleared 2 pending jobs" in result.output


def test_clear_asks_for_confirmation(db: Path) -> None:
    _enqueue(db, "cleanup")

    result = runner.invoke(orchestrator_app, ["clear", "--db", str(db)], input="n\n")

    assert result.exit_code == 1
    queue = JobQueue(db)
    try:
        assert queue.pending_count() == 1
    finally:
        queue.close()


def test_status_panel_and_json(db: Path) -> None:
    _enqueue(db, "cleanup")

    result = runner.invoke(orchestrator_app, ["status", "--db", str(db)])
    assert result.exit_code == 0, result.output
    assert "Job Queue Status" in result.output

    result = runner.invoke(orchestrator_app, ["status", "--db", str(db), "--format", "json"])
    report = json.loads(result.output)
    assert report["queue"]["created"] == 1
    assert report["queue"]["pending"] == 1


def test_database_path_from_config_file(tmp_path: Path) -> None:
    db = tmp_path / "from-config.db"
    config_path = tmp_path / "orchestrator.yaml"
    config_path.write_text(yaml.safe_dump({"queue": {"database_path": str(db)}}))

    result = runner.invoke(orchestrator_app, ["enqueue", "cleanup", "--config", str(config_path)])

    assert result.exit_code == 0, result.output
    assert len(_job_ids(db)) == 1


def test_invalid_config_file_is_reported(tmp_path: Path) -> None:
    config_path = tmp_path / "orchestrator.yaml"
    config_path.write_text(yaml.safe_dump({"retry": {"max_retries": 99}}))

    result = runner.invoke(orchestrator_app, ["status", "--config", str(config_path)])

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output


def test_root_cli_mounts_orchestrator_commands(db: Path) -> None:
    result = runner.invoke(cli, ["orchestrator", "status", "--db", str(db), "--format", "json"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["database"]["exists"] is False
