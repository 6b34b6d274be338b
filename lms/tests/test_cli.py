"""
CLI Test Suite

Argument parsing and the commands that run without a database.
"""
import pytest
from decimal import Decimal

from lms.cli import main, create_parser
from lms.cli.attempt_commands import AttemptCommand
from lms.cli.config_commands import ConfigCommand
from lms.cli.db_commands import DbCommand
from lms.cli.progress_commands import ProgressCommand
from lms.schemas.progress import AssessmentStats, CourseProgress


# =============================================================================
# CLI Parser Tests
# =============================================================================

class TestCLIParser:
    """Test CLI argument parsing."""

    def test_parser_creation(self):
        """Test that parser can be created."""
        parser = create_parser()
        assert parser is not None

    def test_db_init_parsing(self):
        parser = create_parser()
        args = parser.parse_args(["db", "init"])

        assert args.command == "db"
        assert args.db_action == "init"

    def test_progress_recalculate_parsing(self):
        """Test progress recalculate argument parsing."""
        parser = create_parser()
        args = parser.parse_args(["progress", "recalculate", "--course-id", "7", "--include-completed"])

        assert args.command == "progress"
        assert args.progress_action == "recalculate"
        assert args.course_id == 7
        assert args.enrollment_id is None
        assert args.include_completed is True

    def test_recalculate_targets_are_exclusive(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["progress", "recalculate", "--course-id", "1", "--enrollment-id", "2"])

    def test_attempt_regrade_parsing(self):
        parser = create_parser()
        args = parser.parse_args(["attempt", "regrade", "--id", "118"])

        assert args.command == "attempt"
        assert args.attempt_action == "regrade"
        assert args.id == 118

    def test_attempt_regrade_requires_id(self):
        parser = create_parser()
        with pytest.raises(SystemExit):
            parser.parse_args(["attempt", "regrade"])

    def test_config_show_parsing(self):
        parser = create_parser()
        args = parser.parse_args(["config", "show", "--check"])

        assert args.config_action == "show"
        assert args.check is True

    def test_dry_run_flag(self):
        """Test dry run flag parsing."""
        parser = create_parser()
        args = parser.parse_args(["--dry-run", "progress", "show", "--enrollment-id", "4"])

        assert args.dry_run is True
        assert args.enrollment_id == 4


# =============================================================================
# Command Tests
# =============================================================================

class TestCommands:

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    def test_unknown_actions(self, capsys):
        """Test a group without an action fails cleanly."""
        assert main(["db"]) == 1
        assert main(["progress"]) == 1
        assert main(["attempt"]) == 1
        assert main(["config"]) == 1
        assert "Unknown" in capsys.readouterr().out

    def test_db_init_dry_run(self, capsys):
        assert main(["--dry-run", "db", "init"]) == 0

        out = capsys.readouterr().out
        assert "[DRY RUN]" in out
        assert "enrollments" in out
        assert "domain_event_log" in out

    def test_attempt_regrade_dry_run(self, capsys):
        assert main(["--dry-run", "attempt", "regrade", "--id", "5"]) == 0
        assert "attempt 5" in capsys.readouterr().out

    def test_config_show(self, capsys, monkeypatch):
        monkeypatch.delenv("LMS_PROGRESS_CALCULATOR", raising=False)
        monkeypatch.setenv("DATABASE_URL", "postgresql+asyncpg://lms:secret@db/lms")

        assert main(["config", "show", "--check"]) == 0

        out = capsys.readouterr().out
        assert "progress_calculator: lesson_based" in out
        assert "LMS_AUTO_COMPLETE_ENROLLMENT" in out
        assert "secret" not in out

    def test_config_show_flags_follow_environment(self, capsys, monkeypatch):
        """Test flags are read when the command runs, the same way services get them."""
        monkeypatch.setenv("LMS_ENFORCE_INVITATION_EXPIRY", "true")
        monkeypatch.setenv("LMS_AUTO_COMPLETE_ENROLLMENT", "false")

        assert main(["config", "show"]) == 0

        out = capsys.readouterr().out
        assert "LMS_ENFORCE_INVITATION_EXPIRY: True" in out
        assert "LMS_AUTO_COMPLETE_ENROLLMENT: False" in out
        assert "enforce_invitation_expiry" not in out

    def test_config_check_rejects_unknown_calculator(self, capsys, monkeypatch):
        monkeypatch.setenv("LMS_PROGRESS_CALCULATOR", "time_based")

        assert main(["config", "show", "--check"]) == 1
        assert "Unknown progress calculator" in capsys.readouterr().out

    def test_config_rejects_bad_weights(self, capsys, monkeypatch):
        monkeypatch.setenv("LMS_LESSON_WEIGHT", "80")
        monkeypatch.setenv("LMS_ASSESSMENT_WEIGHT", "30")

        assert main(["config", "show"]) == 1
        assert "invalid configuration" in capsys.readouterr().out

    def test_command_handlers_accept_dry_run(self):
        for command in (DbCommand, ProgressCommand, AttemptCommand, ConfigCommand):
            assert command(dry_run=True).dry_run is True

    def test_progress_report_labels_unpassed_assessments(self, capsys):
        report = CourseProgress(
            enrollment_id=4,
            strategy="assessment_inclusive",
            percentage=Decimal("70.0"),
            is_complete=False,
            lessons_total=1,
            lessons_completed=1,
            assessments=AssessmentStats(total=2, passed=1, pending=1, required_total=1, required_passed=0),
        )

        ProgressCommand._print_report(report)

        out = capsys.readouterr().out
        assert "1/2 passed, 1 not yet passed" in out
        assert "awaiting grading" not in out
        assert "Required:   0/1 passed" in out
