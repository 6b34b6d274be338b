"""
Configuration CLI commands: show
"""
from lms.config.feature_flags import POLICY_FLAGS


class ConfigCommand:
    """Configuration CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        """Execute config command."""
        if args.config_action == "show":
            return self._show(args)
        else:
            print("Error: Unknown config action")
            return 1

    def _show(self, args) -> int:
        """Show effective settings and feature flags."""
        from lms.config.settings import LMSSettings
        from lms.services.progress_calculator import ProgressCalculatorFactory

        try:
            settings = LMSSettings.from_env()
        except ValueError as e:
            print(f"Error: invalid configuration: {e}")
            return 1

        flag_fields = {field: env_name for env_name, (field, _) in POLICY_FLAGS.items()}
        values = settings.to_dict()

        print("=== Configuration ===")
        for key, value in values.items():
            if key in flag_fields:
                continue
            if key == "database_url" and "@" in str(value):
                value = "***"
            print(f"  {key}: {value}")

        print("\n=== Feature Flags ===")
        for field, env_name in flag_fields.items():
            print(f"  {env_name}: {values[field]}")

        if args.check:
            print("\n=== Configuration Check ===")
            try:
                ProgressCalculatorFactory(
                    default_type=settings.progress_calculator,
                    lesson_weight=settings.lesson_weight,
                    assessment_weight=settings.assessment_weight,
                ).resolve(settings.progress_calculator)
            except ValueError as e:
                print(f"  ✗ {e}")
                return 1
            print("  ✓ progress calculator")
            print("  ✓ weights and thresholds")

        return 0
