"""
Assessment attempt CLI commands: regrade, show
"""
import asyncio

from lms.exceptions import LMSException


class AttemptCommand:
    """Assessment attempt CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        """Execute attempt command."""
        if args.attempt_action == "regrade":
            return self._run(self._regrade(args))
        elif args.attempt_action == "show":
            return self._run(self._show(args))
        else:
            print("Error: Unknown attempt action")
            return 1

    def _run(self, coro) -> int:
        try:
            return asyncio.run(coro)
        except LMSException as e:
            print(f"Error: {e.message}")
            return 1

    async def _regrade(self, args) -> int:
        if self.dry_run:
            print(f"[DRY RUN] Would re-run automatic grading for attempt {args.id}")
            return 0

        from lms.container import build_container
        from lms.database import AsyncSessionLocal, close_db

        container = build_container()
        try:
            async with AsyncSessionLocal() as db:
                attempt = await container.attempts.regrade_attempt(db, args.id)
        finally:
            await close_db()

        print(f"Attempt {attempt.id} regraded")
        print(f"  Status:     {attempt.status.value}")
        print(f"  Score:      {attempt.score}/{attempt.max_score} ({attempt.percentage}%)")
        print(f"  Passed:     {attempt.passed}")
        return 0

    async def _show(self, args) -> int:
        from lms.database import AsyncSessionLocal, close_db
        from lms.services.attempt_service import AttemptService

        try:
            async with AsyncSessionLocal() as db:
                attempt = await AttemptService.load_attempt(db, args.id, lock=False)
        finally:
            await close_db()

        print(f"=== Attempt {attempt.id} ===")
        print(f"Assessment: {attempt.assessment_id}")
        print(f"User:       {attempt.user_id}")
        print(f"Number:     {attempt.attempt_number}")
        print(f"Status:     {attempt.status.value}")
        print(f"Score:      {attempt.score}/{attempt.max_score} ({attempt.percentage}%)")
        print(f"Passed:     {attempt.passed}")
        print("\n--- Answers ---")
        for answer in sorted(attempt.answers, key=lambda a: a.question_id):
            state = "pending" if not answer.is_graded else f"{answer.score} pts"
            print(f"  Q{answer.question_id}: {state}")
        return 0
