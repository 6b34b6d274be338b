"""
Course progress CLI commands: recalculate, show
"""
import asyncio
from typing import List

from lms.exceptions import LMSException
from lms.schemas.progress import CourseProgress


class ProgressCommand:
    """Course progress CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        """Execute progress command."""
        if args.progress_action == "recalculate":
            return self._run(self._recalculate(args))
        elif args.progress_action == "show":
            return self._run(self._show(args))
        else:
            print("Error: Unknown progress action")
            return 1

    def _run(self, coro) -> int:
        try:
            return asyncio.run(coro)
        except LMSException as e:
            print(f"Error: {e.message}")
            return 1

    async def _recalculate(self, args) -> int:
        from sqlalchemy import select
        from lms.container import build_container
        from lms.database import AsyncSessionLocal, close_db
        from lms.orm.enrollment import Enrollment, EnrollmentStatus

        container = build_container()
        try:
            async with AsyncSessionLocal() as db:
                if self.dry_run:
                    if args.enrollment_id is not None:
                        enrollment_ids = [args.enrollment_id]
                    else:
                        statuses = [EnrollmentStatus.ACTIVE]
                        if args.include_completed:
                            statuses.append(EnrollmentStatus.COMPLETED)
                        query = select(Enrollment.id).where(Enrollment.status.in_(statuses))
                        if args.course_id is not None:
                            query = query.where(Enrollment.course_id == args.course_id)
                        enrollment_ids = list((await db.execute(query.order_by(Enrollment.id))).scalars().all())

                    print(f"[DRY RUN] Would recalculate {len(enrollment_ids)} enrollments:")
                    reports = [
                        await container.course_progress.progress_report(db, enrollment_id)
                        for enrollment_id in enrollment_ids
                    ]
                    self._print_table(reports)
                    return 0

                if args.enrollment_id is not None:
                    results = [
                        await container.course_progress.recalculate_course_progress(db, args.enrollment_id)
                    ]
                else:
                    results = await container.course_progress.recalculate_for_course(
                        db, course_id=args.course_id, include_completed=args.include_completed
                    )
        finally:
            await close_db()

        self._print_table(results)
        completed = sum(1 for result in results if result.newly_completed)
        print(f"\nRecalculated {len(results)} enrollments ({completed} newly completed)")
        return 0

    async def _show(self, args) -> int:
        from lms.container import build_container
        from lms.database import AsyncSessionLocal, close_db

        container = build_container()
        try:
            async with AsyncSessionLocal() as db:
                report = await container.course_progress.progress_report(db, args.enrollment_id)
        finally:
            await close_db()

        self._print_report(report)
        return 0

    @staticmethod
    def _print_report(report: CourseProgress) -> None:
        print(f"=== Enrollment {report.enrollment_id} ===")
        print(f"Strategy:   {report.strategy}")
        print(f"Progress:   {report.percentage}%")
        print(f"Lessons:    {report.lessons_completed}/{report.lessons_total}")
        if report.assessments is not None:
            stats = report.assessments
            print(f"Assessments: {stats.passed}/{stats.total} passed, {stats.pending} not yet passed")
            print(f"Required:   {stats.required_passed}/{stats.required_total} passed")
        print(f"Complete:   {'yes' if report.is_complete else 'no'}")

    @staticmethod
    def _print_table(results: List[CourseProgress]) -> None:
        print(f"{'Enrollment':>10}  {'Strategy':<22}  {'Progress':>8}  Complete")
        for result in results:
            print(
                f"{result.enrollment_id:>10}  {result.strategy:<22}  "
                f"{str(result.percentage):>8}  {'yes' if result.is_complete else 'no'}"
            )
