"""
Database CLI commands: init
"""
import asyncio


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        """Execute database command."""
        if args.db_action == "init":
            return self._init(args)
        else:
            print("Error: Unknown db action")
            return 1

    def _init(self, args) -> int:
        """Create every table that does not exist yet."""
        from lms.orm.base import Base
        import lms.orm  # noqa: F401

        tables = sorted(Base.metadata.tables)
        if self.dry_run:
            print(f"[DRY RUN] Would create {len(tables)} tables if missing:")
            for name in tables:
                print(f"  - {name}")
            return 0

        try:
            asyncio.run(self._async_init())
        except Exception as e:
            print(f"Error: {e}")
            return 1

        print(f"Database ready ({len(tables)} tables)")
        return 0

    async def _async_init(self) -> None:
        from lms.database import init_db, close_db

        try:
            await init_db()
        finally:
            await close_db()
