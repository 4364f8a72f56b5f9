import tempfile
import unittest
from pathlib import Path

import aiosqlite

from mission_control.db.migrations import MigrationChecksumError, MigrationError, run_migrations


class SqliteMigrationRunnerTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.migrations_dir = Path(tmpdir.name)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def _tables(self) -> set[str]:
        async with self.db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cur:
            return {row[0] for row in await cur.fetchall()}

    async def _recorded(self) -> list[str]:
        async with self.db.execute("SELECT name FROM _migrations ORDER BY name") as cur:
            return [row[0] for row in await cur.fetchall()]

    async def test_packaged_schema_applies_then_skips(self) -> None:
        first = await run_migrations(self.db)
        second = await run_migrations(self.db)

        self.assertEqual(first.applied, ["0001_init.sql", "0002_offset_fingerprint.sql"])
        self.assertEqual(second.applied, [])
        self.assertEqual(second.skipped, ["0001_init.sql", "0002_offset_fingerprint.sql"])
        tables = await self._tables()
        for table in (
            "source_snapshots",
            "sessions",
            "agents",
            "cron_jobs",
            "cron_runs",
            "memory_docs",
            "health_samples",
            "events",
            "collector_state",
            "session_stream_offsets",
            "session_events",
            "session_messages",
            "tool_spans",
        ):
            self.assertIn(table, tables)

    async def test_files_apply_in_lexical_order(self) -> None:
        (self.migrations_dir / "0002_index.sql").write_text("CREATE INDEX idx_a_name ON a(name);\n", encoding="utf-8")
        (self.migrations_dir / "0001_table.sql").write_text("CREATE TABLE a (id INTEGER, name TEXT);\n", encoding="utf-8")

        result = await run_migrations(self.db, self.migrations_dir)

        self.assertEqual(result.applied, ["0001_table.sql", "0002_index.sql"])
        self.assertEqual(await self._recorded(), ["0001_table.sql", "0002_index.sql"])

    async def test_edited_migration_fails_with_checksum_mismatch(self) -> None:
        path = self.migrations_dir / "0001_table.sql"
        path.write_text("CREATE TABLE a (id INTEGER);\n", encoding="utf-8")
        await run_migrations(self.db, self.migrations_dir)

        path.write_text("CREATE TABLE a (id INTEGER, extra TEXT);\n", encoding="utf-8")
        with self.assertRaises(MigrationChecksumError) as ctx:
            await run_migrations(self.db, self.migrations_dir)
        self.assertIn("checksum mismatch", str(ctx.exception))
        self.assertEqual(ctx.exception.name, "0001_table.sql")

    async def test_failing_migration_rolls_back_entirely(self) -> None:
        (self.migrations_dir / "0001_ok.sql").write_text("CREATE TABLE a (id INTEGER);\n", encoding="utf-8")
        (self.migrations_dir / "0002_broken.sql").write_text(
            "CREATE TABLE b (id INTEGER);\nINSERT INTO missing_table VALUES (1);\n", encoding="utf-8"
        )

        with self.assertRaises(MigrationError):
            await run_migrations(self.db, self.migrations_dir)

        tables = await self._tables()
        self.assertIn("a", tables)
        self.assertNotIn("b", tables)
        self.assertEqual(await self._recorded(), ["0001_ok.sql"])


if __name__ == "__main__":
    unittest.main()
