#!/usr/bin/env python3
"""
Backfill task positions.

For each (workspace, status) bucket, orders tasks by creation time and writes
dense positions 0..n-1, rewriting legacy status spellings on the way. Run
once after adding the ``position`` column to an older database, or to flatten
ties left by concurrent creates.

Usage:
    taskboard-migrate-positions --workspace-id=ws-123
    taskboard-migrate-positions --all --db ./taskboard.db
"""
import logging
import sys
from dataclasses import dataclass
from typing import List, Optional

from .config import Config
from .errors import StoreError
from .schema import STATUS_ORDER
from .store import TaskBoardStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    workspaces: int = 0
    updated: int = 0
    failed: int = 0


def migrate_workspace(store: TaskBoardStore, workspace_id: str,
                      report: Optional[MigrationReport] = None) -> MigrationReport:
    report = report or MigrationReport()
    report.workspaces += 1
    logger.info(f"Migrating workspace {workspace_id}")
    for status in STATUS_ORDER:
        tasks = store.list_tasks(workspace_id, status=status, order="asc")
        logger.info(f"  {len(tasks)} tasks in status {status}")
        for index, task in enumerate(tasks):
            try:
                store.update_task(task.id, {"status": status, "position": index})
                report.updated += 1
            except StoreError as e:
                report.failed += 1
                logger.warning(f"Failed to update {task.id}: {e}")
    return report


def migrate(store: TaskBoardStore, workspace_ids: List[str]) -> MigrationReport:
    report = MigrationReport()
    for workspace_id in workspace_ids:
        migrate_workspace(store, workspace_id, report)
    return report


def main(argv=None) -> int:
    import argparse

    parser = argparse.ArgumentParser(description="Backfill dense task positions per status column")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--workspace-id", help="Migrate a single workspace")
    target.add_argument("--all", action="store_true", help="Migrate every workspace")
    parser.add_argument("--db", help="Path to taskboard.db (overrides TASKBOARD_DB)")
    parser.add_argument("--config", help="Path to taskboard.yaml")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [migrate] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    config = Config.load(args.config)
    store = TaskBoardStore(args.db or config.db_path, migrate=True)
    workspace_ids = [args.workspace_id] if args.workspace_id else store.list_workspace_ids()

    report = migrate(store, workspace_ids)
    logger.info(
        f"Done: {report.workspaces} workspaces, {report.updated} tasks updated, {report.failed} failed"
    )
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
