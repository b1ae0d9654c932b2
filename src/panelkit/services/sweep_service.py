"""Crash-recovery sweeps over job and snapshot status records.

After an unclean restart, records may still claim an operation is in
progress. These sweeps move such records to terminal states so nothing
waits forever on work that died with the previous process.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from panelkit.database import Database

logger = logging.getLogger(__name__)

STATUS_WAITING = "Waiting"
STATUS_RUNNING = "Running"
STATUS_UPLOADING = "Uploading"
STATUS_SUCCESS = "Success"
STATUS_FAILED = "Failed"
STATUS_ON_SAVE_DATA = "OnSaveData"

INTERRUPTED_MESSAGE = "the task was interrupted due to the restart of the 1panel service"


@dataclass(frozen=True)
class StatusRule:
    """A bulk transition on one snapshot status column."""

    column: str
    match: str
    terminal: str
    message_column: str | None = None


@dataclass(frozen=True)
class PhaseRule:
    """A per-record transition on one snapshot phase column."""

    column: str
    transient: str
    terminal: str = STATUS_FAILED


# OnSaveData means the capture finished and only the save step was cut
# short; it is treated as complete.
STATUS_RULES: tuple[StatusRule, ...] = (
    StatusRule("status", STATUS_ON_SAVE_DATA, STATUS_SUCCESS),
    StatusRule("status", STATUS_WAITING, STATUS_FAILED, "message"),
    StatusRule("recover_status", STATUS_WAITING, STATUS_FAILED, "recover_message"),
    StatusRule("rollback_status", STATUS_WAITING, STATUS_FAILED, "rollback_message"),
)

PHASE_RULES: tuple[PhaseRule, ...] = (
    PhaseRule("panel", STATUS_RUNNING),
    PhaseRule("panel_info", STATUS_RUNNING),
    PhaseRule("daemon_json", STATUS_RUNNING),
    PhaseRule("app_data", STATUS_RUNNING),
    PhaseRule("panel_data", STATUS_RUNNING),
    PhaseRule("backup_data", STATUS_RUNNING),
    PhaseRule("compress", STATUS_RUNNING),
    PhaseRule("upload", STATUS_UPLOADING),
)


@dataclass
class SweepResult:
    """Counts of records touched by a snapshot sweep."""

    status_updates: dict[str, int] = field(default_factory=dict)
    phase_updates: int = 0
    errors: int = 0

    @property
    def total(self) -> int:
        return sum(self.status_updates.values()) + self.phase_updates

    def to_dict(self) -> dict[str, Any]:
        return {
            "status_updates": dict(self.status_updates),
            "phase_updates": self.phase_updates,
            "errors": self.errors,
            "total": self.total,
        }


def phase_updates_for(record: dict[str, Any], rules: tuple[PhaseRule, ...] = PHASE_RULES) -> dict[str, str]:
    """Build the update payload for one snapshot.

    Only columns currently holding their transient marker are included.
    """
    updates: dict[str, str] = {}
    for rule in rules:
        if record.get(rule.column) == rule.transient:
            updates[rule.column] = rule.terminal
    return updates


class CronJobSweeper:
    """Fails cron job records left waiting by a previous process."""

    def __init__(self, db: Database, message: str = INTERRUPTED_MESSAGE) -> None:
        self.db = db
        self.message = message

    def sweep(self) -> int:
        """Move every Waiting job record to Failed.

        Running records are left alone. Returns the number of records changed.
        """
        try:
            count = self.db.fail_job_records(STATUS_WAITING, STATUS_FAILED, self.message)
        except Exception as e:
            logger.error(f"sweep waiting cronjob records failed, err: {e}")
            return 0

        if count:
            logger.info(f"Marked {count} interrupted cronjob record(s) as failed")
        return count


class SnapshotSweeper:
    """Fails snapshot records and phases left in flight by a previous process."""

    def __init__(
        self,
        db: Database,
        message: str = INTERRUPTED_MESSAGE,
        status_rules: tuple[StatusRule, ...] = STATUS_RULES,
        phase_rules: tuple[PhaseRule, ...] = PHASE_RULES,
    ) -> None:
        self.db = db
        self.message = message
        self.status_rules = status_rules
        self.phase_rules = phase_rules

    def sweep(self) -> SweepResult:
        """Run the status pass, then the phase pass."""
        result = SweepResult()
        self._sweep_statuses(result)
        self._sweep_phases(result)
        if result.total:
            logger.info(f"Recovered {result.total} interrupted snapshot status(es)")
        return result

    def _sweep_statuses(self, result: SweepResult) -> None:
        for rule in self.status_rules:
            updates = {rule.column: rule.terminal}
            if rule.message_column:
                updates[rule.message_column] = self.message

            key = f"{rule.column}:{rule.match}"
            try:
                result.status_updates[key] = self.db.bulk_update_snapshots(
                    rule.column, rule.match, updates
                )
            except Exception as e:
                result.errors += 1
                logger.error(f"sweep snapshot {rule.column} = {rule.match} failed, err: {e}")

    def _sweep_phases(self, result: SweepResult) -> None:
        try:
            records = self.db.list_snapshot_statuses()
        except Exception as e:
            result.errors += 1
            logger.error(f"load snapshot status list failed, err: {e}")
            return

        for record in records:
            updates = phase_updates_for(record, self.phase_rules)
            if not updates:
                continue
            try:
                self.db.update_snapshot(record["id"], updates)
            except Exception as e:
                result.errors += 1
                logger.error(f"update status of snapshot {record['id']} failed, err: {e}")
                continue
            result.phase_updates += 1
