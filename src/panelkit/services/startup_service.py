"""Startup reconciliation for the panel daemon.

Runs once, before the daemon accepts requests, to bring persisted state
back to something consistent after an unclean shutdown.
"""

import json
import logging
from pathlib import Path
from typing import Any

from panelkit.config import PanelConfig, get_config
from panelkit.database import Database, get_db
from panelkit.errors import PanelKitError
from panelkit.services.directory_service import DirectoryService
from panelkit.services.setting_service import RuntimeSettings, SettingService
from panelkit.services.sweep_service import CronJobSweeper, SnapshotSweeper

logger = logging.getLogger(__name__)

LOCAL_BACKUP_TYPE = "LOCAL"


class StartupService:
    """Orchestrates settings load, status sweeps and directory setup."""

    def __init__(
        self,
        db: Database | None = None,
        config: PanelConfig | None = None,
        directories: DirectoryService | None = None,
    ) -> None:
        self.config = config or get_config()
        self.db = db or get_db()
        self.directories = directories or DirectoryService()
        self.settings_service = SettingService(self.db)
        self.cronjob_sweeper = CronJobSweeper(self.db)
        self.snapshot_sweeper = SnapshotSweeper(self.db)
        self.report: dict[str, Any] = {}

    def run(self) -> RuntimeSettings:
        """Reconcile persisted state and return the resolved runtime settings.

        Raises:
            StartupError: If the SystemStatus flag could not be reset.
        """
        settings = RuntimeSettings()
        self.settings_service.load(settings)

        self.report = {
            "cronjob_records": self.cronjob_sweeper.sweep(),
            "snapshots": self.snapshot_sweeper.sweep().to_dict(),
        }

        settings.backup_dir = self._load_local_dir()
        settings.compose_dir = self._init_compose_dir()

        logger.info("Startup reconciliation completed")
        return settings

    def _load_local_dir(self) -> Path | None:
        """Resolve and create the local backup root."""
        try:
            account = self.db.get_backup_account(LOCAL_BACKUP_TYPE)
        except PanelKitError as e:
            logger.error(e.message)
            return None
        except Exception as e:
            logger.error(f"load backup account `{LOCAL_BACKUP_TYPE}` failed, err: {e}")
            return None

        try:
            var_map = json.loads(account["vars"])
        except (TypeError, json.JSONDecodeError) as e:
            logger.error(f"json unmarshal backup.Vars: {account['vars']} failed, err: {e}")
            return None

        if not isinstance(var_map, dict) or "dir" not in var_map:
            logger.error("load local backup dir failed")
            return None

        base_dir = var_map["dir"]
        if not isinstance(base_dir, str):
            logger.error(f"error type dir: {type(base_dir).__name__}")
            return None

        if not self.directories.ensure(base_dir):
            return None
        return Path(base_dir)

    def _init_compose_dir(self) -> Path | None:
        compose_dir = self.config.compose_dir
        if not self.directories.ensure(compose_dir):
            return None
        return compose_dir
