"""Runtime settings loaded from the record store at startup."""

import base64
import binascii
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from panelkit.database import Database
from panelkit.errors import RecordNotFoundError, StartupError

logger = logging.getLogger(__name__)

SYSTEM_STATUS_KEY = "SystemStatus"
SYSTEM_STATUS_FREE = "Free"

ONEDRIVE_ID_KEY = "OneDriveID"
ONEDRIVE_SC_KEY = "OneDriveSc"


@dataclass
class RuntimeSettings:
    """Settings resolved once at startup and handed to consumers."""

    onedrive_id: str = ""
    onedrive_sc: str = ""
    system_status: str = ""
    backup_dir: Path | None = None
    compose_dir: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, masking credentials."""
        data = asdict(self)
        for key in ("onedrive_id", "onedrive_sc"):
            data[key] = "***" if data[key] else ""
        for key in ("backup_dir", "compose_dir"):
            data[key] = str(data[key]) if data[key] else None
        return data


class SettingService:
    """Loads persisted credentials and resets the advisory system flag."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def load(self, settings: RuntimeSettings) -> RuntimeSettings:
        """Populate settings from the store.

        Credential problems are logged and leave the field empty. The
        SystemStatus reset is not optional: a failure raises StartupError.
        """
        settings.onedrive_id = self._load_encoded(ONEDRIVE_ID_KEY)
        settings.onedrive_sc = self._load_encoded(ONEDRIVE_SC_KEY)
        self.reset_system_status()
        settings.system_status = SYSTEM_STATUS_FREE
        return settings

    def _load_encoded(self, key: str) -> str:
        try:
            raw = self.db.get_setting(key)
        except Exception as e:
            logger.error(f"load onedrive info from setting failed, err: {e}")
            return ""

        try:
            return base64.b64decode(raw, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.error(f"decode setting {key} failed, err: {e}")
            return ""

    def reset_system_status(self) -> None:
        """Force SystemStatus to Free, creating the key if absent."""
        try:
            try:
                self.db.get_setting(SYSTEM_STATUS_KEY)
            except RecordNotFoundError:
                self.db.create_setting(SYSTEM_STATUS_KEY, SYSTEM_STATUS_FREE)
            self.db.update_setting(SYSTEM_STATUS_KEY, SYSTEM_STATUS_FREE)
        except Exception as e:
            raise StartupError(
                f"init service before start failed, err: {e}",
                suggestion="Check that the panelkit database is writable",
            ) from e
