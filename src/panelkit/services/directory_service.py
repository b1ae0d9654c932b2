"""Directory provisioning for panelkit."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DIRECTORY_MODE = 0o755


class DirectoryService:
    """Creates the directories the daemon expects to exist."""

    def __init__(self, mode: int = DIRECTORY_MODE) -> None:
        self.mode = mode

    def ensure(self, path: str | Path) -> bool:
        """Create path and its parents if missing.

        Failures are logged rather than raised so that callers on the
        startup path can carry on.

        Returns:
            True if the directory exists afterwards.
        """
        target = Path(path)
        if target.is_dir():
            return True

        try:
            target.mkdir(mode=self.mode, parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"mkdir {target} failed, err: {e}")
            return False

        logger.debug(f"Created directory {target}")
        return True
