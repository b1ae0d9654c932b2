"""Docker insecure-registry trust list management.

Plain-HTTP registries have to be listed under ``insecure-registries`` in
the Docker daemon config before the daemon will talk to them. This module
rewrites that list, leaving every other key of the document alone, and
restarts Docker so the change takes effect.
"""

import json
import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from panelkit.config import PanelConfig, get_config
from panelkit.errors import (
    ConfigIOError,
    ConfigJSONError,
    ConfigValidationError,
    PanelKitError,
    StructTransformError,
)
from panelkit.services.docker_service import RestartVerifier

logger = logging.getLogger(__name__)

INSECURE_REGISTRIES_KEY = "insecure-registries"
DAEMON_JSON_MODE = 0o640


class RegistryMode(Enum):
    """How a trust list change is applied."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class DaemonDocument:
    """Typed view of daemon.json.

    ``insecure_registries`` is the only key interpreted here; everything
    else is carried through ``extra`` untouched.
    """

    insecure_registries: set[str] = field(default_factory=set)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DaemonDocument":
        extra = dict(data)
        raw = extra.pop(INSECURE_REGISTRIES_KEY, None)
        registries: set[str] = set()
        if isinstance(raw, list):
            registries = {item for item in raw if isinstance(item, str)}
        elif raw is not None:
            logger.warning(f"Ignoring non-list {INSECURE_REGISTRIES_KEY} value: {raw!r}")
        return cls(insecure_registries=registries, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.extra)
        if self.insecure_registries:
            data[INSECURE_REGISTRIES_KEY] = sorted(self.insecure_registries)
        return data


class RegistryConfigService:
    """Read-modify-write of the insecure-registries list in daemon.json.

    Concurrent writers are not serialized; callers are expected to run one
    change at a time.
    """

    def __init__(self, daemon_json_path: Path | None = None) -> None:
        self.path = Path(daemon_json_path or get_config().daemon_json_path)

    def read(self) -> DaemonDocument:
        """Load the document, creating an empty one if it does not exist."""
        self._create_if_missing()
        try:
            content = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigIOError(f"Failed to read {self.path}: {e}") from e

        if not content.strip():
            return DaemonDocument()

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigJSONError(
                f"Malformed JSON in {self.path}: {e}",
                suggestion=f"Fix or remove {self.path} and retry",
            ) from e

        if not isinstance(data, dict):
            raise ConfigJSONError(f"{self.path} must contain a JSON object")
        return DaemonDocument.from_dict(data)

    def write(self, document: DaemonDocument) -> None:
        """Replace the document, tab-indented, with mode 0640.

        The new content goes to a sibling temp file that dockerd validates
        before it is renamed over the live document.
        """
        content = json.dumps(document.to_dict(), indent="\t", ensure_ascii=False)
        temp_file = self.path.with_name(f"{self.path.name}.tmp")
        try:
            temp_file.write_text(content, encoding="utf-8")
            os.chmod(temp_file, DAEMON_JSON_MODE)
            self.validate(temp_file)
            os.replace(temp_file, self.path)
        except OSError as e:
            raise ConfigIOError(f"Failed to write {self.path}: {e}") from e
        finally:
            temp_file.unlink(missing_ok=True)

    def validate(self, path: Path | None = None) -> None:
        """Run dockerd's own config check against path, if dockerd is installed."""
        path = path or self.path
        dockerd = shutil.which("dockerd")
        if dockerd is None:
            logger.debug("dockerd not found, skipping config validation")
            return

        try:
            result = subprocess.run(
                [dockerd, "--validate", "--config-file", str(path)],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (subprocess.SubprocessError, OSError) as e:
            logger.warning(f"dockerd config validation could not run: {e}")
            return

        if result.returncode != 0:
            raise ConfigValidationError(
                f"Docker rejected the new {self.path}: "
                f"{result.stderr.strip() or result.stdout.strip()}",
                suggestion=f"{self.path} was left unchanged",
            )

    def apply(self, new_host: str, old_host: str, mode: RegistryMode) -> DaemonDocument:
        """Apply a trust list change and persist it.

        Returns:
            The document as written.
        """
        document = self.read()
        registries = document.insecure_registries

        if mode is RegistryMode.CREATE:
            registries.add(new_host)
        elif mode is RegistryMode.UPDATE:
            registries.discard(old_host)
            registries.add(new_host)
        elif mode is RegistryMode.DELETE:
            registries.discard(old_host)

        self.write(document)
        logger.info(
            f"Applied {mode.value} to {INSECURE_REGISTRIES_KEY} in {self.path} "
            f"({len(registries)} host(s))"
        )
        return document

    def _create_if_missing(self) -> None:
        if self.path.exists():
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text("{}", encoding="utf-8")
            os.chmod(self.path, DAEMON_JSON_MODE)
        except OSError as e:
            raise ConfigIOError(f"Failed to create {self.path}: {e}") from e


@dataclass
class RegistryEndpoint:
    """Transfer form of an image repository entry."""

    name: str
    download_url: str
    protocol: str

    @property
    def is_http(self) -> bool:
        return self.protocol == "http"

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "RegistryEndpoint":
        """Create from a repository record. Raises StructTransformError on bad shape."""
        try:
            endpoint = cls(
                name=str(record.get("name", "")),
                download_url=record["download_url"],
                protocol=record["protocol"],
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise StructTransformError(f"Invalid image repository record: {e!r}") from e

        if not isinstance(endpoint.download_url, str) or not endpoint.download_url:
            raise StructTransformError("Image repository record has no download_url")
        if endpoint.protocol not in ("http", "https"):
            raise StructTransformError(
                f"Unsupported protocol '{endpoint.protocol}'",
                suggestion="Protocol must be 'http' or 'https'",
            )
        return endpoint

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "download_url": self.download_url,
            "protocol": self.protocol,
        }


class RegistryTrustService:
    """Keeps daemon.json in step with image repository protocol changes."""

    def __init__(
        self,
        config: PanelConfig | None = None,
        registry_config: RegistryConfigService | None = None,
        verifier: RestartVerifier | None = None,
    ) -> None:
        self.config = config or get_config()
        self.registry_config = registry_config or RegistryConfigService(
            self.config.daemon_json_path
        )
        self.verifier = verifier or RestartVerifier()

    def list_hosts(self) -> list[str]:
        if not self.registry_config.path.exists():
            return []
        return sorted(self.registry_config.read().insecure_registries)

    def create(self, endpoint: RegistryEndpoint) -> bool:
        """Trust a new plain-HTTP registry. Returns True if Docker was restarted."""
        if not endpoint.is_http:
            return False
        self._apply(endpoint.download_url, "", RegistryMode.CREATE)
        self._reload()
        return True

    def update(self, previous: RegistryEndpoint, requested: RegistryEndpoint) -> bool:
        """Follow a repository's protocol or URL change. Returns True if Docker was restarted."""
        if previous.is_http and not requested.is_http:
            self._apply("", previous.download_url, RegistryMode.DELETE)
        elif previous.is_http and requested.is_http:
            self._apply(requested.download_url, previous.download_url, RegistryMode.UPDATE)
        elif requested.is_http:
            self._apply(requested.download_url, "", RegistryMode.CREATE)
        else:
            return False

        self._reload()
        return True

    def delete(self, endpoint: RegistryEndpoint) -> bool:
        """Stop trusting a plain-HTTP registry. Returns True if Docker was restarted."""
        if not endpoint.is_http:
            return False
        self._apply("", endpoint.download_url, RegistryMode.DELETE)
        self._reload()
        return True

    def _apply(self, new_host: str, old_host: str, mode: RegistryMode) -> None:
        try:
            self.registry_config.apply(new_host, old_host, mode)
        except PanelKitError as e:
            if mode is RegistryMode.CREATE:
                context = f"create registry {new_host} failed"
            elif mode is RegistryMode.UPDATE:
                context = f"update registry {old_host} => {new_host} failed"
            else:
                context = f"delete registry {old_host} failed"
            raise type(e)(f"{context}, err: {e.message}", suggestion=e.suggestion) from e

    def _reload(self) -> None:
        self.verifier.restart_and_verify(self.config.docker_service)
