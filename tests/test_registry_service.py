"""Tests for daemon.json trust list management."""

import errno
import json
import stat
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from panelkit.config import PanelConfig
from panelkit.errors import (
    ConfigIOError,
    ConfigJSONError,
    ConfigValidationError,
    ServiceTimeoutError,
    StructTransformError,
)
from panelkit.services.registry_service import (
    DaemonDocument,
    RegistryConfigService,
    RegistryEndpoint,
    RegistryMode,
    RegistryTrustService,
)


@pytest.fixture(autouse=True)
def no_dockerd():
    """Skip dockerd validation unless a test provides one."""
    with patch("panelkit.services.registry_service.shutil.which", return_value=None):
        yield


@pytest.fixture
def daemon_json(tmp_path):
    """Path to a daemon.json inside a temporary docker directory."""
    return tmp_path / "docker" / "daemon.json"


@pytest.fixture
def registry_config(daemon_json):
    return RegistryConfigService(daemon_json_path=daemon_json)


def _write(path, data):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))


def _read(path):
    return json.loads(path.read_text())


class TestDaemonDocument:
    """Tests for the typed daemon.json model."""

    def test_unknown_keys_pass_through(self):
        """Keys other than insecure-registries survive a round trip."""
        data = {
            "log-driver": "json-file",
            "log-opts": {"max-size": "10m"},
            "insecure-registries": ["b.com", "a.com"],
        }

        document = DaemonDocument.from_dict(data)

        assert document.insecure_registries == {"a.com", "b.com"}
        assert document.extra == {"log-driver": "json-file", "log-opts": {"max-size": "10m"}}
        assert document.to_dict() == {
            "log-driver": "json-file",
            "log-opts": {"max-size": "10m"},
            "insecure-registries": ["a.com", "b.com"],
        }

    def test_foreign_value_types_ignored(self):
        """A non-list value or non-string entries are dropped."""
        assert DaemonDocument.from_dict({"insecure-registries": "a.com"}).insecure_registries == set()
        assert DaemonDocument.from_dict(
            {"insecure-registries": ["a.com", 5, None]}
        ).insecure_registries == {"a.com"}

    def test_empty_set_omits_key(self):
        assert DaemonDocument(extra={"debug": True}).to_dict() == {"debug": True}


class TestRegistryConfigService:
    """Tests for RegistryConfigService."""

    def test_create_on_empty_document(self, registry_config, daemon_json):
        """Create on {} yields a single-entry list."""
        _write(daemon_json, {})

        registry_config.apply("a.com", "", RegistryMode.CREATE)

        assert _read(daemon_json) == {"insecure-registries": ["a.com"]}

    def test_missing_document_is_created(self, registry_config, daemon_json):
        """An absent daemon.json is treated as empty."""
        registry_config.apply("a.com", "", RegistryMode.CREATE)

        assert _read(daemon_json) == {"insecure-registries": ["a.com"]}

    def test_create_deduplicates(self, registry_config, daemon_json):
        _write(daemon_json, {"insecure-registries": ["a.com", "a.com"]})

        registry_config.apply("a.com", "", RegistryMode.CREATE)

        assert _read(daemon_json) == {"insecure-registries": ["a.com"]}

    def test_update_replaces_host(self, registry_config, daemon_json):
        """Update swaps the old host for the new one."""
        _write(daemon_json, {"insecure-registries": ["a.com", "b.com"]})

        registry_config.apply("c.com", "a.com", RegistryMode.UPDATE)

        assert set(_read(daemon_json)["insecure-registries"]) == {"b.com", "c.com"}

    def test_update_with_absent_old_host_adds_new(self, registry_config, daemon_json):
        _write(daemon_json, {"insecure-registries": ["b.com"]})

        registry_config.apply("c.com", "a.com", RegistryMode.UPDATE)

        assert set(_read(daemon_json)["insecure-registries"]) == {"b.com", "c.com"}

    def test_delete_last_host_removes_key(self, registry_config, daemon_json):
        """Deleting the only host drops the key instead of writing []."""
        _write(daemon_json, {"insecure-registries": ["a.com"], "debug": True})

        registry_config.apply("", "a.com", RegistryMode.DELETE)

        data = _read(daemon_json)
        assert "insecure-registries" not in data
        assert data == {"debug": True}

    def test_rewrite_preserves_other_keys(self, registry_config, daemon_json):
        original = {
            "registry-mirrors": ["https://mirror.example.com"],
            "exec-opts": ["native.cgroupdriver=systemd"],
            "insecure-registries": ["a.com"],
        }
        _write(daemon_json, original)

        registry_config.apply("b.com", "", RegistryMode.CREATE)

        data = _read(daemon_json)
        assert data["registry-mirrors"] == original["registry-mirrors"]
        assert data["exec-opts"] == original["exec-opts"]
        assert data["insecure-registries"] == ["a.com", "b.com"]

    def test_written_with_tabs_and_restricted_mode(self, registry_config, daemon_json):
        """The document is tab-indented and mode 0640."""
        registry_config.apply("a.com", "", RegistryMode.CREATE)

        content = daemon_json.read_text()
        assert '\n\t"insecure-registries"' in content
        assert stat.S_IMODE(daemon_json.stat().st_mode) == 0o640

    def test_malformed_json_raises(self, registry_config, daemon_json):
        daemon_json.parent.mkdir(parents=True)
        daemon_json.write_text("{not json")

        with pytest.raises(ConfigJSONError) as exc_info:
            registry_config.apply("a.com", "", RegistryMode.CREATE)

        assert exc_info.value.code == "CONFIG_JSON_ERROR"
        assert daemon_json.read_text() == "{not json"

    def test_non_object_document_raises(self, registry_config, daemon_json):
        _write(daemon_json, ["a.com"])

        with pytest.raises(ConfigJSONError):
            registry_config.read()

    def test_unreadable_document_raises_io_error(self, tmp_path):
        """A directory at the document path is an I/O failure."""
        path = tmp_path / "daemon.json"
        path.mkdir()

        with pytest.raises(ConfigIOError) as exc_info:
            RegistryConfigService(daemon_json_path=path).apply("a.com", "", RegistryMode.CREATE)

        assert isinstance(exc_info.value, OSError)

    def test_failed_write_keeps_document(self, registry_config, daemon_json):
        """A write that dies half way leaves the live document untouched."""
        original = {
            "registry-mirrors": ["https://mirror.example.com"],
            "insecure-registries": ["a.com"],
        }
        _write(daemon_json, original)

        def disk_full(path, data, *args, **kwargs):
            with open(path, "w"):
                pass
            raise OSError(errno.ENOSPC, "No space left on device")

        with patch.object(Path, "write_text", autospec=True, side_effect=disk_full):
            with pytest.raises(ConfigIOError) as exc_info:
                registry_config.apply("b.com", "", RegistryMode.CREATE)

        assert "No space left on device" in exc_info.value.message
        assert _read(daemon_json) == original
        assert list(daemon_json.parent.iterdir()) == [daemon_json]

    def test_dockerd_validates_before_replace(self, registry_config, daemon_json):
        """dockerd checks the new content; a rejection leaves the live document alone."""
        original = {"registry-mirrors": ["https://mirror.example.com"]}
        _write(daemon_json, original)

        with patch(
            "panelkit.services.registry_service.shutil.which", return_value="/usr/bin/dockerd"
        ), patch("panelkit.services.registry_service.subprocess.run") as run:
            run.return_value = MagicMock(returncode=1, stdout="", stderr="unknown key")

            with pytest.raises(ConfigValidationError) as exc_info:
                registry_config.apply("a.com", "", RegistryMode.CREATE)

        assert "unknown key" in exc_info.value.message
        assert run.call_args[0][0] == [
            "/usr/bin/dockerd",
            "--validate",
            "--config-file",
            str(daemon_json.parent / "daemon.json.tmp"),
        ]
        assert _read(daemon_json) == original
        assert list(daemon_json.parent.iterdir()) == [daemon_json]

    def test_dockerd_accepts_config(self, registry_config, daemon_json):
        with patch(
            "panelkit.services.registry_service.shutil.which", return_value="/usr/bin/dockerd"
        ), patch("panelkit.services.registry_service.subprocess.run") as run:
            run.return_value = MagicMock(returncode=0, stdout="configuration OK", stderr="")

            registry_config.apply("a.com", "", RegistryMode.CREATE)

        run.assert_called_once()
        assert _read(daemon_json) == {"insecure-registries": ["a.com"]}

    def test_non_ascii_values_kept_verbatim(self, registry_config, daemon_json):
        """Unrelated non-ASCII values are written back as UTF-8, not escaped."""
        daemon_json.parent.mkdir(parents=True)
        daemon_json.write_text('{"labels": ["région=île-de-france"]}', encoding="utf-8")

        registry_config.apply("a.com", "", RegistryMode.CREATE)

        content = daemon_json.read_text(encoding="utf-8")
        assert "région=île-de-france" in content
        assert "\\u00e9" not in content


class TestRegistryEndpoint:
    """Tests for RegistryEndpoint."""

    def test_from_record(self):
        endpoint = RegistryEndpoint.from_record(
            {"name": "local", "download_url": "10.0.0.5:5000", "protocol": "http"}
        )

        assert endpoint.is_http
        assert endpoint.to_dict() == {
            "name": "local",
            "download_url": "10.0.0.5:5000",
            "protocol": "http",
        }

    @pytest.mark.parametrize(
        "record",
        [
            {"protocol": "http"},
            {"download_url": "a.com"},
            {"download_url": "", "protocol": "http"},
            {"download_url": "a.com", "protocol": "ftp"},
            None,
        ],
    )
    def test_bad_records_raise(self, record):
        with pytest.raises(StructTransformError):
            RegistryEndpoint.from_record(record)


@pytest.fixture
def trust_service(tmp_path):
    """RegistryTrustService with a mocked config writer and verifier."""
    config = PanelConfig(daemon_json_path=tmp_path / "daemon.json")
    registry_config = MagicMock()
    verifier = MagicMock()
    return RegistryTrustService(config=config, registry_config=registry_config, verifier=verifier)


def _endpoint(url, protocol):
    return RegistryEndpoint(name="repo", download_url=url, protocol=protocol)


class TestRegistryTrustService:
    """Tests for RegistryTrustService."""

    def test_create_http(self, trust_service):
        restarted = trust_service.create(_endpoint("a.com", "http"))

        assert restarted is True
        trust_service.registry_config.apply.assert_called_once_with("a.com", "", RegistryMode.CREATE)
        trust_service.verifier.restart_and_verify.assert_called_once_with("docker")

    def test_create_https_is_noop(self, trust_service):
        assert trust_service.create(_endpoint("a.com", "https")) is False
        trust_service.registry_config.apply.assert_not_called()
        trust_service.verifier.restart_and_verify.assert_not_called()

    @pytest.mark.parametrize(
        "old_protocol,new_protocol,expected",
        [
            ("http", "https", ("", "old.com", RegistryMode.DELETE)),
            ("http", "http", ("new.com", "old.com", RegistryMode.UPDATE)),
            ("https", "http", ("new.com", "", RegistryMode.CREATE)),
        ],
    )
    def test_update_transitions(self, trust_service, old_protocol, new_protocol, expected):
        """Each protocol transition maps to one trust list change."""
        restarted = trust_service.update(
            _endpoint("old.com", old_protocol), _endpoint("new.com", new_protocol)
        )

        assert restarted is True
        trust_service.registry_config.apply.assert_called_once_with(*expected)
        trust_service.verifier.restart_and_verify.assert_called_once()

    def test_update_https_to_https_is_noop(self, trust_service):
        assert trust_service.update(_endpoint("a.com", "https"), _endpoint("b.com", "https")) is False
        trust_service.registry_config.apply.assert_not_called()

    def test_delete_http(self, trust_service):
        assert trust_service.delete(_endpoint("a.com", "http")) is True
        trust_service.registry_config.apply.assert_called_once_with("", "a.com", RegistryMode.DELETE)

    def test_apply_error_gets_context(self, trust_service):
        """Mutator errors keep their type and gain the operation context."""
        trust_service.registry_config.apply.side_effect = ConfigJSONError("Malformed JSON")

        with pytest.raises(ConfigJSONError) as exc_info:
            trust_service.create(_endpoint("a.com", "http"))

        assert exc_info.value.message == "create registry a.com failed, err: Malformed JSON"
        trust_service.verifier.restart_and_verify.assert_not_called()

    def test_timeout_propagates_without_rollback(self, trust_service):
        """A failed restart surfaces to the caller and the document is not reverted."""
        trust_service.verifier.restart_and_verify.side_effect = ServiceTimeoutError(
            "the docker service cannot be restarted"
        )

        with pytest.raises(ServiceTimeoutError):
            trust_service.create(_endpoint("a.com", "http"))

        trust_service.registry_config.apply.assert_called_once()

    def test_dockerd_rejects_config(self, tmp_path):
        """A failing dockerd --validate stops the restart."""
        daemon_json = tmp_path / "daemon.json"
        config = PanelConfig(daemon_json_path=daemon_json)
        verifier = MagicMock()
        service = RegistryTrustService(config=config, verifier=verifier)

        with patch(
            "panelkit.services.registry_service.shutil.which", return_value="/usr/bin/dockerd"
        ), patch("panelkit.services.registry_service.subprocess.run") as run:
            run.return_value = MagicMock(returncode=1, stdout="", stderr="unknown key")

            with pytest.raises(ConfigValidationError) as exc_info:
                service.create(_endpoint("a.com", "http"))

        assert exc_info.value.message.startswith("create registry a.com failed, err: ")
        assert "unknown key" in exc_info.value.message
        assert _read(daemon_json) == {}
        verifier.restart_and_verify.assert_not_called()

    def test_list_hosts_sorted(self, trust_service):
        trust_service.registry_config.read.return_value = DaemonDocument(
            insecure_registries={"b.com", "a.com"}
        )

        assert trust_service.list_hosts() == ["a.com", "b.com"]
