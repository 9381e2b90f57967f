"""
Tests for model registry loading and the provisioner.
"""

import gc
import threading
from unittest.mock import MagicMock, patch

import pytest
import requests

from conftest import MODEL_BYTES, fake_http, sha256_hex
from models.errors import DownloadError, IntegrityMismatchError, MalformedRegistryError, ProvisioningError
from models.progress import DownloadStatus
from models.registry import ModelEntry, ModelRegistry
from provisioning import ModelProvisioner, ProgressRecorder, load_registry, sha256_file
from provisioning.downloader import _PATH_LOCKS, _lock_for


@pytest.fixture
def registry(registry_text):
    return ModelRegistry.from_declaration(registry_text)


def make_provisioner(registry, tmp_path, payload=MODEL_BYTES, **kwargs):
    http = fake_http(payload, **kwargs)
    provisioner = ModelProvisioner(registry, tmp_path / "models", session=http, chunk_size=1000, retry_delay=0)
    return provisioner, http


class TestRegistry:
    def test_from_declaration(self, registry):
        assert sorted(registry) == ["other", "tiny"]
        assert registry["tiny"].size == len(MODEL_BYTES)
        assert registry["tiny"].sha256 == sha256_hex(MODEL_BYTES)

    def test_json_is_accepted(self):
        registry = ModelRegistry.from_declaration(
            '{"m": {"url": "https://x/m.onnx", "sha256": "%s"}}' % ("A" * 64)
        )
        assert registry["m"] == ModelEntry("https://x/m.onnx", "a" * 64, 0)

    @pytest.mark.parametrize("text", [
        "[1, 2, 3]",
        "m: {sha256: '%s'}" % ("a" * 64),
        "m: {url: 'https://x', sha256: 'abc'}",
        "m: {url: 'https://x', sha256: '%s', size: -1}" % ("a" * 64),
        "m: {url: 'https://x', sha256: '%s'}\nm: {url: 'https://y', sha256: '%s'}" % ("a" * 64, "b" * 64),
        "m: [unclosed",
    ])
    def test_malformed(self, text):
        with pytest.raises(MalformedRegistryError):
            ModelRegistry.from_declaration(text)

    def test_load_registry_relative_to_base_dir(self, tmp_path, registry_text):
        (tmp_path / "models.yaml").write_text(registry_text)
        assert len(load_registry("models.yaml", base_dir=str(tmp_path))) == 2

    def test_load_registry_missing_file(self, tmp_path):
        with pytest.raises(MalformedRegistryError):
            load_registry(str(tmp_path / "missing.yaml"))

    def test_round_trip(self, registry):
        assert ModelRegistry.from_declaration(registry.to_dict()).to_dict() == registry.to_dict()


class TestProvision:
    def test_downloads_and_installs(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)

        model = provisioner.provision("tiny")

        assert model.downloaded
        assert model.path == tmp_path / "models" / "tiny.onnx"
        assert model.path.read_bytes() == MODEL_BYTES
        assert model.sha256 == sha256_hex(MODEL_BYTES)
        assert provisioner.is_installed("tiny")
        http.get.assert_called_once()
        assert http.get.call_args.kwargs["stream"] is True
        assert list((tmp_path / "models").glob("*.part")) == []

    def test_second_call_does_not_touch_network(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)
        provisioner.provision("tiny")

        model = provisioner.provision("tiny")

        assert not model.downloaded
        assert http.get.call_count == 1

    def test_path_locks_are_shared_per_path(self, tmp_path):
        first = _lock_for(tmp_path / "a.onnx")

        assert _lock_for(tmp_path / "sub" / ".." / "a.onnx") is first
        assert _lock_for(tmp_path / "b.onnx") is not first

    def test_path_locks_are_released_when_unused(self, tmp_path):
        lock = _lock_for(tmp_path / "a.onnx")
        key = next(k for k, v in _PATH_LOCKS.items() if v is lock)

        del lock
        gc.collect()

        assert key not in _PATH_LOCKS

    def test_corrupt_download_is_discarded(self, registry, tmp_path):
        corrupt = bytearray(MODEL_BYTES)
        corrupt[100] ^= 0xFF
        provisioner, _ = make_provisioner(registry, tmp_path, payload=bytes(corrupt))
        recorder = ProgressRecorder()
        provisioner.subscribe(recorder)

        with pytest.raises(IntegrityMismatchError) as exc_info:
            provisioner.provision("tiny")

        assert exc_info.value.model_name == "tiny"
        assert not (tmp_path / "models" / "tiny.onnx").exists()
        assert list((tmp_path / "models").iterdir()) == []
        assert recorder.statuses[-1] is DownloadStatus.FAILED

    def test_corrupt_installed_file_is_replaced(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)
        target = provisioner.artifact_path("tiny")
        target.parent.mkdir(parents=True)
        target.write_bytes(b"stale")

        model = provisioner.provision("tiny")

        assert model.downloaded
        assert target.read_bytes() == MODEL_BYTES

    def test_http_error(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)
        http.get.return_value.raise_for_status.side_effect = requests.HTTPError("404 Not Found")

        with pytest.raises(DownloadError) as exc_info:
            provisioner.provision("tiny")

        assert exc_info.value.stage == "download"
        assert not provisioner.is_installed("tiny")

    def test_connection_error(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)
        http.get.side_effect = requests.ConnectionError("refused")

        with pytest.raises(DownloadError):
            provisioner.provision("tiny")

    def test_unknown_model(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)

        with pytest.raises(ProvisioningError) as exc_info:
            provisioner.provision("missing")

        assert exc_info.value.stage == "registry"
        http.get.assert_not_called()

    def test_install_retries_then_fails(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path)
        provisioner.replace_attempts = 3

        with patch("provisioning.downloader.os.replace", side_effect=PermissionError("locked")) as replace:
            with pytest.raises(DownloadError) as exc_info:
                provisioner.provision("tiny")

        assert replace.call_count == 3
        assert exc_info.value.stage == "install"
        assert list((tmp_path / "models").iterdir()) == []

    def test_concurrent_calls_download_once(self, registry, tmp_path):
        provisioner, http = make_provisioner(registry, tmp_path)
        errors = []

        def worker():
            try:
                provisioner.provision("tiny")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert http.get.call_count == 1

    def test_uninstall(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path)
        provisioner.provision("tiny")
        provisioner.labels_path("tiny").write_text("person\n")

        assert provisioner.uninstall("tiny") is True
        assert not provisioner.is_installed("tiny")
        assert not provisioner.labels_path("tiny").exists()
        assert provisioner.uninstall("tiny") is False

    def test_sha256_file(self, tmp_path):
        path = tmp_path / "blob"
        path.write_bytes(MODEL_BYTES)
        assert sha256_file(path, chunk_size=7) == sha256_hex(MODEL_BYTES)


class TestProgress:
    def test_event_sequence(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path)
        recorder = ProgressRecorder()
        provisioner.subscribe(recorder)

        provisioner.provision("tiny")

        statuses = recorder.statuses
        assert statuses[0] is DownloadStatus.STARTING
        assert DownloadStatus.DOWNLOADING in statuses
        assert statuses[-2:] == [DownloadStatus.VERIFYING, DownloadStatus.COMPLETED]
        assert recorder.percents == sorted(recorder.percents)
        assert recorder.percents[-1] == 100
        assert all(e.model_name == "tiny" for e in recorder.events)

    def test_without_content_length_uses_registry_size(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path, content_length=False)
        recorder = ProgressRecorder()
        provisioner.subscribe(recorder)

        provisioner.provision("tiny")

        downloading = [e.progress_percent for e in recorder.events if e.status is DownloadStatus.DOWNLOADING]
        assert downloading[-1] == 100

    @pytest.mark.parametrize("header", ["unknown", "12 bytes", "-5"])
    def test_malformed_content_length_uses_registry_size(self, registry, tmp_path, header):
        provisioner, http = make_provisioner(registry, tmp_path)
        http.get.return_value.headers = {"Content-Length": header}
        recorder = ProgressRecorder()
        provisioner.subscribe(recorder)

        model = provisioner.provision("tiny")

        assert model.downloaded
        downloading = [e.progress_percent for e in recorder.events if e.status is DownloadStatus.DOWNLOADING]
        assert downloading[-1] == 100
        assert recorder.statuses[-1] is DownloadStatus.COMPLETED

    def test_cached_run(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path)
        provisioner.provision("tiny")
        recorder = ProgressRecorder()
        provisioner.subscribe(recorder)

        provisioner.provision("tiny")

        assert recorder.statuses == [DownloadStatus.STARTING, DownloadStatus.COMPLETED]
        assert recorder.events[-1].message == "already installed"

    def test_listener_errors_do_not_break_provisioning(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path)
        broken = MagicMock(side_effect=RuntimeError("boom"))
        recorder = ProgressRecorder()
        provisioner.subscribe(broken)
        provisioner.subscribe(recorder)

        provisioner.provision("tiny")

        assert broken.call_count == len(recorder.events)
        assert recorder.statuses[-1] is DownloadStatus.COMPLETED

    def test_unsubscribe(self, registry, tmp_path):
        provisioner, _ = make_provisioner(registry, tmp_path)
        recorder = ProgressRecorder()
        unsubscribe = provisioner.subscribe(recorder)
        unsubscribe()
        unsubscribe()

        provisioner.provision("tiny")

        assert recorder.events == []
