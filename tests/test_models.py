"""
Model cache tests. The downloader and the hub client are replaced with
Mock objects so nothing touches the network.
"""

from pathlib import Path
from unittest.mock import Mock

import pytest

from easywhisper.config import ModelSettings
from easywhisper.errors import DownloadError, ValidationError
from easywhisper.models import ModelStore, sanitize_model_filename, standard_filename


def write_target(url, target, **kwargs):
    Path(target).parent.mkdir(parents=True, exist_ok=True)
    Path(target).write_bytes(b"weights")
    return Path(target)


def hub_writer(repo_id, filename, local_dir):
    path = Path(local_dir) / filename
    path.write_bytes(b"ggml")
    return str(path)


@pytest.fixture
def downloader():
    return Mock(side_effect=write_target)


@pytest.fixture
def hub():
    return Mock(side_effect=hub_writer)


@pytest.fixture
def store(workspace, downloader, hub):
    return ModelStore(workspace, downloader=downloader, hub_download=hub, repo_id="org/repo")


@pytest.mark.parametrize("url,expected", [
    ("https://host/models/ggml-model.bin", "ggml-model.bin"),
    ("https://host/x/my model.bin?dl=1", "my_model.bin_dl_1"),
    ("https://host/models/", "custom-model.bin"),
    ("https://host/..", "custom-model.bin"),
    ("weird:name*.bin", "weird_name_.bin"),
])
def test_sanitize_model_filename(url, expected):
    assert sanitize_model_filename(url) == expected


def test_standard_filename():
    assert standard_filename("medium.en") == "ggml-medium.en.bin"


def test_custom_sentinel_without_source_is_rejected(store, downloader, hub):
    with pytest.raises(ValidationError, match="no URL or local path"):
        store.resolve(ModelSettings(model="custom"))
    downloader.assert_not_called()
    hub.assert_not_called()


def test_empty_model_is_rejected(store):
    with pytest.raises(ValidationError, match="No model selected"):
        store.resolve(ModelSettings(model="  "))


def test_custom_path_must_exist(store, tmp_path):
    with pytest.raises(ValidationError, match="Custom model path not found"):
        store.resolve(ModelSettings(model="custom", custom_model_path=str(tmp_path / "nope.bin")))


def test_custom_path_wins_over_url(store, tmp_path, downloader):
    local = tmp_path / "mine.bin"
    local.write_bytes(b"x")
    messages = []
    settings = ModelSettings(model="custom", custom_model_path=str(local),
                             custom_model_url="https://host/other.bin")

    assert store.resolve(settings, messages.append) == local
    assert messages == [f"Using custom model from {local}"]
    downloader.assert_not_called()


def test_custom_path_is_trimmed(store, tmp_path):
    local = tmp_path / "m.bin"
    local.write_bytes(b"x")
    assert store.resolve(ModelSettings(model="custom", custom_model_path=f"  {local} ")) == local


def test_custom_url_is_trimmed(store, workspace, downloader):
    target = store.resolve(ModelSettings(custom_model_url=" https://host/m.bin\n"))
    assert target == workspace.models_dir / "m.bin"
    downloader.assert_called_once_with("https://host/m.bin", target, scratch_dir=workspace.downloads_dir)


def test_blank_custom_values_fall_back_to_standard_model(store, workspace, downloader, hub):
    workspace.models_dir.mkdir(parents=True)
    cached = workspace.models_dir / "ggml-tiny.bin"
    cached.write_bytes(b"cached")

    settings = ModelSettings(model="tiny", custom_model_path="   ", custom_model_url="\t ")
    assert store.resolve(settings) == cached
    downloader.assert_not_called()
    hub.assert_not_called()


def test_custom_url_downloads_once(store, workspace, downloader):
    settings = ModelSettings(model="custom", custom_model_url="https://host/path/fine-tuned.bin")
    target = workspace.models_dir / "fine-tuned.bin"

    first = []
    assert store.resolve(settings, first.append) == target
    downloader.assert_called_once_with(
        "https://host/path/fine-tuned.bin", target, scratch_dir=workspace.downloads_dir
    )
    assert first == ["Downloading custom model from https://host/path/fine-tuned.bin",
                     "Custom model downloaded: fine-tuned.bin"]

    second = []
    assert store.resolve(settings, second.append) == target
    assert downloader.call_count == 1
    assert second == ["Using cached custom model fine-tuned.bin"]


def test_custom_url_download_error_propagates(workspace, hub):
    failing = Mock(side_effect=DownloadError("https://host/m.bin", "Download failed with status 500", 500))
    store = ModelStore(workspace, downloader=failing, hub_download=hub)
    with pytest.raises(DownloadError):
        store.resolve(ModelSettings(custom_model_url="https://host/m.bin"))
    assert not (workspace.models_dir / "m.bin").exists()


def test_standard_model_from_hub(store, workspace, hub):
    messages = []
    path = store.resolve(ModelSettings(model="tiny.en"), messages.append)

    assert path == workspace.models_dir / "ggml-tiny.en.bin"
    assert path.read_bytes() == b"ggml"
    hub.assert_called_once_with(repo_id="org/repo", filename="ggml-tiny.en.bin",
                                local_dir=str(workspace.models_dir))
    assert messages == ["Downloading model ggml-tiny.en.bin", "Model downloaded: ggml-tiny.en.bin"]


def test_standard_model_cached(store, workspace, hub):
    workspace.models_dir.mkdir(parents=True)
    (workspace.models_dir / "ggml-base.bin").write_bytes(b"cached")
    messages = []
    store.resolve(ModelSettings(model="base"), messages.append)
    hub.assert_not_called()
    assert messages == ["Using cached model ggml-base.bin"]


def test_hub_failure_becomes_download_error(workspace, downloader):
    hub = Mock(side_effect=OSError("offline"))
    store = ModelStore(workspace, downloader=downloader, hub_download=hub, repo_id="org/repo")
    with pytest.raises(DownloadError) as exc_info:
        store.resolve(ModelSettings(model="small"))
    assert "offline" in str(exc_info.value)
    assert exc_info.value.url.endswith("/org/repo/resolve/main/ggml-small.bin")


def test_hub_file_elsewhere_is_moved_into_cache(workspace, downloader, tmp_path):
    elsewhere = tmp_path / "hub-cache" / "ggml-tiny.bin"

    def hub(repo_id, filename, local_dir):
        elsewhere.parent.mkdir(parents=True)
        elsewhere.write_bytes(b"ggml")
        return str(elsewhere)

    store = ModelStore(workspace, downloader=downloader, hub_download=hub)
    path = store.resolve(ModelSettings(model="tiny"))
    assert path == workspace.models_dir / "ggml-tiny.bin"
    assert path.is_file()
    assert not elsewhere.exists()


def test_list_and_delete(store, workspace):
    workspace.models_dir.mkdir(parents=True)
    (workspace.models_dir / "ggml-tiny.bin").write_bytes(b"a" * 1024)
    (workspace.models_dir / "mine.bin").write_bytes(b"b")
    (workspace.models_dir / ".ggml-base.bin.part").write_bytes(b"c")

    cached = {m['name']: m for m in store.list_cached()}
    assert set(cached) == {"ggml-tiny.bin", "mine.bin"}
    assert cached["ggml-tiny.bin"]["is_standard"] is True
    assert cached["ggml-tiny.bin"]["model"] == "tiny"
    assert cached["mine.bin"]["is_standard"] is False

    assert store.delete("tiny") == {'success': True, 'error': None}
    assert not (workspace.models_dir / "ggml-tiny.bin").exists()
    assert store.delete("mine.bin")['success']

    missing = store.delete("large-v3")
    assert missing['success'] is False
    assert "Model not found" in missing['error']


def test_delete_refuses_paths_outside_cache(store, workspace, tmp_path):
    workspace.models_dir.mkdir(parents=True)
    outside = tmp_path / "keep.bin"
    outside.write_bytes(b"x")
    assert store.delete("../../keep.bin")['success'] is False
    assert outside.exists()


def test_list_cached_without_directory(store):
    assert store.list_cached() == []
