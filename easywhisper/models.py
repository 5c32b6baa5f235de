"""
Model Management Module - easywhisper/models.py

Resolution and caching of ggml weight files.

Impact Analysis:
===============
- ModelStore.resolve(): Stage 2 of every transcription job and of live start.
  Decides between custom path, custom URL and standard model, and
  downloads into models/ when the file is not cached yet.
- ModelStore.list_cached(): Used by the CLI `models list`
- ModelStore.delete(): Used by the CLI `models delete`

Dependencies:
============
- easywhisper/config.py (MODEL_REPO_ID, STANDARD_MODELS, CUSTOM_MODEL_SENTINEL)
- easywhisper/downloads.py (custom URLs)
- easywhisper/workspace.py (models_dir, downloads_dir)

Used By:
========
- easywhisper/transcription.py
- easywhisper/live.py
- easywhisper/cli.py

External Dependencies:
====================
- huggingface_hub for standard model downloads
- requests (via downloads.py) for custom URLs

Functions:
=========
- sanitize_model_filename(url: str) -> str
- standard_filename(model: str) -> str
- ModelStore.resolve(settings, emit) -> Path
- ModelStore.list_cached() -> List[Dict]
- ModelStore.delete(name: str) -> Dict
"""

import logging
import os
import re
from pathlib import Path
from typing import Callable, Dict, List, Optional

from huggingface_hub import hf_hub_download

from . import config
from .config import ModelSettings
from .downloads import download_file
from .errors import DownloadError, ValidationError
from .workspace import Workspace

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def sanitize_model_filename(url: str) -> str:
    """
    Filesystem-safe cache name for a custom model URL.

    Takes the last path segment, replaces anything outside
    ``[a-zA-Z0-9._-]`` with an underscore and falls back to
    CUSTOM_MODEL_FALLBACK_NAME when nothing is left.

    Example:
        >>> sanitize_model_filename("https://host/x/my model.bin?dl=1")
        'my_model.bin_dl_1'
    """
    segment = url.rstrip().split("/")[-1]
    segment = os.path.basename(segment)
    name = _UNSAFE_CHARS.sub("_", segment)
    if not name or name in (".", ".."):
        return config.CUSTOM_MODEL_FALLBACK_NAME
    return name


def standard_filename(model: str) -> str:
    """Cache file name of a standard model, e.g. ``ggml-medium.en.bin``."""
    return f"ggml-{model}.bin"


class ModelStore:
    """
    Cache of weight files under the workspace ``models/`` directory.

    Example:
        >>> store = ModelStore(Workspace())
        >>> store.resolve(ModelSettings(model="tiny.en"))
        PosixPath('.../models/ggml-tiny.en.bin')
    """

    def __init__(
        self,
        workspace: Workspace,
        downloader: Callable[..., Path] = download_file,
        hub_download: Callable[..., str] = hf_hub_download,
        repo_id: Optional[str] = None,
    ):
        self.workspace = workspace
        self.downloader = downloader
        self.hub_download = hub_download
        self.repo_id = repo_id or config.MODEL_REPO_ID

    @property
    def models_dir(self) -> Path:
        return self.workspace.models_dir

    def resolve(self, settings: ModelSettings, emit: Optional[Callable[[str], None]] = None) -> Path:
        """
        Path of the weight file to use for ``settings``.

        Order: custom local path, custom URL, the "custom" sentinel
        (rejected), standard model id. Path and URL are trimmed first; a
        blank value counts as unset.

        Raises:
            ValidationError: Custom selection without a usable path or URL
            DownloadError: Fetching the weights failed
        """
        emit = emit or (lambda message: None)
        path_text = (settings.custom_model_path or "").strip()
        url = (settings.custom_model_url or "").strip()

        if path_text:
            path = Path(path_text).expanduser()
            if not path.is_file():
                raise ValidationError(f"Custom model path not found: {path}")
            emit(f"Using custom model from {path}")
            return path

        if url:
            target = self.models_dir / sanitize_model_filename(url)
            if target.is_file():
                emit(f"Using cached custom model {target.name}")
                return target
            emit(f"Downloading custom model from {url}")
            self.workspace.ensure()
            self.downloader(url, target, scratch_dir=self.workspace.downloads_dir)
            emit(f"Custom model downloaded: {target.name}")
            return target

        model = (settings.model or "").strip()
        if model == config.CUSTOM_MODEL_SENTINEL:
            raise ValidationError(
                "Custom model selected but no URL or local path provided."
            )
        if not model:
            raise ValidationError("No model selected.")

        filename = standard_filename(model)
        target = self.models_dir / filename
        if target.is_file():
            emit(f"Using cached model {filename}")
            return target

        emit(f"Downloading model {filename}")
        self.workspace.ensure()
        try:
            downloaded = self.hub_download(
                repo_id=self.repo_id,
                filename=filename,
                local_dir=str(self.models_dir),
            )
        except Exception as e:
            raise DownloadError(
                f"https://huggingface.co/{self.repo_id}/resolve/main/{filename}",
                f"Model download failed: {e}",
            ) from e

        path = Path(downloaded)
        if path != target and path.is_file() and not target.exists():
            os.replace(path, target)
            path = target
        emit(f"Model downloaded: {filename}")
        return path

    def list_cached(self) -> List[Dict]:
        """
        Weight files currently in the cache.

        Returns:
            List[Dict]: name, model, path, size_mb, is_standard
        """
        models = []
        if not self.models_dir.exists():
            return models

        standard = {standard_filename(m): m for m in config.STANDARD_MODELS}
        for path in sorted(self.models_dir.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            models.append({
                'name': path.name,
                'model': standard.get(path.name),
                'path': str(path),
                'size_mb': path.stat().st_size / (1024 * 1024),
                'is_standard': path.name in standard,
            })
        return models

    def delete(self, name: str) -> Dict:
        """
        Remove a cached weight file.

        Args:
            name: File name (``ggml-tiny.bin``) or standard model id (``tiny``)

        Returns:
            dict: {'success': bool, 'error': str or None}
        """
        candidates = [name, standard_filename(name)]
        for candidate in candidates:
            path = self.models_dir / candidate
            if path.parent.resolve() != self.models_dir.resolve():
                continue
            if path.is_file():
                try:
                    path.unlink()
                except OSError as e:
                    return {'success': False, 'error': str(e)}
                logger.info(f"Deleted model {path.name}")
                return {'success': True, 'error': None}
        return {'success': False, 'error': f"Model not found: {name}"}
