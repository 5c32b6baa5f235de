"""
HTTP downloads for archives and custom model URLs.

Transfers stream into a temporary file in the scratch directory and are
moved onto the destination with ``os.replace`` only after the last byte
arrived, so an interrupted transfer never leaves a truncated destination.
Redirects are followed up to ``MAX_REDIRECTS`` hops.

External Dependencies:
====================
- requests for the transfer
- tqdm for the terminal progress bar
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional, Union

import requests
from tqdm import tqdm

from .config import DOWNLOAD_CHUNK_SIZE, DOWNLOAD_TIMEOUT, MAX_REDIRECTS
from .errors import DownloadError

logger = logging.getLogger(__name__)

USER_AGENT = "EasyWhisper"

# Signature shared by download_file and test doubles
Downloader = Callable[..., Path]


def new_session(max_redirects: int = MAX_REDIRECTS) -> requests.Session:
    session = requests.Session()
    session.max_redirects = max_redirects
    session.headers["User-Agent"] = USER_AGENT
    return session


def download_file(
    url: str,
    destination: Union[str, Path],
    scratch_dir: Optional[Union[str, Path]] = None,
    max_redirects: int = MAX_REDIRECTS,
    session: Optional[requests.Session] = None,
    show_progress: bool = True,
) -> Path:
    """
    Download ``url`` to ``destination``.

    Args:
        url: Source URL (http or https)
        destination: Final file path; parent directories are created
        scratch_dir: Where the partial file lives (defaults to destination's dir)
        max_redirects: Maximum redirect hops before giving up
        session: Optional requests.Session to reuse
        show_progress: Draw a tqdm progress bar on stderr

    Returns:
        Path: The destination path

    Raises:
        DownloadError: HTTP status >= 400, too many redirects, or a
            network/filesystem failure. The destination is untouched.
    """
    destination = Path(destination)
    scratch = Path(scratch_dir) if scratch_dir is not None else destination.parent
    destination.parent.mkdir(parents=True, exist_ok=True)
    scratch.mkdir(parents=True, exist_ok=True)

    own_session = session is None
    if own_session:
        session = new_session(max_redirects)
    else:
        session.max_redirects = max_redirects

    logger.info(f"Downloading {url} -> {destination}")
    fd, tmp_name = tempfile.mkstemp(prefix=f".{destination.name}.", suffix=".part", dir=str(scratch))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as out:
            with session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT, allow_redirects=True) as response:
                if response.status_code >= 400:
                    raise DownloadError(
                        url,
                        f"Download failed with status {response.status_code}",
                        status=response.status_code,
                    )
                total = int(response.headers.get("content-length", 0) or 0)
                with tqdm(
                    total=total or None,
                    unit="B",
                    unit_scale=True,
                    desc=destination.name,
                    disable=not show_progress,
                ) as bar:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if chunk:
                            out.write(chunk)
                            bar.update(len(chunk))
        os.replace(tmp_path, destination)
    except requests.TooManyRedirects as e:
        _discard(tmp_path)
        raise DownloadError(url, f"Too many redirects (limit {max_redirects})") from e
    except requests.RequestException as e:
        _discard(tmp_path)
        raise DownloadError(url, f"Download failed: {e}") from e
    except OSError as e:
        _discard(tmp_path)
        raise DownloadError(url, f"Could not write {destination}: {e}") from e
    except DownloadError:
        _discard(tmp_path)
        raise
    finally:
        if own_session:
            session.close()

    logger.info(f"Downloaded {destination.name} ({destination.stat().st_size / (1024 * 1024):.1f} MB)")
    return destination


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not remove partial download {path}: {e}")
