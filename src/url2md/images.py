"""Image extraction and file-name deduplication."""

from __future__ import annotations

import os
import posixpath
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .core import DEFAULT_TIMEOUT, LOG, Downloader, FetchedPage, download_file

SKIPPED_NAME_MARKERS = ("note", "tip")
SKIPPED_EXTENSIONS = {"gif"}


class FilenameCounter:
    """Occurrence counts per base file name.

    The first occurrence of a name keeps it unchanged; occurrence N gets
    ``stem(N).ext``. A single instance can be shared between worker threads:
    :meth:`reserve` reads and bumps the count under a lock. When each task
    owns its own instance, two tasks may both resolve occurrence 0 for the
    same name and overwrite each other's file in the shared directory.
    """

    def __init__(self) -> None:
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def count(self, name: str) -> int:
        with self._lock:
            return self._counts.get(name, 0)

    def reserve(self, name: str) -> str:
        with self._lock:
            occurrence = self._counts.get(name, 0)
            self._counts[name] = occurrence + 1
        return disambiguate(name, occurrence)


def disambiguate(name: str, occurrence: int) -> str:
    if occurrence <= 0:
        return name
    stem, ext = posixpath.splitext(name)
    return f"{stem}({occurrence}){ext}"


def image_basename(url: str) -> str:
    return posixpath.basename(urlparse(url).path)


def is_skipped_image(name: str) -> bool:
    lowered = name.lower()
    if any(marker in lowered for marker in SKIPPED_NAME_MARKERS):
        return True
    ext = posixpath.splitext(lowered)[1].lstrip(".")
    return ext in SKIPPED_EXTENSIONS


def plan_image_names(image_urls: List[str], counter: FilenameCounter) -> List[Tuple[str, str]]:
    """Return ``(url, local_name)`` pairs for the images worth keeping."""
    planned: List[Tuple[str, str]] = []
    for url in image_urls:
        name = image_basename(url)
        if not name:
            LOG.debug("Skipping image without file name: %s", url)
            continue
        if is_skipped_image(name):
            LOG.info("Skipping image: %s", name)
            continue
        planned.append((url, counter.reserve(name)))
    return planned


def save_page_images(
    page: FetchedPage,
    images_dir: Path,
    counter: FilenameCounter,
    *,
    download: Downloader = download_file,
    timeout: Optional[float] = DEFAULT_TIMEOUT,
) -> List[Path]:
    saved: List[Path] = []
    for url, local_name in plan_image_names(page.image_urls, counter):
        target = images_dir / local_name
        download(url, target, timeout)
        LOG.info("Image saved: %s", os.path.abspath(target))
        saved.append(target)
    return saved
