from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Dict

from .formatters import initials

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".webp", ".avif"}
MANIFEST_NAME = "manifest.json"


def build_manifest(photos_dir: Path, url_prefix: str = "/drivers-photos") -> Dict[str, str]:
    """Map driver ids (file stems) to public photo paths.

    When a driver has several photos the ``.png`` wins; otherwise the first
    file in name order is kept.
    """
    manifest: Dict[str, str] = {}
    prefix = url_prefix.rstrip("/")
    for path in sorted(photos_dir.iterdir()):
        if not path.is_file():
            continue
        ext = path.suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            continue
        driver_id = path.stem
        if driver_id in manifest and ext != ".png":
            continue
        manifest[driver_id] = f"{prefix}/{path.name}"
    return manifest


def write_manifest(photos_dir: Path, url_prefix: str = "/drivers-photos") -> int | None:
    """Write ``manifest.json`` into ``photos_dir``; returns the entry count or None if the folder is missing."""
    if not photos_dir.is_dir():
        logger.warning("Driver photos folder not found: %s", photos_dir)
        return None
    manifest = build_manifest(photos_dir, url_prefix=url_prefix)
    (photos_dir / MANIFEST_NAME).write_text(json.dumps(manifest, indent=2), encoding="utf-8")
    return len(manifest)


def load_manifest(path: Path) -> Dict[str, str]:
    """Load the manifest, re-reading it whenever the file changes.

    A missing or unreadable manifest yields ``{}`` and is retried on the next call.
    """
    try:
        mtime = path.stat().st_mtime
        return dict(_read_manifest(path, mtime))
    except (OSError, ValueError) as exc:
        logger.info("Driver photo manifest unavailable (%s); using initials", exc)
        return {}


@lru_cache(maxsize=4)
def _read_manifest(path: Path, mtime: float) -> Dict[str, str]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"{path} does not hold a JSON object")
    return {str(key): str(value) for key, value in payload.items() if isinstance(value, str)}


def avatar(person_id: str, display_name: str | None, manifest: Dict[str, str]) -> Dict[str, str | None]:
    return {
        "src": manifest.get(person_id),
        "initials": initials(display_name),
        "alt": display_name or "Driver",
    }
