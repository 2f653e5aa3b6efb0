"""
File management service for promoreel.

Handles structured filesystem artifact storage with path traversal protection.
Creates per-project asset directories and per-style-pack directories, and
finalizes generated assets atomically.
"""
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional

from promoreel.config import settings

logger = logging.getLogger(__name__)

PROJECT_ASSET_DIRS = (
    "brand",
    "refs",
    "stylepacks",
    "keyframes",
    "clips",
    "frames",
    "exports",
)
STYLE_PACK_DIRS = ("videos", "refs")


def atomic_write_bytes(path: Path, data: bytes) -> Path:
    """
    Write ``data`` to ``path`` without ever leaving a partial file there.

    The bytes land in a temp file in the same directory first and are then
    moved into place with ``os.replace``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return path


def temp_path_for(path: Path) -> Path:
    """
    Reserve a temp path beside ``path`` for tools that write files themselves
    (ffmpeg, streaming downloads). Finalize with ``os.replace``.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=path.suffix)
    os.close(fd)
    return Path(tmp_name)


class FileManager:
    """
    Manage filesystem artifacts for promoreel projects and style packs.

    Creates structured directories:
    - {data_dir}/projects/{project_id}/assets/{brand,refs,stylepacks,keyframes,clips,frames,exports}
    - {data_dir}/stylepacks/{pack_id}/{videos,refs}

    Implements path traversal protection to prevent directory escape attacks.
    """

    def __init__(self, data_dir: str | Path | None = None):
        """
        Initialize FileManager with base directory.

        Args:
            data_dir: Root directory for all artifacts.
                     If None, uses settings.storage.data_dir
        """
        if data_dir is None:
            data_dir = settings.storage.data_dir

        self.data_dir = Path(data_dir).resolve()
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _safe_child(self, root: Path, name: str) -> Path:
        path = (root / str(name)).resolve()
        if path == root or not path.is_relative_to(root):
            raise ValueError(f"Invalid path component: {name!r}")
        return path

    @property
    def projects_root(self) -> Path:
        return self.data_dir / "projects"

    @property
    def stylepacks_root(self) -> Path:
        return self.data_dir / "stylepacks"

    def ensure_project_dirs(self, project_id: str) -> Path:
        """
        Get or create the project directory with its asset subdirectories.

        Args:
            project_id: Project identifier

        Returns:
            Resolved Path to the project directory

        Raises:
            ValueError: If project_id resolves outside the projects root
        """
        self.projects_root.mkdir(parents=True, exist_ok=True)
        project_dir = self._safe_child(self.projects_root.resolve(), project_id)
        for name in PROJECT_ASSET_DIRS:
            (project_dir / "assets" / name).mkdir(parents=True, exist_ok=True)
        return project_dir

    def asset_dir(self, project_id: str, kind: str) -> Path:
        if kind not in PROJECT_ASSET_DIRS:
            raise ValueError(f"Unknown asset directory: {kind}")
        return self.ensure_project_dirs(project_id) / "assets" / kind

    def keyframe_path(self, project_id: str, shot_id: str, version: int) -> Path:
        return self.asset_dir(project_id, "keyframes") / f"{shot_id}_v{version}.png"

    def clip_path(self, project_id: str, shot_id: str, version: int) -> Path:
        return self.asset_dir(project_id, "clips") / f"{shot_id}_v{version}.mp4"

    def last_frame_path(self, project_id: str, shot_id: str, version: int) -> Path:
        return self.asset_dir(project_id, "frames") / f"{shot_id}_last_v{version}.png"

    def script_path(self, project_id: str) -> Path:
        return self.ensure_project_dirs(project_id) / "script.json"

    def export_path(self, project_id: str, export_number: int) -> Path:
        return self.asset_dir(project_id, "exports") / f"final_v{export_number}.mp4"

    def cache_style_ref(self, project_id: str, source: Path) -> Path:
        """
        Copy a style-pack reference frame into the project's stylepacks cache.

        Existing cached copies are reused.
        """
        destination = self.asset_dir(project_id, "stylepacks") / Path(source).name
        if not destination.exists():
            shutil.copyfile(source, destination)
        return destination

    def ensure_stylepack_dirs(self, pack_id: str) -> Path:
        self.stylepacks_root.mkdir(parents=True, exist_ok=True)
        pack_dir = self._safe_child(self.stylepacks_root.resolve(), pack_id)
        for name in STYLE_PACK_DIRS:
            (pack_dir / name).mkdir(parents=True, exist_ok=True)
        return pack_dir

    def import_stylepack_video(self, pack_id: str, source: Path, filename: Optional[str] = None) -> Path:
        """Copy a source video into the style pack's videos directory."""
        name = Path(filename or Path(source).name).name
        destination = self.ensure_stylepack_dirs(pack_id) / "videos" / name
        if Path(source).resolve() != destination:
            shutil.copyfile(source, destination)
        return destination

    def stylepack_refs_dir(self, pack_id: str) -> Path:
        return self.ensure_stylepack_dirs(pack_id) / "refs"
