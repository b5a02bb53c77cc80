"""
Media import collaborator

Takes a completed download, finds the video file(s) it produced and places
them into the library folder of the target.

Implementations:
    - MediaImporter: abstract contract used by the download sync engine
    - FileSystemImporter: local file system, hardlink with copy fallback

Folder Layout:
    movies: {movie folder}/{original file name}
    tv:     {series folder}/Season {nn}/{original file name}
"""

import asyncio
import logging
import os
import re
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from acquirarr.models.download import Download, MediaKind
from acquirarr.services import release_parser
from acquirarr.services.exceptions import MediaImportError

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mkv", ".mp4", ".avi", ".m4v", ".mov", ".wmv", ".ts", ".m2ts", ".webm"}
SAMPLE_PATTERN = re.compile(r"(?:^|[ ._-])sample(?:[ ._-]|$)", re.IGNORECASE)


@dataclass
class ImportedFile:
    source_path: str
    destination_path: str
    quality: str
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    release_group: Optional[str] = None
    hardlinked: bool = False


@dataclass
class ImportResult:
    files: List[ImportedFile] = field(default_factory=list)


class MediaImporter(ABC):
    """Moves completed downloads into the library."""

    @abstractmethod
    async def import_download(self, download: Download, content_path: Optional[str],
                              destination_folder: str) -> ImportResult:
        """
        Import the content of a completed download.

        Args:
            download: Download row (target, media kind, release title)
            content_path: Path reported by the download client, if any
            destination_folder: Library folder of the movie or series

        Returns:
            ImportResult with one entry per imported file

        Raises:
            MediaImportError: content missing, no video file, no matching episode
        """


class FileSystemImporter(MediaImporter):
    """
    Importer for download clients that share a file system with this service.

    path_prefixes are tried in front of client paths that are not visible
    as-is (client running in another container with a different mount).
    """

    def __init__(self, path_prefixes: Sequence[str] = ("/data",)):
        self.path_prefixes = list(path_prefixes)

    # ===========================================================================
    # Locating content
    # ===========================================================================

    def candidate_paths(self, download: Download, content_path: Optional[str]) -> List[Path]:
        raw = []
        if content_path:
            raw.append(content_path)
        if download.save_path:
            raw.append(os.path.join(download.save_path, download.title))
            raw.append(download.save_path)
        candidates = []
        for path in raw:
            candidates.append(Path(path))
            for prefix in self.path_prefixes:
                candidates.append(Path(prefix) / path.lstrip("/"))
        return candidates

    def locate(self, download: Download, content_path: Optional[str]) -> Path:
        for candidate in self.candidate_paths(download, content_path):
            if candidate.exists():
                return candidate
        raise MediaImportError(
            f"Content path not accessible: {content_path or download.save_path}"
        )

    @staticmethod
    def find_video_files(path: Path) -> List[Path]:
        """Video files under a path, largest first, samples skipped."""
        if path.is_file():
            files = [path]
        else:
            files = [p for p in path.rglob("*") if p.is_file()]
        videos = [
            p for p in files
            if p.suffix.lower() in VIDEO_EXTENSIONS and not SAMPLE_PATTERN.search(p.stem)
        ]
        return sorted(videos, key=lambda p: p.stat().st_size, reverse=True)

    # ===========================================================================
    # Placing files
    # ===========================================================================

    @staticmethod
    def _link_or_copy(source: Path, target: Path) -> bool:
        """Hardlink, or copy across file systems. Returns True for a hardlink."""
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            target.unlink()
        try:
            os.link(str(source), str(target))
            return True
        except OSError as e:
            logger.warning(f"Hardlink failed ({e}), copying {source.name} instead")
        shutil.copy2(str(source), str(target))
        return False

    def _describe(self, source: Path, destination: Path, download: Download, hardlinked: bool,
                  season: Optional[int] = None, episode: Optional[int] = None) -> ImportedFile:
        quality = release_parser.detect_quality(source.name)
        if quality == "Unknown" and download.quality:
            quality = download.quality
        return ImportedFile(
            source_path=str(source),
            destination_path=str(destination),
            quality=quality,
            season_number=season,
            episode_number=episode,
            video_codec=release_parser.parse_video_codec(source.name),
            audio_codec=release_parser.parse_audio_codec(source.name),
            release_group=release_parser.parse_release_group(download.title),
            hardlinked=hardlinked,
        )

    def _select_episode_files(self, download: Download, videos: List[Path]):
        """(file, season, episode) triples for a TV download."""
        selected = []
        for video in videos:
            info = release_parser.parse_episode_from_filename(video.name)
            if not info or info.season != download.season_number:
                continue
            if download.episode_number is not None and info.episode != download.episode_number:
                continue
            if any(s[2] == info.episode for s in selected):
                continue
            selected.append((video, info.season, info.episode))

        # Single-file episode release named without an episode marker
        if not selected and download.episode_number is not None and len(videos) == 1:
            selected.append((videos[0], download.season_number, download.episode_number))
        return selected

    def _import_sync(self, download: Download, content_path: Optional[str],
                     destination_folder: str) -> ImportResult:
        source_root = self.locate(download, content_path)
        videos = self.find_video_files(source_root)
        if not videos:
            raise MediaImportError(f"No video files found in {source_root}")

        result = ImportResult()
        destination_root = Path(destination_folder)

        if download.media_kind == MediaKind.MOVIE.value:
            video = videos[0]
            target = destination_root / video.name
            hardlinked = self._link_or_copy(video, target)
            result.files.append(self._describe(video, target, download, hardlinked))
            return result

        selected = self._select_episode_files(download, videos)
        if not selected:
            raise MediaImportError(
                f"No file matching S{download.season_number:02d}"
                f"{'' if download.episode_number is None else f'E{download.episode_number:02d}'}"
                f" in {source_root}"
            )
        for video, season, episode in selected:
            target = destination_root / f"Season {season:02d}" / video.name
            hardlinked = self._link_or_copy(video, target)
            result.files.append(self._describe(video, target, download, hardlinked, season, episode))
        return result

    async def import_download(self, download: Download, content_path: Optional[str],
                              destination_folder: str) -> ImportResult:
        result = await asyncio.to_thread(self._import_sync, download, content_path, destination_folder)
        logger.info(f"Imported {len(result.files)} file(s) for download {download.id} into {destination_folder}")
        return result
