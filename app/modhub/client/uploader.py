"""
Presigned multi-file uploader.

Runs outside the web app (CLI tools, integration scripts): for each file it asks the
API for a presigned URL, streams the bytes straight to object storage, then
finalizes the record. Files are uploaded one after another.
"""
from __future__ import annotations

import logging
import mimetypes
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urljoin

import requests

logger = logging.getLogger(__name__)

CHUNK_SIZE = 256 * 1024
API_TIMEOUT = 30
PUT_TIMEOUT = 300


class UploadError(RuntimeError):
    def __init__(self, message: str, *, file_name: str | None = None):
        super().__init__(message)
        self.file_name = file_name


@dataclass
class FileProgress:
    file_name: str
    progress: int = 0  # 0..100
    completed: bool = False
    error: str | None = None
    record_id: int | None = None
    url: str | None = None


ProgressCallback = Callable[[list[FileProgress], float], None]


def overall_progress(entries: list[FileProgress]) -> float:
    """(completed files + fraction of the in-flight file) / total files, as a percentage."""
    if not entries:
        return 0.0
    completed = sum(1 for e in entries if e.completed)
    in_flight = next((e for e in entries if not e.completed and not e.error), None)
    fraction = in_flight.progress / 100 if in_flight is not None else 0.0
    return min(100.0, (completed + fraction) / len(entries) * 100)


class _ProgressReader:
    """File-like body for requests: known length (no chunked encoding) and a callback per read."""

    def __init__(self, fh, size: int, on_read: Callable[[int], None], chunk_size: int = CHUNK_SIZE):
        self._fh = fh
        self._size = size
        self._sent = 0
        self._on_read = on_read
        self._chunk_size = chunk_size

    def __len__(self) -> int:
        return self._size

    def read(self, amt: int = -1) -> bytes:
        if amt is None or amt < 0 or amt > self._chunk_size:
            amt = self._chunk_size
        data = self._fh.read(amt)
        if data:
            self._sent += len(data)
            self._on_read(self._sent)
        return data


class PresignedUploader:
    def __init__(
        self,
        base_url: str,
        game_slug: str,
        mod_id: int,
        session: requests.Session | None = None,
        on_progress: ProgressCallback | None = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.game_slug = game_slug
        self.mod_id = mod_id
        self.session = session or requests.Session()
        self.on_progress = on_progress
        self.entries: list[FileProgress] = []

    def _url(self, path_or_url: str) -> str:
        # Local storage hands out app-relative URLs; S3 hands out absolute ones.
        return urljoin(self.base_url, path_or_url)

    def _report(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self.entries, overall_progress(self.entries))

    def _post_json(self, path: str, payload: dict) -> dict:
        resp = self.session.post(self._url(path), json=payload, timeout=API_TIMEOUT)
        if resp.status_code >= 400:
            try:
                message = resp.json().get("error") or resp.reason
            except ValueError:
                message = resp.reason
            raise UploadError(f"{path} failed ({resp.status_code}): {message}")
        return resp.json()

    def upload_files(self, files: Iterable[str | os.PathLike], file_type: str = "mod") -> list[FileProgress]:
        """
        Uploads every file in order and returns the progress entries.
        Raises UploadError on the first failure; files before it stay uploaded.
        """
        paths = [Path(f) for f in files]
        self.entries = [FileProgress(file_name=p.name) for p in paths]
        for path, entry in zip(paths, self.entries):
            try:
                self._upload_one(path, entry, file_type)
            except (UploadError, requests.RequestException, OSError) as e:
                entry.error = str(e)
                self._report()
                logger.warning("Upload failed file=%s: %s", entry.file_name, e)
                if isinstance(e, UploadError):
                    e.file_name = entry.file_name
                    raise
                raise UploadError(str(e), file_name=entry.file_name) from e
        return self.entries

    def _upload_one(self, path: Path, entry: FileProgress, file_type: str) -> None:
        entry.progress = 0
        self._report()

        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        size = path.stat().st_size
        presigned = self._post_json(
            "/api/upload/presigned-url",
            {
                "gameSlug": self.game_slug,
                "modId": self.mod_id,
                "fileType": file_type,
                "fileName": path.name,
                "contentType": content_type,
            },
        )
        entry.record_id = presigned["recordId"]

        def _on_read(sent: int) -> None:
            pct = int(sent * 100 / size) if size else 100
            # 100 is reserved for "finalized".
            entry.progress = max(entry.progress, min(pct, 99))
            self._report()

        with path.open("rb") as fh:
            resp = self.session.put(
                self._url(presigned["presignedUrl"]),
                data=_ProgressReader(fh, size, _on_read),
                headers={"Content-Type": content_type},
                timeout=PUT_TIMEOUT,
            )
        if resp.status_code >= 400:
            raise UploadError(f"Storage PUT failed ({resp.status_code})")

        result = self._post_json(
            "/api/upload/finalize",
            {
                "recordId": presigned["recordId"],
                "fileType": file_type,
                "storageKey": presigned["storageKey"],
                "fileSize": size,
            },
        )
        entry.url = result.get("url")
        entry.progress = 100
        entry.completed = True
        self._report()
        logger.info("Uploaded %s (%s bytes) record_id=%s", entry.file_name, size, entry.record_id)
