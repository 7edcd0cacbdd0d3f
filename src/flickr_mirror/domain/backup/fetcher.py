"""
Conditional asset retrieval with atomic commit.

Downloads stream into a `.part` file next to the target and are moved into
place with os.replace, so an interrupted transfer never leaves a partial
file under the canonical name. The scrub pass treats an existing canonical
file as proof of a completed backup.
"""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import requests
from loguru import logger
from requests.exceptions import RequestException

CHUNK_SIZE = 64 * 1024
PART_SUFFIX = ".part"


class FetchOutcome(Enum):
    WRITTEN = "written"
    NOT_MODIFIED = "not_modified"
    FAILED = "failed"


@dataclass(frozen=True)
class FetchResult:
    outcome: FetchOutcome
    path: Path
    status_code: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome != FetchOutcome.FAILED

    @property
    def written(self) -> bool:
        return self.outcome == FetchOutcome.WRITTEN


def _if_modified_since(target: Path) -> Optional[str]:
    # Empty files count as missing
    try:
        stat = target.stat()
    except OSError:
        return None
    if stat.st_size == 0:
        return None
    mtime = stat.st_mtime
    return format_datetime(datetime.fromtimestamp(mtime, tz=timezone.utc), usegmt=True)


def _last_modified(response: requests.Response) -> Optional[float]:
    header = response.headers.get("Last-Modified")
    if not header:
        return None
    try:
        return parsedate_to_datetime(header).timestamp()
    except (TypeError, ValueError):
        return None


def _discard(part_path: Path) -> None:
    try:
        part_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"failed to remove temp file {part_path}: {e}")


def fetch_asset(
    session: requests.Session, source: str, target: Path, timeout: int = 60
) -> FetchResult:
    """Mirror `source` to `target` if the remote copy is newer.

    Returns:
        FetchResult with WRITTEN, NOT_MODIFIED (HTTP 304) or FAILED. Failures
        are reported, never raised.
    """
    target = Path(target)
    headers = {}
    since = _if_modified_since(target)
    if since:
        headers["If-Modified-Since"] = since

    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"failed to create {target.parent}: {e}")
        return FetchResult(FetchOutcome.FAILED, target, error=str(e))

    part_path = target.with_name(target.name + PART_SUFFIX)

    try:
        with session.get(source, headers=headers, stream=True, timeout=timeout) as response:
            if response.status_code == 304:
                return FetchResult(FetchOutcome.NOT_MODIFIED, target, 304)

            if not response.ok:
                return FetchResult(
                    FetchOutcome.FAILED,
                    target,
                    response.status_code,
                    f"HTTP {response.status_code} {response.reason}",
                )

            written = 0
            with open(part_path, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)

            expected = response.headers.get("Content-Length")
            encoded = response.headers.get("Content-Encoding")
            if expected and expected.isdigit() and not encoded and int(expected) != written:
                _discard(part_path)
                return FetchResult(
                    FetchOutcome.FAILED,
                    target,
                    response.status_code,
                    f"incomplete transfer: {written}/{expected} bytes",
                )

            os.replace(part_path, target)

            remote_mtime = _last_modified(response)
            if remote_mtime is not None:
                os.utime(target, (remote_mtime, remote_mtime))

            return FetchResult(FetchOutcome.WRITTEN, target, response.status_code)

    except (RequestException, OSError) as e:
        _discard(part_path)
        return FetchResult(FetchOutcome.FAILED, target, error=str(e))
