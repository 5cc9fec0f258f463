"""Download resolved media to disk and expire it later."""

import asyncio
import logging
import os
import random
import shutil
import time
import uuid
import zipfile
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.base import BaseScheduler
from curl_cffi import CurlError

from data.config import config
from douyin_api.direct_api import DirectApiStrategy
from douyin_api.exceptions import DouyinDownloadError, DouyinInvalidRequestError
from douyin_api.models import Artifact, DownloadTarget

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (403, 429, 500, 502, 503, 504)


def _download_headers() -> dict[str, str]:
    douyin_config = config.get("douyin", {})
    return {
        "User-Agent": douyin_config.get("user_agent", ""),
        "Referer": douyin_config.get("referer", "https://www.douyin.com/"),
        "Accept": "*/*",
        "Accept-Encoding": "identity;q=1, *;q=0",
        "Range": "bytes=0-",
    }


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.debug(f"Could not remove {path}: {e}")


async def download_file(
    url: str,
    path: str,
    session=None,
    max_retries: Optional[int] = None,
    base_delay: float = 1.0,
    chunk_size: int = 65536,
) -> None:
    """Stream a media URL to a file.

    CDN hiccups (403/429/5xx, curl errors) are retried with exponential
    backoff. A partially written file is removed when the download fails.

    Args:
        url: Media URL
        path: Destination file path
        session: curl_cffi-style session (default: shared impersonating session)
        max_retries: Attempts before giving up (default from config)
        base_delay: Base backoff delay in seconds
        chunk_size: Streaming chunk size in bytes

    Raises:
        DouyinDownloadError: The file could not be downloaded
    """
    if max_retries is None:
        max_retries = config.get("retry", {}).get("download_max_retries", 3)
    timeout = config.get("timeouts", {}).get("download", 60)
    session = session or DirectApiStrategy.shared_session()

    for attempt in range(1, max_retries + 1):
        logger.debug(f"Download attempt {attempt}/{max_retries} for {url}")
        response = None
        try:
            response = await session.get(
                url,
                headers=_download_headers(),
                timeout=timeout,
                allow_redirects=True,
                stream=True,
            )
            status = response.status_code
            if status in (200, 206):
                downloaded = 0
                with open(path, "wb") as file:
                    async for chunk in response.aiter_content(chunk_size):
                        file.write(chunk)
                        downloaded += len(chunk)
                logger.debug(f"Downloaded {downloaded} bytes to {path}")
                return

            if status in RETRYABLE_STATUSES and attempt < max_retries:
                delay = base_delay * (2 ** (attempt - 1))
                jitter = delay * 0.1 * random.random()
                logger.warning(
                    f"CDN returned {status} for {url}, "
                    f"retry {attempt}/{max_retries} after {delay:.1f}s"
                )
                await asyncio.sleep(delay + jitter)
                continue

            logger.error(f"Media download failed with status {status} for {url}")
            raise DouyinDownloadError(f"Download failed with status {status}")

        except CurlError as e:
            _remove_file(path)
            if attempt < max_retries:
                delay = base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"curl_cffi error for {url}, "
                    f"retry {attempt}/{max_retries} after {delay:.1f}s: {e}"
                )
                await asyncio.sleep(delay)
                continue
            logger.error(f"curl_cffi download failed after {max_retries} attempts for {url}: {e}")
            raise DouyinDownloadError(f"Download failed: {e}") from e

        except BaseException:
            _remove_file(path)
            raise

        finally:
            if response is not None:
                try:
                    response.close()
                except Exception:
                    pass


def _write_zip(zip_path: str, files: list[str]) -> None:
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for file_path in files:
            archive.write(file_path, arcname=os.path.basename(file_path))


async def download_and_zip_images(urls: list[str], zip_path: str, temp_dir: str, session=None) -> None:
    """Download images in order and pack them into one zip archive.

    Images are saved as ``image_1.jpg``, ``image_2.jpg``... inside the
    archive. The temporary directory is removed whatever happens.
    """
    os.makedirs(temp_dir, exist_ok=True)
    try:
        files = []
        for index, url in enumerate(urls, start=1):
            image_path = os.path.join(temp_dir, f"image_{index}.jpg")
            await download_file(url, image_path, session=session)
            files.append(image_path)
        await asyncio.to_thread(_write_zip, zip_path, files)
        logger.info(f"Zipped {len(files)} images into {zip_path}")
    except BaseException:
        _remove_file(zip_path)
        raise
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def delete_file(path: str) -> None:
    if os.path.exists(path):
        _remove_file(path)
        logger.info(f"Deleted expired file: {path}")


def cleanup_old_files(directory: str, max_age_seconds: float) -> int:
    """Delete files (and leftover temp dirs) older than ``max_age_seconds``.

    Returns:
        Number of entries removed
    """
    if not os.path.isdir(directory):
        return 0

    now = time.time()
    deleted = 0
    for entry in os.scandir(directory):
        try:
            if now - entry.stat().st_mtime <= max_age_seconds:
                continue
            if entry.is_dir():
                shutil.rmtree(entry.path)
            else:
                os.remove(entry.path)
            deleted += 1
        except OSError as e:
            logger.warning(f"Could not remove {entry.path}: {e}")

    logger.info(f"Cleaned up {deleted} old files in {directory}")
    return deleted


class Materializer:
    """Turns a DownloadTarget into a file in the download directory.

    Every artifact gets a one-shot APScheduler job that deletes it once the
    expiry window has passed.

    Args:
        scheduler: Running APScheduler scheduler
        download_dir: Where to write files (default from config)
        expiry_hours: Artifact lifetime (default from config)
        session: curl_cffi-style session passed through to the downloader
    """

    def __init__(
        self,
        scheduler: BaseScheduler,
        download_dir: Optional[str] = None,
        expiry_hours: Optional[float] = None,
        session=None,
    ):
        download_config = config.get("download", {})
        self.scheduler = scheduler
        self.download_dir = download_dir or download_config.get("dir", "downloads")
        self.expiry_hours = expiry_hours or download_config.get("expiry_hours", 24)
        self.session = session

    async def materialize(self, target: DownloadTarget) -> Artifact:
        """Download the target and schedule its deletion.

        Raises:
            DouyinInvalidRequestError: The target has no media to download
            DouyinDownloadError: A download failed
        """
        os.makedirs(self.download_dir, exist_ok=True)
        file_id = str(uuid.uuid4())

        if target.type == "video":
            if not target.url:
                raise DouyinInvalidRequestError("Video target has no URL")
            path = os.path.join(self.download_dir, f"{file_id}.mp4")
            name = target.filename or f"{file_id}.mp4"
            await download_file(target.url, path, session=self.session)
        elif target.type == "images":
            if not target.urls:
                raise DouyinInvalidRequestError("Image target has no URLs")
            path = os.path.join(self.download_dir, f"{file_id}.zip")
            name = f"{target.prefix or file_id}.zip"
            temp_dir = os.path.join(self.download_dir, f"temp_{file_id}")
            await download_and_zip_images(target.urls, path, temp_dir, session=self.session)
        else:
            raise DouyinInvalidRequestError(f"Unknown media type: {target.type}")

        expire_at = datetime.now(timezone.utc) + timedelta(hours=self.expiry_hours)
        self.scheduler.add_job(
            delete_file,
            "date",
            run_date=expire_at,
            args=[path],
            id=f"delete_{file_id}",
            misfire_grace_time=None,
        )
        logger.info(f"Materialized {target.type} as {path}, expires at {expire_at:%Y-%m-%d %H:%M}")
        return Artifact(path=path, name=name, expire_at=expire_at)
