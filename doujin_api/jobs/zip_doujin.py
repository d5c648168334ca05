from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import zipfile
from functools import partial
from pathlib import Path
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlparse

import aiohttp

from doujin_api.errors import ArchiveError
from doujin_api.models import Doujin

log = logging.getLogger(__name__)

# (image url, destination path) -> path actually written
Downloader = Callable[[str, Path], Awaitable[Path]]

_CT_EXT = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
}

def archive_name(doujin: Doujin) -> str:
    return f"{doujin.doujin_id}.zip"

def _guess_ext(url: str, content_type: Optional[str]) -> str:
    suffix = Path(urlparse(url).path).suffix.lower()
    if suffix in {".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp"}:
        return ".jpg" if suffix == ".jpeg" else suffix

    if content_type:
        ct = content_type.split(";")[0].strip().lower()
        if ct in _CT_EXT:
            return _CT_EXT[ct]
    return ".jpg"

async def download_image(
    session: aiohttp.ClientSession,
    url: str,
    dst_path: Path,
    *,
    attempts: int = 3,
    timeout_total: int = 45,
) -> Path:
    dst_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = dst_path.with_suffix(dst_path.suffix + ".part")

    last_err = ""
    for i in range(1, attempts + 1):
        try:
            timeout = aiohttp.ClientTimeout(total=timeout_total)
            async with session.get(url, timeout=timeout) as resp:
                if resp.status >= 400:
                    raise aiohttp.ClientResponseError(
                        resp.request_info, resp.history, status=resp.status, message=resp.reason or ""
                    )
                ext = _guess_ext(url, resp.headers.get("Content-Type"))
                if dst_path.suffix != ext:
                    dst_path = dst_path.with_suffix(ext)
                    tmp_path = dst_path.with_suffix(dst_path.suffix + ".part")

                with open(tmp_path, "wb") as f:
                    async for chunk in resp.content.iter_chunked(64 * 1024):
                        f.write(chunk)
                os.replace(tmp_path, dst_path)
                return dst_path
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            last_err = repr(e)
            if tmp_path.exists():
                tmp_path.unlink()
            if i < attempts:
                await asyncio.sleep(min(2 ** (i - 1), 8) + (0.1 * i))
    raise ArchiveError(f"Failed to download {url} after {attempts} attempts: {last_err}")

async def _download_all(images: List[str], dst_dir: Path, download: Downloader, concurrency: int) -> List[Path]:
    sem = asyncio.Semaphore(max(1, concurrency))
    width = max(3, len(str(len(images))))

    async def worker(index: int, url: str) -> Path:
        async with sem:
            try:
                return await download(url, dst_dir / f"{index:0{width}d}.jpg")
            except ArchiveError:
                raise
            except Exception as e:
                raise ArchiveError(f"Failed to download image {index} ({url}): {e!r}") from e

    tasks = [asyncio.create_task(worker(i, u)) for i, u in enumerate(images, start=1)]
    try:
        return list(await asyncio.gather(*tasks))
    finally:
        # first failure cancels the rest; all of them finish before the workspace is released
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

def _write_zip(archive_path: Path, files: List[Path]) -> None:
    with zipfile.ZipFile(archive_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for f in files:
            zf.write(f, arcname=f.name)

async def build_archive(
    doujin: Doujin,
    *,
    work_dir: Path,
    download: Optional[Downloader] = None,
    concurrency: int = 4,
    attempts: int = 3,
    user_agent: str = "doujin-api/0.1",
) -> bytes:
    """Download every image of `doujin` and return the bytes of a zip archive.

    All intermediate files live in a private temporary workspace under
    `work_dir` which is removed on every exit path, including cancellation.
    """
    if not doujin.images:
        raise ArchiveError(f"Doujin {doujin.doujin_id} has no images to archive")

    work_dir.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(prefix=f"{doujin.doujin_id}-", dir=work_dir) as tmp:
        workspace = Path(tmp)
        images_dir = workspace / "images"
        images_dir.mkdir()

        if download is None:
            async with aiohttp.ClientSession(headers={"User-Agent": user_agent}) as session:
                files = await _download_all(
                    doujin.images, images_dir, partial(download_image, session, attempts=attempts), concurrency
                )
        else:
            files = await _download_all(doujin.images, images_dir, download, concurrency)

        archive_path = workspace / archive_name(doujin)
        try:
            await asyncio.to_thread(_write_zip, archive_path, files)
            data = archive_path.read_bytes()
        except (OSError, zipfile.BadZipFile) as e:
            raise ArchiveError(f"Failed to write archive for {doujin.doujin_id}: {e!r}") from e

    log.info("Built archive %s (%s images, %s bytes)", archive_name(doujin), len(files), len(data))
    return data
