from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Optional

def _env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default

def _env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default

def _env_path(key: str, default: Path) -> Path:
    v = os.getenv(key)
    if not v:
        return default
    return Path(v)

@dataclass(frozen=True)
class Settings:
    # storage / db
    db_url: str
    data_dir: Path
    work_dir: Path

    # source site (ExHentai cookies)
    exh_base_url: str
    exh_member_id: str
    exh_pass_hash: str
    exh_igneous: str

    # telegraph
    telegraph_api_url: str
    telegraph_access_token: str
    telegraph_short_name: str
    telegraph_author_name: str
    telegraph_author_url: str
    telegraph_page_size: int

    # http
    request_timeout: float
    user_agent: str

    # image downloader (archives + scraping image pages)
    image_concurrency: int
    image_attempts: int

    @property
    def has_exh_credentials(self) -> bool:
        return bool(self.exh_member_id and self.exh_pass_hash)

    def exh_cookies(self) -> dict:
        cookies = {
            "ipb_member_id": self.exh_member_id,
            "ipb_pass_hash": self.exh_pass_hash,
        }
        if self.exh_igneous:
            cookies["igneous"] = self.exh_igneous
        return {k: v for k, v in cookies.items() if v}

    @staticmethod
    def from_env(data_dir: Optional[Path] = None) -> "Settings":
        data_dir = data_dir or _env_path("DATA_DIR", Path("data"))
        page_size = _env_int("TELEGRAPH_PAGE_SIZE", 30)
        if page_size < 1:
            page_size = 30

        return Settings(
            db_url=os.getenv("DB_URL", "sqlite:///data/doujins.db"),
            data_dir=data_dir,
            work_dir=_env_path("WORK_DIR", data_dir / "work"),
            exh_base_url=os.getenv("EXH_BASE_URL", "https://exhentai.org").rstrip("/"),
            exh_member_id=os.getenv("EXH_MEMBER_ID", ""),
            exh_pass_hash=os.getenv("EXH_PASS_HASH", ""),
            exh_igneous=os.getenv("EXH_IGNEOUS", ""),
            telegraph_api_url=os.getenv("TELEGRAPH_API_URL", "https://api.telegra.ph").rstrip("/"),
            telegraph_access_token=os.getenv("TELEGRAPH_ACCESS_TOKEN", ""),
            telegraph_short_name=os.getenv("TELEGRAPH_SHORT_NAME", "doujin-api"),
            telegraph_author_name=os.getenv("TELEGRAPH_AUTHOR_NAME", ""),
            telegraph_author_url=os.getenv("TELEGRAPH_AUTHOR_URL", ""),
            telegraph_page_size=page_size,
            request_timeout=_env_float("REQUEST_TIMEOUT", 30.0),
            user_agent=os.getenv("USER_AGENT", "doujin-api/0.1"),
            image_concurrency=max(1, _env_int("IMAGE_CONCURRENCY", 4)),
            image_attempts=max(1, _env_int("IMAGE_ATTEMPTS", 3)),
        )
