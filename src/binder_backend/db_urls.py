from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote


def _normalize_postgres(url: str) -> str:
    # 兼容 postgres:// 与默认 driver（psycopg2），统一落到 psycopg3
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    if url.startswith("postgresql+psycopg2://"):
        return url.replace("postgresql+psycopg2://", "postgresql+psycopg://", 1)
    return url


def normalize_database_url_for_async(database_url: str) -> str:
    """
    把 DATABASE_URL 规范化为运行时使用的异步 driver。

    - SQLite：sqlite+aiosqlite://...
    - PostgreSQL：postgresql+psycopg://... （psycopg3 原生支持 asyncio）
    """
    url = (database_url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return _normalize_postgres(url)


def normalize_database_url_for_alembic(database_url: str) -> str:
    """Alembic 走同步 engine，这里去掉 sqlite 的异步 driver。"""
    url = (database_url or "").strip()
    if not url:
        return url

    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://", 1)
    return _normalize_postgres(url)


def extract_sqlite_db_file_path(database_url: str) -> Path | None:
    """
    从 SQLite DATABASE_URL 推断数据库文件路径（尽力而为）。

    内存库或非 sqlite URL 返回 None。
    """

    url = (database_url or "").strip()
    url = url.split("#", 1)[0].split("?", 1)[0]
    if not url.lower().startswith("sqlite") or url.lower().endswith(":memory:"):
        return None

    sep = url.find("://")
    if sep == -1:
        return None

    rest = url[sep + 3 :]
    # 例：sqlite:///./dev.db -> "/./dev.db"，sqlite:////tmp/a.db -> "//tmp/a.db"
    file_path = unquote(rest[1:] if rest.startswith("/") else rest)
    if not file_path or file_path == ":memory:":
        return None
    return Path(file_path)


def ensure_sqlite_parent_dir(database_url: str) -> None:
    """确保 SQLite 数据库文件的父目录存在（如 `./.data/dev.db` 的 `.data/`）。"""

    path = extract_sqlite_db_file_path(database_url)
    if path is None or str(path.parent) in {"", "."}:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
