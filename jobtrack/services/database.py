from __future__ import annotations

from pathlib import Path
from typing import Optional

import aiosqlite

from jobtrack.services.config import get_settings


async def connect_db(path: Optional[Path] = None) -> aiosqlite.Connection:
    if path is None:
        path = get_settings().resolved_database_path
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA foreign_keys = ON;")
    return conn
