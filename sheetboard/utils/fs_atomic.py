"""Atomic file replacement for JSON documents on local disk."""

from __future__ import annotations

import os
import uuid
from pathlib import Path
from typing import Union

Pathish = Union[str, Path]

__all__ = ["fsync_dir", "atomic_write_text"]


def fsync_dir(dir_path: Pathish) -> None:
    """Fsync a directory so a rename survives a crash. No-op if it is missing."""
    d = Path(dir_path)
    if not d.exists() or os.name == "nt":
        return
    fd = os.open(str(d), os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def atomic_write_text(dst: Pathish, text: str, encoding: str = "utf-8") -> None:
    """Write ``text`` to ``dst`` via a same-directory temp file and os.replace.

    Readers observe either the old document or the new one, never a torn write.
    """
    dst_path = Path(dst)
    dst_dir = dst_path.parent
    dst_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = dst_dir / f".{dst_path.name}.tmp-{os.getpid()}-{uuid.uuid4().hex[:8]}"

    try:
        with open(tmp_path, "w", encoding=encoding) as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, dst_path)
        fsync_dir(dst_dir)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
