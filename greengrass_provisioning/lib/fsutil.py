from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def atomic_write_text(path: str | Path, contents: str, *, mode: int = 0o644) -> None:
    """Replace ``path`` with ``contents`` so readers never see a partial file.

    The data goes to a uniquely named sibling temp file first, then
    ``os.replace`` swaps it in. The parent directory is created if missing.
    """

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(contents)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, p)
    except BaseException:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass
        raise
    os.chmod(p, mode)


def write_text_with_mode(path: str | Path, contents: str, *, mode: int) -> None:
    """Write ``contents`` to ``path`` and force its permission bits to ``mode``.

    The file is opened with ``mode`` already applied so a fresh private key is
    never readable by group/other, and chmod-ed afterwards because an existing
    file keeps its old bits on open.
    """

    p = Path(path)
    fd = os.open(str(p), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(contents)
    os.chmod(p, mode)
    logger.debug("Wrote %s (mode=%o)", str(p), mode)


def file_mode(path: str | Path) -> int:
    return Path(path).stat().st_mode & 0o777
