"""Copying files by hard link where possible and by content otherwise."""

from __future__ import annotations

import os
import shutil
import stat


def _describe(path: str | os.PathLike[str], mode: int) -> str:
    return f"{os.path.basename(os.fspath(path))} ({stat.filemode(mode)!r})"


def _copy_contents(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
    """Replace the contents of ``dst`` with those of ``src``, creating it if needed."""
    with open(src, "rb") as reader, open(dst, "wb") as writer:
        shutil.copyfileobj(reader, writer)
        writer.flush()
        os.fsync(writer.fileno())


def copy_file(src: str | os.PathLike[str], dst: str | os.PathLike[str]) -> None:
    """Copy the regular file ``src`` to ``dst``.

    Nothing is done when both names already refer to the same file. Otherwise a
    hard link is tried first and the contents are copied if linking fails.
    Raises ValueError when either side exists but is not a regular file, and
    OSError when the source cannot be read.
    """
    src_stat = os.stat(src)
    if not stat.S_ISREG(src_stat.st_mode):
        raise ValueError(f"CopyFile: non-regular source file {_describe(src, src_stat.st_mode)}")

    try:
        dst_stat = os.stat(dst)
    except FileNotFoundError:
        pass
    else:
        if not stat.S_ISREG(dst_stat.st_mode):
            raise ValueError(f"CopyFile: non-regular destination file {_describe(dst, dst_stat.st_mode)}")
        if os.path.samestat(src_stat, dst_stat):
            return

    try:
        os.link(src, dst)
        return
    except OSError:
        pass

    _copy_contents(src, dst)