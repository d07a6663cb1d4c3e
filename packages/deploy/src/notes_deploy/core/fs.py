import os
import tempfile
from pathlib import Path


def safe_unlink(path: os.PathLike[str] | str) -> None:
    try:
        Path(path).unlink(missing_ok=True)
    except OSError:
        return


def atomic_write_text(path: Path, text: str, *, mode: int = 0o644) -> None:
    """
    Replace `path` with `text` through a single rename, so a run report or
    diagnostics file read mid-run is either the previous version or the new one.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    leftover: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            leftover = tmp.name
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.chmod(leftover, mode)
        os.replace(leftover, path)
        leftover = None
    finally:
        if leftover is not None:
            safe_unlink(leftover)
