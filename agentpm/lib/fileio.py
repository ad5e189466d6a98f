"""
Atomic file writes.

Every document agentpm owns is replaced whole: written to a sibling temp
file, flushed to disk, then renamed over the target. A reader sees either
the previous content or the new content, never a partial write.
"""

import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, content: str) -> None:
    """Write file atomically via temp + fsync + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
