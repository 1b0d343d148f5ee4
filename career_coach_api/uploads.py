"""Best-effort archive of raw uploaded resume files."""

import re
from pathlib import Path

import structlog

logger = structlog.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(file_name: str) -> str:
    """Reduce a client-supplied name to a plain basename."""
    name = _UNSAFE_CHARS.sub("_", Path(file_name).name).strip("._")
    return name or "resume"


class UploadArchive:
    """Writes uploads under ``<root>/<resume_id>/<file name>``.

    Failures are logged and reported as ``None``; they must never block an
    analysis.
    """

    def __init__(self, root: str | Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def save(self, resume_id: int, file_name: str, data: bytes) -> Path | None:
        target = self._root / str(resume_id) / safe_file_name(file_name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.warning(
                "Failed to archive uploaded file",
                resume_id=resume_id,
                file_name=file_name,
                error=str(e),
            )
            return None

        logger.info("Uploaded file archived", resume_id=resume_id, path=str(target), bytes=len(data))
        return target
