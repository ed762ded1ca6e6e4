from __future__ import annotations
import logging
from pathlib import Path

from starlette.concurrency import run_in_threadpool

from ..errors import StorageFailure

log = logging.getLogger(__name__)

URL_PREFIX = "/uploads"


class ScreenshotStorage:
    """Files under a local directory, served by the app at /uploads."""

    def __init__(self, root: str, public_base_url: str = "") -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def _write(self, path: str, data: bytes) -> None:
        target = self.root / path
        target.parent.mkdir(parents=True, exist_ok=True)
        # never overwrite an earlier screenshot
        with open(target, "xb") as f:
            f.write(data)

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        try:
            await run_in_threadpool(self._write, path, data)
        except OSError as e:
            log.error("screenshot write failed for %s: %s", path, e)
            raise StorageFailure()
        return f"{self.public_base_url}{URL_PREFIX}/{path}"
