import os
import re

BACKEND = os.getenv("SCREENSHOT_BACKEND", "local").lower()  # 'local' | 's3'

if BACKEND == "s3":
    from ._s3 import ScreenshotStorage as _ScreenshotStorage
else:
    from ._local import ScreenshotStorage as _ScreenshotStorage


def new_storage() -> "_ScreenshotStorage":
    if BACKEND == "s3":
        return _ScreenshotStorage.from_env()
    return _ScreenshotStorage(
        root=os.getenv("SCREENSHOT_DIR", "./uploads"),
        public_base_url=os.getenv("PUBLIC_BASE_URL", ""),
    )


_EXT_RE = re.compile(r"^[a-z0-9]{1,5}$")


def screenshot_path(registration_id: str, now_ms: int, filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if not _EXT_RE.match(ext):
        ext = "bin"
    return f"payment-screenshots/{registration_id}-{now_ms}.{ext}"


ScreenshotStorage = _ScreenshotStorage
__all__ = ["ScreenshotStorage", "new_storage", "screenshot_path", "BACKEND"]
