"""Upload of set videos through presigned URLs."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from thefit.adapters.workout_api import WorkoutApiError, WorkoutApiProtocol

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    key: str
    success: bool
    error: Optional[str] = None


class VideoUploader:
    """Presign an upload key through the workout API and PUT the file."""

    def __init__(self, api: WorkoutApiProtocol, content_type: str = "video/mp4"):
        self.api = api
        self.content_type = content_type

    async def upload(self, key: str, video_path: Path) -> UploadResult:
        """Upload ``video_path`` under ``key``.

        Args:
            key: Upload key built for the set.
            video_path: Local video file.

        Returns:
            UploadResult; failures are reported, not raised.
        """
        path = Path(video_path)
        if not path.is_file():
            logger.error("Video file not found: %s", path)
            return UploadResult(key=key, success=False, error=f"File not found: {path}")

        try:
            url = await self.api.get_presigned_put_url(key, self.content_type)
            await self.api.upload_to_presigned_url(url, path, self.content_type)
        except WorkoutApiError as e:
            logger.error("Video upload failed for %s: %s", key, e)
            return UploadResult(key=key, success=False, error=str(e))

        logger.info("Uploaded video %s (%d bytes)", key, path.stat().st_size)
        return UploadResult(key=key, success=True)
