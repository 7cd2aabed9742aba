"""Retrieval of analysis result videos."""

import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

from thefit.adapters.result_storage import ResultStorage
from thefit.adapters.workout_api import WorkoutApiError, WorkoutApiProtocol
from thefit.models.exercise import ExerciseType
from thefit.models.user import UserProfile
from thefit.services.upload_keys import result_video_key, sanitize_name

logger = logging.getLogger(__name__)


class AnalyzedVideoErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    SERVER_ERROR = "server_error"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN = "unknown"


_USER_MESSAGES = {
    AnalyzedVideoErrorKind.NOT_FOUND: "해당 날짜/세트의 피드백 영상을 찾을 수 없습니다.",
    AnalyzedVideoErrorKind.SERVER_ERROR: "서버 오류가 발생했습니다. 잠시 후 다시 시도해주세요.",
    AnalyzedVideoErrorKind.MALFORMED_RESPONSE: "서버에서 영상 URL을 제공하지 못했습니다.",
    AnalyzedVideoErrorKind.UNKNOWN: "피드백 영상 URL 발급 중 문제가 발생했습니다.",
}


class AnalyzedVideoError(Exception):
    """A result video URL could not be obtained."""

    def __init__(self, kind: AnalyzedVideoErrorKind, detail: str = ""):
        super().__init__(detail or kind.value)
        self.kind = kind
        self.detail = detail

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.kind]


def classify_api_error(error: WorkoutApiError) -> AnalyzedVideoErrorKind:
    if error.malformed:
        return AnalyzedVideoErrorKind.MALFORMED_RESPONSE
    if error.status_code == 404:
        return AnalyzedVideoErrorKind.NOT_FOUND
    if error.status_code is not None and error.status_code >= 500:
        return AnalyzedVideoErrorKind.SERVER_ERROR
    return AnalyzedVideoErrorKind.UNKNOWN


class StoragePermissionDenied(Exception):
    """The user refused the storage permission needed to keep a result video."""

    CHOICES = ("open_settings", "retry")

    def __init__(self, url: str):
        super().__init__("영상을 저장하기 위해 저장소 권한이 필요합니다.")
        self.url = url
        self.choices = self.CHOICES


class PermissionGate(Protocol):
    """Platform storage-permission prompt."""

    async def request_storage_permission(self) -> bool:
        ...


class AnalyzedVideoService:
    """Resolves the URL of a set's analysis result video.

    The workout API is asked first. When it fails, the result bucket is
    probed at the conventional key; only if that misses too is the API
    failure surfaced, classified for the user.
    """

    def __init__(
        self,
        api: WorkoutApiProtocol,
        storage: Optional[ResultStorage] = None,
        result_folder: str = "fitvideoresult",
    ):
        self.api = api
        self.storage = storage
        self.result_folder = result_folder

    async def get_url(
        self,
        user: UserProfile,
        yyyymmdd: str,
        set_no: int,
        exercise: ExerciseType,
        download: bool = True,
    ) -> str:
        """Presigned (or public) URL of the result video.

        Raises:
            AnalyzedVideoError: If neither the API nor the bucket has it.
        """
        try:
            return await self.api.get_analyzed_video_url(
                yyyymmdd,
                set_no,
                user.id,
                sanitize_name(user),
                exercise,
                download=download,
            )
        except WorkoutApiError as e:
            logger.error("❌ 피드백 영상 URL 발급 실패 (%s set%d): %s", yyyymmdd, set_no, e)
            api_error = e

        fallback = await self._probe_storage(user, yyyymmdd, set_no, exercise)
        if fallback:
            logger.info("Result video found in storage: %s", fallback)
            return fallback

        raise AnalyzedVideoError(classify_api_error(api_error), str(api_error)) from api_error

    async def _probe_storage(
        self,
        user: UserProfile,
        yyyymmdd: str,
        set_no: int,
        exercise: ExerciseType,
    ) -> Optional[str]:
        if self.storage is None:
            return None
        key = result_video_key(user, yyyymmdd, exercise, set_no, folder=self.result_folder)
        # boto3 is blocking
        return await asyncio.to_thread(self.storage.find_public_url, key)

    async def open(self, url: str, permission_gate: PermissionGate) -> str:
        """Check storage permission before handing ``url`` to the player.

        Raises:
            StoragePermissionDenied: If the permission was refused.
        """
        if not await permission_gate.request_storage_permission():
            logger.warning("Storage permission denied")
            raise StoragePermissionDenied(url)
        return url
