"""Workout REST API adapter.

Wraps every call the client makes to the workout API so that the sync,
polling and upload layers only deal with validated payloads and a single
exception type.
"""

import logging
import time
from datetime import date
from pathlib import Path
from typing import Any, Optional, Protocol

import httpx
from pydantic import ValidationError

from thefit.core.config import get_settings
from thefit.models.exercise import ExerciseType
from thefit.models.schemas import UrlResponse, WorkoutsByDateResponse
from thefit.observability import get_metrics_backend

logger = logging.getLogger(__name__)


class WorkoutApiError(Exception):
    """Error talking to the workout API.

    ``status_code`` is None for transport failures. ``malformed`` marks a
    response that arrived but could not be used.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        malformed: bool = False,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.malformed = malformed


class WorkoutApiProtocol(Protocol):
    """Protocol defining the workout API interface."""

    async def get_workouts_by_date(
        self,
        user_id: int,
        day: date,
        exercise: ExerciseType,
    ) -> WorkoutsByDateResponse:
        """Sets created on ``day`` for one exercise."""
        ...

    async def get_analyzed_video_url(
        self,
        yyyymmdd: str,
        set_no: int,
        user_id: int,
        user_name: str,
        exercise: ExerciseType,
        download: bool = True,
    ) -> str:
        """Presigned GET URL of an analysis result video."""
        ...

    async def get_presigned_put_url(self, key: str, content_type: str = "video/mp4") -> str:
        """Presigned PUT URL for an upload key."""
        ...

    async def upload_to_presigned_url(
        self,
        url: str,
        video_path: Path,
        content_type: str = "video/mp4",
    ) -> None:
        """PUT a local video file to a presigned URL."""
        ...


class WorkoutApiClient:
    """httpx-based client for the workout API."""

    PROVIDER = "workout_api"

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._client = client
        self._owns_client = client is None
        self._metrics = get_metrics_backend()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "WorkoutApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _request_json(
        self,
        operation: str,
        path: str,
        params: Optional[dict[str, str]] = None,
    ) -> Any:
        """GET ``path`` and return the decoded JSON body.

        Raises:
            WorkoutApiError: On transport errors, non-2xx responses or a
                body that is not JSON.
        """
        client = await self._get_client()
        start_time = time.perf_counter()
        status_code = 0
        try:
            response = await client.get(path, params=params)
            status_code = response.status_code
            if not response.is_success:
                raise WorkoutApiError(
                    f"{operation} failed: API {response.status_code}",
                    status_code=response.status_code,
                )
            try:
                return response.json()
            except ValueError as e:
                raise WorkoutApiError(
                    f"{operation} returned a non-JSON body",
                    status_code=response.status_code,
                    malformed=True,
                ) from e
        except httpx.HTTPError as e:
            logger.warning("%s transport error: %s", operation, e)
            raise WorkoutApiError(f"{operation} transport error: {e}") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._metrics.observe_external_api(self.PROVIDER, operation, status_code, duration_ms)

    async def get_workouts_by_date(
        self,
        user_id: int,
        day: date,
        exercise: ExerciseType,
    ) -> WorkoutsByDateResponse:
        """Fetch the sets created on ``day`` for one exercise.

        Returns:
            Parsed payload including ``total_reps`` and ``items``.

        Raises:
            WorkoutApiError: If the call fails or the payload is malformed.
        """
        path = f"/workouts/users/{user_id}/date={day.isoformat()}"
        logger.debug("Fetching workouts: %s exercise=%s", path, exercise.value)
        payload = await self._request_json(
            "workouts_by_date",
            path,
            params={"exercise": exercise.value},
        )
        try:
            return WorkoutsByDateResponse.model_validate(payload)
        except ValidationError as e:
            raise WorkoutApiError(
                f"Malformed workouts payload: {e.error_count()} errors",
                status_code=200,
                malformed=True,
            ) from e

    async def get_analyzed_video_url(
        self,
        yyyymmdd: str,
        set_no: int,
        user_id: int,
        user_name: str,
        exercise: ExerciseType,
        download: bool = True,
    ) -> str:
        """Fetch the presigned URL of an analysis result video.

        Raises:
            WorkoutApiError: If the call fails or the response has no URL.
        """
        payload = await self._request_json(
            "analyzed_url_by_date",
            "/workouts/analyzed-url-by-date",
            params={
                "yyyymmdd": yyyymmdd,
                "set_no": str(set_no),
                "user_id": str(user_id),
                "user_name": user_name,
                "exercise": exercise.value,
                "download": "true" if download else "false",
            },
        )
        return self._require_url(payload, "analyzed_url_by_date")

    async def get_presigned_put_url(self, key: str, content_type: str = "video/mp4") -> str:
        """Fetch a presigned PUT URL for ``key``."""
        payload = await self._request_json(
            "presign_put",
            "/s3/presign",
            params={"key": key, "content_type": content_type},
        )
        return self._require_url(payload, "presign_put")

    async def upload_to_presigned_url(
        self,
        url: str,
        video_path: Path,
        content_type: str = "video/mp4",
    ) -> None:
        """PUT a local file to a presigned storage URL.

        Raises:
            WorkoutApiError: If the upload is rejected or the transport fails.
        """
        client = await self._get_client()
        start_time = time.perf_counter()
        status_code = 0
        try:
            response = await client.put(
                url,
                content=video_path.read_bytes(),
                headers={"Content-Type": content_type},
            )
            status_code = response.status_code
            if not response.is_success:
                raise WorkoutApiError(
                    f"Video upload rejected: {response.status_code}",
                    status_code=response.status_code,
                )
        except httpx.HTTPError as e:
            raise WorkoutApiError(f"Video upload transport error: {e}") from e
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._metrics.observe_external_api(self.PROVIDER, "video_put", status_code, duration_ms)

    @staticmethod
    def _require_url(payload: Any, operation: str) -> str:
        try:
            url = UrlResponse.model_validate(payload).url
        except ValidationError as e:
            raise WorkoutApiError(
                f"{operation} returned an unexpected payload",
                status_code=200,
                malformed=True,
            ) from e
        if not url:
            raise WorkoutApiError(
                f"{operation} response has no URL",
                status_code=200,
                malformed=True,
            )
        return url
