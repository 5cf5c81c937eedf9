"""
DermTrack - Workflows
Upload -> analyze -> append, and select two images -> compare.

Each workflow instance keeps its own progress and result. Shared state is only
touched through SessionState, and only after the external call succeeded.
"""

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from dermtrack import codec
from dermtrack.errors import (
    DecodeError,
    DermTrackError,
    PatientNotFoundError,
    SameImageError,
)
from dermtrack.inference import InferenceClient
from dermtrack.schemas import (
    BinaryHandle,
    ComparisonResult,
    EncodedOnly,
    ImageSource,
    LesionImage,
    LiveHandle,
)
from dermtrack.session import SessionState, new_id

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    IDLE = "idle"
    SELECTING = "selecting"
    UPLOADING = "uploading"
    COMPARING = "comparing"
    SUCCESS = "success"
    FAILED = "failed"
    ABANDONED = "abandoned"


def user_message(error: Exception, comparison: bool = False) -> str:
    """Texto mostrable al usuario para cualquier fallo de un flujo"""
    if isinstance(error, DecodeError):
        return "One of the stored images could not be read, so the comparison could not be made."
    if isinstance(error, DermTrackError):
        return str(error)
    if comparison:
        return f"An unknown error occurred during comparison: {error}"
    return f"An unknown error occurred: {error}"


def image_source(image: LesionImage) -> ImageSource:
    """Live bytes for images uploaded in this process, the data URL otherwise"""
    if image.binary_handle is not None:
        return LiveHandle(handle=image.binary_handle)
    return EncodedOnly(image_id=image.id, data_url=image.image_data_url)


async def resolve_handle(source: ImageSource, name: str) -> BinaryHandle:
    if isinstance(source, LiveHandle):
        return source.handle
    return await asyncio.to_thread(codec.decode, source.data_url, name)


# ============================================================================
# Subida y análisis
# ============================================================================

class UploadWorkflow:
    def __init__(self, session: SessionState, client: InferenceClient, patient_id: str):
        self.session = session
        self.client = client
        self.patient_id = patient_id
        self.state = WorkflowState.IDLE
        self.error: Optional[str] = None
        self.image: Optional[LesionImage] = None

    def abandon(self):
        """Drops the pending result; nothing is merged when it arrives"""
        if self.state in (WorkflowState.IDLE, WorkflowState.UPLOADING):
            self.state = WorkflowState.ABANDONED

    async def run(self, data: bytes, filename: str = "upload", content_type: Optional[str] = None) -> Optional[LesionImage]:
        """
        Encodes and analyzes the image concurrently, then appends it to the patient.

        Returns:
            The new LesionImage, or None if the workflow failed or was abandoned
        """
        if self.state == WorkflowState.ABANDONED:
            return None
        self.state = WorkflowState.UPLOADING
        self.error = None
        self.image = None

        try:
            self.session.get_patient(self.patient_id)
            handle = codec.make_handle(data, filename, content_type)
            data_url, result = await asyncio.gather(
                asyncio.to_thread(codec.encode, handle),
                self.client.analyze(handle),
            )
        except Exception as e:
            if self.state == WorkflowState.ABANDONED:
                return None
            return self._fail(e)

        if self.state == WorkflowState.ABANDONED:
            logger.info(f"Upload for patient {self.patient_id} abandoned; discarding analysis")
            return None

        image = LesionImage(
            id=new_id("img_", self.session.image_ids()),
            image_data_url=data_url,
            binary_handle=handle,
            analysis_result=result,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            self.session.append_image(self.patient_id, image)
        except PatientNotFoundError as e:
            return self._fail(e)

        self.image = image
        self.state = WorkflowState.SUCCESS
        logger.info(f"Image {image.id} analyzed for patient {self.patient_id}: {result.condition_name}")
        return image

    def _fail(self, error: Exception) -> None:
        if isinstance(error, DermTrackError):
            logger.warning(f"Upload for patient {self.patient_id} failed: {error}")
        else:
            logger.error(f"Upload for patient {self.patient_id} failed", exc_info=error)
        self.error = user_message(error)
        self.state = WorkflowState.FAILED
        return None


# ============================================================================
# Comparación
# ============================================================================

class ComparisonWorkflow:
    """
    Compares two images of one patient.

    The first selected image is "before" and the second "after", whatever
    their timestamps. The result lives only on this object.
    """

    def __init__(self, session: SessionState, client: InferenceClient, patient_id: str):
        self.session = session
        self.client = client
        self.patient_id = patient_id
        self.state = WorkflowState.IDLE
        self.selection: List[str] = []
        self.error: Optional[str] = None
        self.result: Optional[ComparisonResult] = None

    def select(self, image_id: str):
        """Adds an image to the selection; a third pick replaces the "after" slot"""
        self.session.get_image(self.patient_id, image_id)
        if len(self.selection) < 2:
            self.selection = [*self.selection, image_id]
        else:
            self.selection = [self.selection[0], image_id]
        self.state = WorkflowState.SELECTING

    def clear(self):
        self.selection = []
        self.result = None
        self.error = None
        self.state = WorkflowState.IDLE

    def abandon(self):
        """Drops the pending comparison; its result is discarded when it arrives"""
        if self.state == WorkflowState.COMPARING:
            self.state = WorkflowState.ABANDONED

    def _is_stale(self, requested: List[str]) -> bool:
        return self.state == WorkflowState.ABANDONED or self.selection != requested

    async def compare(self) -> Optional[ComparisonResult]:
        self.result = None
        self.error = None
        if len(self.selection) != 2:
            self.error = "Select two images to compare."
            self.state = WorkflowState.FAILED
            return None

        requested = list(self.selection)
        before_id, after_id = requested
        self.state = WorkflowState.COMPARING
        try:
            if before_id == after_id:
                raise SameImageError("Select two different images to compare.")
            before = self.session.get_image(self.patient_id, before_id)
            after = self.session.get_image(self.patient_id, after_id)

            before_handle = await resolve_handle(image_source(before), f"img1_{before.id}")
            after_handle = await resolve_handle(image_source(after), f"img2_{after.id}")
            result = await self.client.compare(before_handle, after_handle)
        except Exception as e:
            if self._is_stale(requested):
                return None
            if isinstance(e, DermTrackError):
                logger.warning(f"Comparison for patient {self.patient_id} failed: {e}")
            else:
                logger.error(f"Comparison for patient {self.patient_id} failed", exc_info=e)
            self.error = user_message(e, comparison=True)
            self.state = WorkflowState.FAILED
            return None

        if self._is_stale(requested):
            logger.info(f"Comparison of {before_id} and {after_id} for patient {self.patient_id} is stale; discarding result")
            return None

        self.result = result
        self.state = WorkflowState.SUCCESS
        return result

    async def run(self, before_id: str, after_id: str) -> Optional[ComparisonResult]:
        """Selects `before_id` then `after_id` and compares them"""
        self.clear()
        try:
            self.select(before_id)
            self.select(after_id)
        except DermTrackError as e:
            logger.warning(f"Comparison selection for patient {self.patient_id} failed: {e}")
            self.error = user_message(e, comparison=True)
            self.state = WorkflowState.FAILED
            return None
        return await self.compare()
