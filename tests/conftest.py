import io
from datetime import datetime, timezone

import pytest
from PIL import Image

from dermtrack import codec
from dermtrack.schemas import AnalysisResult, ComparisonResult, LesionImage
from dermtrack.session import SessionState
from dermtrack.storage import MemoryStore, PersistenceAdapter
from dermtrack.config import Config


class CountingStore(MemoryStore):
    def __init__(self, initial=None):
        super().__init__(initial)
        self.writes = []

    def set(self, key, value):
        self.writes.append(key)
        super().set(key, value)


class FakeInferenceClient:
    """Stands in for InferenceClient; records every call"""

    def __init__(self, analysis=None, comparison=None, error=None):
        self.analysis = analysis
        self.comparison = comparison
        self.error = error
        self.analyze_calls = []
        self.compare_calls = []

    async def analyze(self, handle):
        self.analyze_calls.append(handle)
        if self.error:
            raise self.error
        return self.analysis

    async def compare(self, before, after):
        self.compare_calls.append((before, after))
        if self.error:
            raise self.error
        return self.comparison


def png_bytes(color=(200, 80, 80)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color).save(buffer, format="PNG")
    return buffer.getvalue()


def stored_image(image_id: str, data: bytes, seconds: int) -> LesionImage:
    """An image as it looks after a reload: data URL only, no handle"""
    handle = codec.make_handle(data, image_id, "image/png")
    return LesionImage(
        id=image_id,
        image_data_url=codec.encode(handle),
        analysis_result=None,
        timestamp=datetime.fromtimestamp(seconds, tz=timezone.utc),
    )


@pytest.fixture
def analysis():
    return AnalysisResult(
        condition_name="Seborrheic keratosis",
        confidence="High",
        description="A benign, waxy growth.",
        recommendations=["Avoid scratching the area.", Config.DISCLAIMER],
    )


@pytest.fixture
def comparison():
    return ComparisonResult(
        change_summary="Appears stable",
        key_observations=["No change in diameter", "Color unchanged"],
        recommendation="Keep monitoring and consult a dermatologist.",
        updated_condition_assessment="Condition appears stable",
        post_comparison_condition="Seborrheic keratosis",
    )


@pytest.fixture
def store():
    return CountingStore()


@pytest.fixture
def persistence(store):
    return PersistenceAdapter(store)


@pytest.fixture
def session(persistence):
    return SessionState.load(persistence)
