import asyncio
import json
from types import SimpleNamespace

import pytest

from dermtrack import codec
from dermtrack.config import Config
from dermtrack.errors import ConfigurationError, ResponseFormatError
from dermtrack.inference import InferenceClient, Ok, SchemaError, parse_analysis, parse_comparison
from dermtrack.schemas import Confidence

from conftest import png_bytes


class FakeCompletions:
    def __init__(self, content):
        self.content = content
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_sdk(content):
    completions = FakeCompletions(content)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


ANALYSIS_PAYLOAD = {
    "conditionName": "Eczema",
    "confidence": "Medium",
    "description": "Dry, itchy patches.",
    "recommendations": ["Moisturize daily.", Config.DISCLAIMER],
}

COMPARISON_PAYLOAD = {
    "changeSummary": "Shows signs of improvement",
    "keyObservations": ["Less redness"],
    "recommendation": "Discuss the changes with a dermatologist.",
    "updatedConditionAssessment": "Signs of resolution",
    "postComparisonCondition": "Eczema",
}


def test_parse_analysis_accepts_valid_payload():
    parsed = parse_analysis(json.dumps(ANALYSIS_PAYLOAD))

    assert isinstance(parsed, Ok)
    assert parsed.value.condition_name == "Eczema"
    assert parsed.value.confidence is Confidence.MEDIUM
    assert parsed.value.recommendations[-1] == Config.DISCLAIMER


def test_parse_analysis_maps_unknown_confidence():
    payload = dict(ANALYSIS_PAYLOAD, confidence="Very likely")

    result = parse_analysis(json.dumps(payload)).value
    assert result.confidence is Confidence.UNRECOGNIZED
    assert result.confidence_label == "Very likely"


def test_raw_confidence_label_survives_a_reload():
    payload = dict(ANALYSIS_PAYLOAD, confidence="Moderate")
    result = parse_analysis(json.dumps(payload)).value

    dumped = result.model_dump(mode="json", by_alias=True)
    assert dumped["confidence"] == "Unrecognized"
    assert dumped["confidenceLabel"] == "Moderate"
    assert type(result).model_validate(dumped) == result


def test_parse_analysis_appends_missing_disclaimer():
    payload = dict(ANALYSIS_PAYLOAD, recommendations=["Moisturize daily."])

    recommendations = parse_analysis(json.dumps(payload)).value.recommendations
    assert recommendations == ["Moisturize daily.", Config.DISCLAIMER]


@pytest.mark.parametrize("text", [
    "",
    None,
    "not json at all",
    "[1, 2, 3]",
    json.dumps({k: v for k, v in ANALYSIS_PAYLOAD.items() if k != "description"}),
    json.dumps(dict(ANALYSIS_PAYLOAD, recommendations="just one string")),
])
def test_parse_analysis_reports_schema_errors(text):
    assert isinstance(parse_analysis(text), SchemaError)


def test_parse_comparison_requires_every_field():
    incomplete = {k: v for k, v in COMPARISON_PAYLOAD.items() if k != "postComparisonCondition"}

    assert isinstance(parse_comparison(json.dumps(COMPARISON_PAYLOAD)), Ok)
    assert isinstance(parse_comparison(json.dumps(incomplete)), SchemaError)


def test_missing_credential_is_a_configuration_error(monkeypatch):
    monkeypatch.delenv(Config.API_KEY_ENV, raising=False)
    client = InferenceClient()
    handle = codec.make_handle(png_bytes(), "lesion.png")

    with pytest.raises(ConfigurationError):
        asyncio.run(client.analyze(handle))
    with pytest.raises(ConfigurationError):
        asyncio.run(client.compare(handle, handle))


def test_analyze_sends_one_image_with_schema():
    sdk, completions = fake_sdk(json.dumps(ANALYSIS_PAYLOAD))
    client = InferenceClient(client=sdk)
    handle = codec.make_handle(png_bytes(), "lesion.png")

    result = asyncio.run(client.analyze(handle))

    assert result.condition_name == "Eczema"
    request = completions.calls[0]
    assert request["messages"][0] == {"role": "system", "content": Config.ANALYSIS_INSTRUCTION}
    content = request["messages"][1]["content"]
    assert content[0]["image_url"]["url"] == codec.encode(handle)
    assert request["response_format"]["type"] == "json_schema"
    assert request["response_format"]["json_schema"]["schema"]["required"] == [
        "conditionName", "confidence", "description", "recommendations",
    ]


def test_compare_keeps_before_after_order():
    sdk, completions = fake_sdk(json.dumps(COMPARISON_PAYLOAD))
    client = InferenceClient(client=sdk)
    before = codec.make_handle(png_bytes((10, 10, 10)), "before.png")
    after = codec.make_handle(png_bytes((250, 250, 250)), "after.png")

    result = asyncio.run(client.compare(before, after))

    assert result.change_summary == "Shows signs of improvement"
    images = [part["image_url"]["url"] for part in completions.calls[0]["messages"][1]["content"] if part["type"] == "image_url"]
    assert images == [codec.encode(before), codec.encode(after)]


def test_malformed_response_raises_response_format_error(caplog):
    sdk, _ = fake_sdk("Sorry, I cannot help with that.")
    client = InferenceClient(client=sdk)
    handle = codec.make_handle(png_bytes(), "lesion.png")

    with pytest.raises(ResponseFormatError) as excinfo:
        asyncio.run(client.analyze(handle))

    assert excinfo.value.payload == "Sorry, I cannot help with that."
    assert "Sorry, I cannot help" not in str(excinfo.value)
    assert "Sorry, I cannot help" in caplog.text
