import json
from unittest.mock import MagicMock, patch

import pytest

from clinic_models import DayOfWeek


@pytest.fixture
def genai():
    with patch("clinic_generators.data_factory.genai") as mocked:
        yield mocked


@pytest.fixture
def generator(genai):
    from clinic_generators.data_factory import DataGenerator
    return DataGenerator(api_key="test-key")


def respond(genai, text):
    response = MagicMock()
    response.text = text
    response.usage_metadata.prompt_token_count = 1000
    response.usage_metadata.candidates_token_count = 2000
    genai.GenerativeModel.return_value.generate_content.return_value = response


ROSTER = [
    {
        "id": "doc_001",
        "name": "Dr. Kavya Rao",
        "average_consulting_time": 10,
        "consultation_status": "out",
        "availability": {
            "monday": [{"from": "09:00 AM", "to": "01:00 PM", "label": "Morning"}],
            "Funday": [{"from": "09:00 AM", "to": "10:00 AM"}],
        },
    },
    {"id": "doc_002", "name": "Dr. Broken", "average_consulting_time": 999},
]


class TestDataGenerator:
    def test_requires_api_key(self, genai, monkeypatch):
        from clinic_generators.data_factory import DataGenerator
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError):
            DataGenerator()

    def test_generates_and_validates_doctors(self, generator, genai):
        respond(genai, "```json\n" + json.dumps(ROSTER) + "\n```")
        doctors, cost = generator.generate_doctors(count=2)

        assert [d.id for d in doctors] == ["doc_001"]
        doctor = doctors[0]
        assert list(doctor.availability) == [DayOfWeek.MONDAY]
        assert doctor.availability[DayOfWeek.MONDAY][0].from_ == "09:00 AM"
        assert cost == pytest.approx((1000 * 0.075 + 2000 * 0.30) / 1_000_000)
        assert generator.total_cost == cost

    def test_api_failure_returns_nothing(self, generator, genai):
        genai.GenerativeModel.return_value.generate_content.side_effect = RuntimeError("quota")
        assert generator.generate_doctors() == ([], 0.0)


class TestRobustParse:
    def test_wrapped_dict(self, generator):
        assert generator._robust_parse_json('{"doctors": [{"id": "x"}]}') == [{"id": "x"}]

    def test_single_object(self, generator):
        assert generator._robust_parse_json('{"id": "x"}') == [{"id": "x"}]

    def test_list_inside_prose(self, generator):
        assert generator._robust_parse_json('Here you go: [{"id": "x"}] enjoy') == [{"id": "x"}]

    @pytest.mark.parametrize("text", ["", "no json here", "[not, json"])
    def test_garbage(self, generator, text):
        assert generator._robust_parse_json(text) == []
