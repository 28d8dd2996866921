"""
Tests for idea parsing, prompt building and the two suggestion generators.

Run with:
    python -m pytest tests/test_suggestion_service.py
"""
import random
import unittest
from unittest.mock import MagicMock

from letter_rounds.config import Settings
from letter_rounds.models import ActivityFilters, AIProfile, AppSettings, UserPreferences
from letter_rounds.suggestion_service import (
    CATALOGUE,
    ClaudeSuggestionGenerator,
    IdeaRequest,
    StaticSuggestionGenerator,
    allowed_places,
    build_prompt,
    create_suggestion_generator,
    load_prompt_template,
    parse_idea_line,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeMessageStream:
    """Stands in for the object returned by ``client.messages.stream``."""

    def __init__(self, chunks):
        self.chunks = chunks

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    def text_stream(self):
        async def _chunks():
            for chunk in self.chunks:
                yield chunk
        return _chunks()


def _request(letter="B", **kwargs):
    return IdeaRequest(environment_id="env-1", letter=letter, proposer_id="alice@example.com", **kwargs)


async def _collect(generator, request):
    return [idea async for idea in generator.generate(request)]


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParseIdeaLine(unittest.TestCase):

    def test_full_line(self):
        line = (
            '{"id": "b1", "title": "Bowling", "description": "Strikes and fries", '
            '"whyItFits": "You like sport.", "tags": ["Sport", "Relax"], '
            '"metadata": {"indoorOutdoor": "indoor"}}'
        )
        idea = parse_idea_line(line, "B")
        self.assertEqual(idea.id, "b1")
        self.assertEqual(idea.title, "Bowling")
        self.assertEqual(idea.rationale, "You like sport.")
        self.assertEqual(idea.tags, ["Sport", "Relax"])
        self.assertEqual(idea.metadata, {"indoorOutdoor": "indoor"})

    def test_missing_id_gets_generated(self):
        idea = parse_idea_line('{"title": "Brunch"}', "b")
        self.assertTrue(idea.id)

    def test_unknown_keys_land_in_metadata(self):
        idea = parse_idea_line('{"title": "Brunch", "prepLevel": "low"}', "B")
        self.assertEqual(idea.metadata, {"prepLevel": "low"})

    def test_noise_is_skipped(self):
        for line in ("", "```json", "Here are your ideas:", '{"title": "Bowl', "[1, 2]"):
            self.assertIsNone(parse_idea_line(line, "B"))

    def test_wrong_letter_is_dropped(self):
        self.assertIsNone(parse_idea_line('{"title": "Cinema"}', "B"))

    def test_trailing_comma_is_tolerated(self):
        self.assertIsNotNone(parse_idea_line('{"title": "Boating"},', "B"))


class TestPrompt(unittest.TestCase):

    def test_template_ships_with_package(self):
        template = load_prompt_template()
        self.assertIn("{letter}", template)
        self.assertIn("{count}", template)

    def test_prompt_uses_preferences_and_profile(self):
        request = _request(
            preferences=UserPreferences(language="de", styles=["Culture"], no_gos=["Sport"]),
            ai_profile=AIProfile(liked_tags={"Food": 3, "Nature": 1}, disliked_tags={"Adventure": 1}),
            location_hint="Zurich",
            current_proposal="Brunch",
            count=4,
        )
        prompt = build_prompt(request)
        self.assertIn('EXACTLY 4 activity ideas for the letter "B"', prompt)
        self.assertIn("Language: de", prompt)
        self.assertIn("Styles: Culture", prompt)
        self.assertIn("Location: Zurich", prompt)
        self.assertIn("Tags the group liked: Food, Nature", prompt)
        self.assertIn("Avoid entirely: Sport, Adventure", prompt)
        self.assertIn('"Brunch"', prompt)
        # JSON braces of the format example survive formatting
        self.assertIn('{"id": "..."', prompt)

    def test_prompt_defaults(self):
        prompt = build_prompt(_request())
        self.assertIn("Styles: no preference", prompt)
        self.assertIn("Location: unknown", prompt)
        self.assertNotIn("already considering", prompt)
        self.assertIn("Indoor/outdoor: both", prompt)
        self.assertIn("Days: any day", prompt)

    def test_prompt_uses_environment_settings(self):
        request = _request(
            settings=AppSettings(activity_filters=ActivityFilters(indoor=False), time_preference="weekend")
        )
        prompt = build_prompt(request)
        self.assertIn("Indoor/outdoor: outdoor", prompt)
        self.assertIn("Days: weekends only", prompt)


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------

class TestStaticGenerator(unittest.IsolatedAsyncioTestCase):

    async def test_catalogue_covers_alphabet(self):
        self.assertEqual(len(CATALOGUE), 26)
        for letter, entries in CATALOGUE.items():
            for title, _tags, place in entries:
                self.assertIn(place, ("indoor", "outdoor", "both"))
                self.assertTrue(title.upper().startswith(letter), title)

    async def test_yields_requested_count(self):
        generator = StaticSuggestionGenerator(rng=random.Random(1))
        ideas = [idea async for idea in generator.generate(_request("B", count=2))]
        self.assertEqual(len(ideas), 2)
        self.assertTrue(all(idea.title.startswith("B") for idea in ideas))
        self.assertEqual(len({idea.id for idea in ideas}), 2)

    async def test_excluded_tags_are_filtered(self):
        generator = StaticSuggestionGenerator(rng=random.Random(1))
        request = _request("B", preferences=UserPreferences(no_gos=["sport"]))
        ideas = [idea async for idea in generator.generate(request)]
        self.assertTrue(ideas)
        self.assertFalse(any("Sport" in idea.tags for idea in ideas))

    async def test_overly_strict_filter_falls_back(self):
        generator = StaticSuggestionGenerator(rng=random.Random(1))
        request = _request("M", preferences=UserPreferences(no_gos=["Culture", "Sport", "Relax"]))
        ideas = [idea async for idea in generator.generate(request)]
        self.assertEqual(len(ideas), 3)

    async def test_outdoor_filter_off_keeps_indoor_ideas(self):
        generator = StaticSuggestionGenerator(rng=random.Random(1))
        request = _request(
            "H",
            preferences=UserPreferences(indoor_outdoor="indoor"),
            settings=AppSettings(activity_filters=ActivityFilters(outdoor=False)),
        )
        ideas = [idea async for idea in generator.generate(request)]
        self.assertEqual([idea.title for idea in ideas], ["Hammam"])
        self.assertEqual(ideas[0].metadata["indoorOutdoor"], "indoor")

    async def test_both_kind_passes_any_filter(self):
        generator = StaticSuggestionGenerator(rng=random.Random(1))
        request = _request("B", settings=AppSettings(activity_filters=ActivityFilters(indoor=False)))
        titles = sorted(idea.title for idea in await _collect(generator, request))
        self.assertEqual(titles, ["Boating", "Brunch"])

    async def test_place_filter_leaving_nothing_falls_back(self):
        generator = StaticSuggestionGenerator(rng=random.Random(1))
        # Every D entry is indoor
        request = _request("D", settings=AppSettings(activity_filters=ActivityFilters(indoor=False)))
        self.assertEqual(len(await _collect(generator, request)), 3)


class TestAllowedPlaces(unittest.TestCase):

    def test_defaults_allow_everything(self):
        self.assertEqual(allowed_places(_request()), {"indoor", "outdoor"})

    def test_proposer_preference_narrows(self):
        request = _request(preferences=UserPreferences(indoor_outdoor="Outdoor"))
        self.assertEqual(allowed_places(request), {"outdoor"})

    def test_environment_filter_wins_over_preference(self):
        request = _request(
            preferences=UserPreferences(indoor_outdoor="outdoor"),
            settings=AppSettings(activity_filters=ActivityFilters(outdoor=False)),
        )
        self.assertEqual(allowed_places(request), {"indoor"})

    def test_both_filters_off_means_no_restriction(self):
        request = _request(settings=AppSettings(activity_filters=ActivityFilters(indoor=False, outdoor=False)))
        self.assertEqual(allowed_places(request), {"indoor", "outdoor"})


class TestClaudeGenerator(unittest.IsolatedAsyncioTestCase):

    def _generator(self, chunks):
        client = MagicMock()
        client.messages.stream.return_value = FakeMessageStream(chunks)
        return ClaudeSuggestionGenerator(model="test-model", max_tokens=100, client=client), client

    async def test_ideas_are_parsed_as_lines_complete(self):
        generator, client = self._generator([
            '{"title": "Bow',
            'ling", "tags": ["Sport"]}\n{"title": "Cin',
            'ema"}\n',
            '{"title": "Brunch", "tags": ["Food"]}',
        ])
        ideas = [idea async for idea in generator.generate(_request("B"))]

        self.assertEqual([idea.title for idea in ideas], ["Bowling", "Brunch"])
        kwargs = client.messages.stream.call_args.kwargs
        self.assertEqual(kwargs["model"], "test-model")
        self.assertEqual(kwargs["max_tokens"], 100)
        self.assertIn('letter "B"', kwargs["messages"][0]["content"])

    async def test_stream_errors_propagate(self):
        client = MagicMock()
        client.messages.stream.side_effect = RuntimeError("overloaded")
        generator = ClaudeSuggestionGenerator(client=client)
        with self.assertRaises(RuntimeError):
            async for _ in generator.generate(_request()):
                pass


class TestGeneratorFactory(unittest.TestCase):

    def test_static_without_key(self):
        with self.assertLogs("letter_rounds.suggestion_service", level="WARNING"):
            generator = create_suggestion_generator(Settings(anthropic_api_key=""))
        self.assertIsInstance(generator, StaticSuggestionGenerator)

    def test_claude_with_key(self):
        generator = create_suggestion_generator(Settings(anthropic_api_key="sk-test"))
        self.assertIsInstance(generator, ClaudeSuggestionGenerator)


if __name__ == '__main__':
    unittest.main()
