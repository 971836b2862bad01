import asyncio
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from backend.venue_engine.ai_client import (
    CompatibilityAIClient,
    Scored,
    Unavailable,
    extract_json_object,
    parse_score,
)
from backend.venue_engine.errors import InsufficientPreferences
from backend.venue_engine.models import CompatibilityFactors, CompatibilityScore, PreferenceProfile
from backend.venue_engine.scoring import (
    CompatibilityScorer,
    InMemoryPreferenceStore,
    confidence_for,
    dietary_compatibility,
    rule_based_score,
    weighted_overall,
)

ALEX = PreferenceProfile(
    user_id="alex",
    cuisines={"Italian", "Japanese"},
    vibes={"romantic"},
    price_tiers={"$$"},
    preferred_times={"dinner"},
)
SAM = PreferenceProfile(
    user_id="sam",
    cuisines={"italian"},
    vibes={"romantic", "casual"},
    price_tiers={"$$"},
    preferred_times={"dinner", "lunch"},
)
EMPTY_A = PreferenceProfile(user_id="a")
EMPTY_B = PreferenceProfile(user_id="b")

AI_REPLY = {
    "overall_score": 0.82,
    "cuisine_score": 0.9,
    "vibe_score": 0.8,
    "price_score": 1.0,
    "timing_score": 0.6,
    "activity_score": 0.7,
    "confidence": 0.85,
    "compatibility_factors": {
        "shared_cuisines": ["italian"],
        "shared_vibes": ["romantic"],
        "reasoning": "Both love a candle-lit Italian dinner.",
    },
}


def ai_score(overall=0.42) -> CompatibilityScore:
    return CompatibilityScore(
        overall_score=overall,
        cuisine_score=0.5,
        vibe_score=0.5,
        price_score=0.5,
        timing_score=0.5,
        activity_score=0.5,
        compatibility_factors=CompatibilityFactors(reasoning="ai"),
        confidence=0.9,
        source="ai",
    )


class TestRuleBasedScore:
    def test_weighted_overall(self):
        assert weighted_overall(0.8, 0.6, 1.0, 0.5, 0.9) == pytest.approx(0.755, abs=0.001)

    def test_sub_scores_and_overall(self):
        score = rule_based_score(ALEX, SAM)
        assert score.cuisine_score == 0.5
        assert score.vibe_score == 0.5
        assert score.price_score == 1.0
        assert score.timing_score == 0.5
        # no activities on either side: dietary compatibility of two empty sets
        assert score.activity_score == 1.0
        assert score.overall_score == pytest.approx(0.65)
        assert score.source == "rules"

    def test_factors_are_literal_intersections(self):
        factors = rule_based_score(ALEX, SAM).compatibility_factors
        assert factors.shared_cuisines == ("Italian",)
        assert factors.shared_vibes == ("romantic",)
        assert factors.shared_price_ranges == ("$$",)
        assert factors.shared_times == ("dinner",)
        assert "Italian" in factors.reasoning

    def test_no_overlap_reasoning(self):
        a = PreferenceProfile(user_id="a", cuisines={"thai"})
        b = PreferenceProfile(user_id="b", cuisines={"mexican"})
        score = rule_based_score(a, b)
        assert score.cuisine_score == 0.0
        assert score.compatibility_factors.reasoning.startswith("Few shared preferences")

    def test_activity_uses_activities_when_present(self):
        a = PreferenceProfile(user_id="a", activities={"hiking", "museums"})
        b = PreferenceProfile(user_id="b", activities={"museums"}, dietary_restrictions={"vegan"})
        assert rule_based_score(a, b).activity_score == 0.5

    def test_scores_stay_in_unit_range(self):
        score = rule_based_score(ALEX, EMPTY_B)
        for value in (
            score.overall_score,
            score.cuisine_score,
            score.vibe_score,
            score.price_score,
            score.timing_score,
            score.activity_score,
            score.confidence,
        ):
            assert 0.0 <= value <= 1.0


class TestDietaryCompatibility:
    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            (set(), set(), 1.0),
            ({"vegan"}, set(), 0.7),
            (set(), {"halal"}, 0.7),
            ({"vegan", "nut-free"}, {"Vegan"}, 0.9),
            ({"vegan"}, {"halal"}, 0.3),
        ],
    )
    def test_table(self, a, b, expected):
        assert dietary_compatibility(a, b) == expected


class TestConfidence:
    def test_full_profiles(self):
        full = PreferenceProfile(
            user_id="x",
            cuisines={"thai"},
            vibes={"cozy"},
            price_tiers={"$"},
            preferred_times={"lunch"},
            dietary_restrictions={"vegan"},
        )
        assert confidence_for(full, full) == 1.0

    def test_penalty_per_empty_category(self):
        # each profile is missing dietary restrictions only
        assert confidence_for(ALEX, SAM) == pytest.approx(0.8)

    def test_floor(self):
        assert confidence_for(EMPTY_A, EMPTY_B) == pytest.approx(0.1)


class TestCompatibilityScorer:
    def test_uses_ai_when_available(self):
        scorer = AsyncMock(return_value=Scored(ai_score()))

        score = asyncio.run(CompatibilityScorer(scorer).score(ALEX, SAM))
        assert score.source == "ai"
        assert score.overall_score == 0.42
        scorer.assert_awaited_once_with(ALEX, SAM)

    def test_falls_back_when_ai_raises(self):
        scorer = AsyncMock(side_effect=RuntimeError("upstream exploded"))

        score = asyncio.run(CompatibilityScorer(scorer).score(ALEX, SAM))
        assert score == rule_based_score(ALEX, SAM)

    def test_falls_back_when_ai_unavailable(self):
        async def scorer(a, b):
            return Unavailable("rate limited")

        score = asyncio.run(CompatibilityScorer(scorer).score(ALEX, SAM))
        assert score.source == "rules"

    def test_falls_back_on_timeout(self):
        async def scorer(a, b):
            await asyncio.sleep(1)
            return Scored(ai_score())

        score = asyncio.run(CompatibilityScorer(scorer, ai_timeout=0.01).score(ALEX, SAM))
        assert score.source == "rules"

    def test_rules_only_without_ai(self):
        score = asyncio.run(CompatibilityScorer().score(ALEX, SAM))
        assert score.overall_score == pytest.approx(0.65)

    def test_fallback_is_deterministic(self):
        scorer = CompatibilityScorer()
        first = asyncio.run(scorer.score(ALEX, SAM))
        second = asyncio.run(scorer.score(ALEX, SAM))
        assert first == second

    def test_both_empty_without_ai_is_an_error(self):
        with pytest.raises(InsufficientPreferences):
            asyncio.run(CompatibilityScorer().score(EMPTY_A, EMPTY_B))

    def test_both_empty_with_ai_still_scores(self):
        async def scorer(a, b):
            return Scored(ai_score(0.5))

        score = asyncio.run(CompatibilityScorer(scorer).score(EMPTY_A, EMPTY_B))
        assert score.overall_score == 0.5

    def test_one_empty_profile_scores_with_low_confidence(self):
        score = asyncio.run(CompatibilityScorer().score(ALEX, EMPTY_B))
        assert score.cuisine_score == 0.0
        assert score.confidence == pytest.approx(0.4)

    def test_score_users_reads_store(self):
        store = InMemoryPreferenceStore({"alex": ALEX})
        store.add(SAM)
        score = asyncio.run(CompatibilityScorer().score_users(store, "alex", "sam"))
        assert score == rule_based_score(ALEX, SAM)

    def test_score_users_unknown_users(self):
        store = InMemoryPreferenceStore()
        with pytest.raises(InsufficientPreferences):
            asyncio.run(CompatibilityScorer().score_users(store, "ghost", "phantom"))


class TestAIReplyParsing:
    def test_extracts_fenced_json(self):
        raw = "Sure!\n```json\n" + json.dumps(AI_REPLY) + "\n```"
        assert extract_json_object(raw)["overall_score"] == 0.82

    def test_extracts_json_after_prose(self):
        raw = "Here you go: " + json.dumps(AI_REPLY)
        assert extract_json_object(raw)["vibe_score"] == 0.8

    @pytest.mark.parametrize("raw", ["", "   ", "no braces here", None])
    def test_rejects_missing_object(self, raw):
        with pytest.raises(ValueError):
            extract_json_object(raw)

    def test_parse_score(self):
        score = parse_score(AI_REPLY)
        assert score.source == "ai"
        assert score.confidence == 0.85
        assert score.compatibility_factors.shared_cuisines == ("italian",)
        assert score.compatibility_factors.shared_times == ()

    def test_parse_score_defaults_confidence(self):
        payload = {k: v for k, v in AI_REPLY.items() if k != "confidence"}
        assert parse_score(payload).confidence == 0.9

    @pytest.mark.parametrize(
        "overrides",
        [{"overall_score": 1.5}, {"vibe_score": "high"}, {"price_score": None}],
    )
    def test_parse_score_rejects_bad_values(self, overrides):
        with pytest.raises(ValueError):
            parse_score({**AI_REPLY, **overrides})


def _run_client(handler, *, api_key="sk-test"):
    async def run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = CompatibilityAIClient(
                api_key=api_key, api_base="https://ai.example/v1", model="test-model", client=http
            )
            return await client.score(ALEX, SAM)

    return asyncio.run(run())


class TestCompatibilityAIClient:
    def test_successful_reply(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            content = "```json\n" + json.dumps(AI_REPLY) + "\n```"
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

        result = _run_client(handler)

        assert isinstance(result, Scored)
        assert result.score.overall_score == 0.82
        assert seen["url"] == "https://ai.example/v1/chat/completions"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "test-model"
        assert seen["body"]["messages"][0]["role"] == "system"

    def test_http_error_is_unavailable(self):
        result = _run_client(lambda request: httpx.Response(500, json={"error": "boom"}))
        assert isinstance(result, Unavailable)
        assert "500" in result.reason

    def test_malformed_reply_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": "not json"}}]})

        assert isinstance(_run_client(handler), Unavailable)

    def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert isinstance(_run_client(handler), Unavailable)

    def test_missing_key_is_unavailable(self):
        def handler(request):
            raise AssertionError("no request expected")

        assert isinstance(_run_client(handler, api_key=""), Unavailable)
