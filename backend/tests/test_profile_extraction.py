"""Tests for profile fact extraction."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from strategist.services.profile_extraction import ProfileExtractor, is_explicit_profile_request


@pytest.mark.parametrize(
    "message",
    [
        "Please update my business type to bakery",
        "Can you change my niche to vegan baking?",
        "set my target audience to new parents",
        "Fix my name, it's Jordan",
    ],
)
def test_explicit_profile_requests(message: str) -> None:
    assert is_explicit_profile_request(message)


@pytest.mark.parametrize(
    "message",
    ["What's the best time to post on TikTok?", "Give me content ideas for my bakery", ""],
)
def test_ordinary_messages_are_not_profile_requests(message: str) -> None:
    assert not is_explicit_profile_request(message)


def _extractor(result: object = None, error: Exception | None = None) -> tuple[ProfileExtractor, MagicMock]:
    llm = MagicMock()
    llm.generate_json = AsyncMock(return_value=result, side_effect=error)
    return ProfileExtractor(llm=llm), llm


@pytest.mark.asyncio
async def test_extract_parses_camel_case_update() -> None:
    extractor, llm = _extractor(
        {
            "firstName": " Dana ",
            "contentNiche": "sourdough",
            "profileData": {"businessType": "bakery", "targetAudience": ["home bakers"]},
        }
    )

    update = await extractor.extract(
        "I'm Dana and I run a bakery", "Great!", {"first_name": None, "content_niche": []}
    )

    assert update is not None
    assert update.to_patch() == {
        "first_name": "Dana",
        "content_niche": ["sourdough"],
        "profile_data": {"target_audience": ["home bakers"], "business_type": "bakery"},
    }
    prompt = llm.generate_json.call_args.kwargs["system_prompt"]
    assert '"contentNiche": []' in prompt


@pytest.mark.asyncio
async def test_blog_profile_is_never_accepted() -> None:
    extractor, _ = _extractor({"blogProfile": {"writingStyle": "casual"}})

    assert await extractor.extract("hi", "hello", None) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("result", [{}, [], "nothing", {"profileData": "bakery"}])
async def test_empty_or_malformed_result_returns_none(result: object) -> None:
    extractor, _ = _extractor(result)

    assert await extractor.extract("hi", "hello", None) is None


@pytest.mark.asyncio
async def test_provider_failure_returns_none() -> None:
    extractor, _ = _extractor(error=RuntimeError("timeout"))

    assert await extractor.extract("hi", "hello", {"first_name": "Dana"}) is None
