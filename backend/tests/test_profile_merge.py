"""Tests for the profile merge engine."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from strategist.core.exceptions import ConflictError
from strategist.memory.profile_merge import (
    MAX_WRITE_ATTEMPTS,
    ProfileMergeEngine,
    merge_capped_list,
    merge_profile,
)
from strategist.models.profile import CappedField


def _user(**overrides: Any) -> dict[str, Any]:
    user: dict[str, Any] = {
        "id": "user-1",
        "first_name": "Ana",
        "last_name": None,
        "content_niche": ["Fitness"],
        "primary_platform": "Instagram",
        "primary_platforms": ["Instagram"],
        "profile_data": {},
        "profile_version": 3,
    }
    user.update(overrides)
    return user


class TestMergeCappedList:
    def test_union_is_case_insensitive_and_capitalized(self) -> None:
        merged, notice = merge_capped_list(["Fitness"], ["fitness", "yoga"], 10, "Content Niche")

        assert merged == ["Fitness", "Yoga"]
        assert notice is None

    def test_existing_items_are_never_evicted(self) -> None:
        existing = [f"Topic {i}" for i in range(12)]

        merged, notice = merge_capped_list(existing, ["new topic"], 10, "Content Niche")

        assert merged == existing
        assert notice == CappedField("Content Niche", 10, 13)

    def test_bare_string_is_one_item(self) -> None:
        merged, _ = merge_capped_list(None, "vegan baking", 10, "Content Niche")

        assert merged == ["Vegan baking"]


class TestMergeProfile:
    def test_cap_notice_for_content_niche(self) -> None:
        current = _user(content_niche=[f"Niche {i}" for i in range(8)])
        update = {"content_niche": [f"niche {c}" for c in "abcde"]}

        result = merge_profile(current, update)

        assert len(result.patch["content_niche"]) == 10
        assert result.patch["content_niche"][-2:] == ["Niche a", "Niche b"]
        assert [c.to_dict() for c in result.capped_fields] == [
            {"field": "Content Niche", "limit": 10, "attempted": 13}
        ]

    def test_nested_profile_data_is_preserved(self) -> None:
        instagram = {"username": "ana", "followers": 885, "top_hashtags": ["fit"]}
        blog = {"url": "https://ana.blog", "topics": ["training"]}
        current = _user(profile_data={"instagram_profile": instagram, "blog_profile": blog})
        update = {"profile_data": {"hashtag_searches": {"vegan": {"total_posts": 20}}}}

        result = merge_profile(current, update)

        data = result.patch["profile_data"]
        assert data["instagram_profile"] == instagram
        assert data["blog_profile"] == blog
        assert data["hashtag_searches"] == {"vegan": {"total_posts": 20}}
        assert result.changed_fields == ["hashtag_searches"]

    def test_snapshot_lists_are_replaced(self) -> None:
        current = _user(profile_data={"instagram_profile": {"top_hashtags": ["old"], "bio": "hi"}})
        update = {"profile_data": {"instagram_profile": {"top_hashtags": ["fresh"]}}}

        data = merge_profile(current, update).patch["profile_data"]

        assert data["instagram_profile"] == {"top_hashtags": ["fresh"], "bio": "hi"}

    def test_plain_nested_lists_are_unioned(self) -> None:
        current = _user(profile_data={"topics": ["reels"]})

        data = merge_profile(current, {"profile_data": {"topics": ["reels", "carousels"]}}).patch[
            "profile_data"
        ]

        assert data["topics"] == ["reels", "carousels"]

    def test_none_deletes_only_that_key(self) -> None:
        current = _user(profile_data={"competitor_analyses": {"x": {}}, "business_type": "Coach"})

        data = merge_profile(current, {"profile_data": {"competitor_analyses": None}}).patch[
            "profile_data"
        ]

        assert data == {"business_type": "Coach"}

    def test_empty_values_do_not_clobber(self) -> None:
        current = _user(profile_data={"business_type": "Coach"})

        result = merge_profile(current, {"first_name": "  ", "profile_data": {"business_type": ""}})

        assert result.patch == {}
        assert not result.changed

    def test_internal_keys_are_not_persisted(self) -> None:
        current = _user()

        result = merge_profile(
            current, {"profile_data": {"_capped_fields": [1], "business_type": "Bakery"}}
        )

        assert result.patch["profile_data"] == {"business_type": "Bakery"}

    def test_primary_platform_leads_platform_list(self) -> None:
        result = merge_profile(_user(), {"primary_platform": "TikTok"})

        assert result.patch["primary_platform"] == "TikTok"
        assert result.patch["primary_platforms"] == ["TikTok", "Instagram"]

    def test_platform_list_fills_missing_primary(self) -> None:
        current = _user(primary_platform=None, primary_platforms=[])

        result = merge_profile(current, {"primary_platforms": ["YouTube", "TikTok"]})

        assert result.patch["primary_platform"] == "YouTube"
        assert result.patch["primary_platforms"] == ["YouTube", "TikTok"]

    def test_capped_data_list(self) -> None:
        current = _user(profile_data={"target_audience": ["Moms", "Students"]})
        update = {"profile_data": {"target_audience": ["a", "b", "c", "d"]}}

        result = merge_profile(current, update)

        assert result.patch["profile_data"]["target_audience"] == [
            "Moms",
            "Students",
            "A",
            "B",
            "C",
        ]
        assert result.capped_fields == [CappedField("Target Audience", 5, 6)]

    def test_replace_arrays(self) -> None:
        current = _user(content_niche=["Fitness", "Yoga"])

        result = merge_profile(current, {"content_niche": ["Pilates"]}, replace_arrays=True)

        assert result.patch["content_niche"] == ["Pilates"]

    def test_replace_arrays_replaces_platforms_and_lead(self) -> None:
        result = merge_profile(
            _user(), {"primary_platforms": ["TikTok", "YouTube"]}, replace_arrays=True
        )

        assert result.patch["primary_platforms"] == ["TikTok", "YouTube"]
        assert result.patch["primary_platform"] == "TikTok"
        assert {"primary_platforms", "primary_platform"} <= set(result.changed_fields)

    def test_replace_arrays_keeps_new_lead_first(self) -> None:
        result = merge_profile(
            _user(),
            {"primary_platform": "YouTube", "primary_platforms": ["TikTok", "YouTube"]},
            replace_arrays=True,
        )

        assert result.patch["primary_platforms"] == ["YouTube", "TikTok"]
        assert result.patch["primary_platform"] == "YouTube"
        assert result.changed_fields.count("primary_platform") == 1

    def test_completeness_is_written_with_patch(self) -> None:
        result = merge_profile(_user(), {"last_name": "Silva"})

        # first, last, niche, platform of seven tracked fields
        assert result.completeness == 57
        assert result.patch["profile_completeness"] == 57
        assert result.changed_fields == ["last_name"]


class TestProfileMergeEngine:
    @pytest.mark.asyncio
    async def test_retries_after_version_conflict(self) -> None:
        mock_client = MagicMock()
        mock_client.get_user = AsyncMock(
            side_effect=[_user(profile_version=3), _user(profile_version=4)]
        )
        mock_client.update_user_profile = AsyncMock(side_effect=[None, {"id": "user-1"}])

        with patch("strategist.memory.profile_merge.SupabaseClient", mock_client):
            result = await ProfileMergeEngine().apply("user-1", {"last_name": "Silva"})

        assert result.changed_fields == ["last_name"]
        assert mock_client.get_user.await_count == 2
        versions = [c.args[2] for c in mock_client.update_user_profile.await_args_list]
        assert versions == [3, 4]

    @pytest.mark.asyncio
    async def test_raises_conflict_after_bounded_retries(self) -> None:
        mock_client = MagicMock()
        mock_client.get_user = AsyncMock(return_value=_user())
        mock_client.update_user_profile = AsyncMock(return_value=None)

        with patch("strategist.memory.profile_merge.SupabaseClient", mock_client):
            with pytest.raises(ConflictError):
                await ProfileMergeEngine().apply("user-1", {"last_name": "Silva"})

        assert mock_client.update_user_profile.await_count == MAX_WRITE_ATTEMPTS

    @pytest.mark.asyncio
    async def test_no_write_when_nothing_changes(self) -> None:
        mock_client = MagicMock()
        mock_client.get_user = AsyncMock(return_value=_user())
        mock_client.update_user_profile = AsyncMock()

        with patch("strategist.memory.profile_merge.SupabaseClient", mock_client):
            result = await ProfileMergeEngine().apply("user-1", {"first_name": "Ana"})

        assert not result.changed
        mock_client.update_user_profile.assert_not_awaited()
