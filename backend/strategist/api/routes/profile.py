"""Profile routes: read the inferred profile and apply user edits."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from strategist.api.deps import CurrentUser
from strategist.core.exceptions import ValidationError
from strategist.db.supabase import SupabaseClient
from strategist.memory.profile_merge import ProfileMergeEngine
from strategist.models.profile import ProfilePatchRequest, ProfileResponse
from strategist.services.workflow import (
    calculate_completeness,
    determine_workflow_phase,
    get_missing_fields,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])


def get_merge_engine() -> ProfileMergeEngine:
    return ProfileMergeEngine()


def build_profile_response(user: dict[str, Any]) -> ProfileResponse:
    """Profile fields plus the completeness and phase derived from them."""
    completeness = calculate_completeness(user)
    phase = determine_workflow_phase(completeness, user)
    return ProfileResponse(
        id=user["id"],
        first_name=user.get("first_name"),
        last_name=user.get("last_name"),
        content_niche=user.get("content_niche") or [],
        primary_platform=user.get("primary_platform"),
        primary_platforms=user.get("primary_platforms") or [],
        profile_data=user.get("profile_data") or {},
        profile_completeness=completeness,
        workflow_phase=phase.name,
        missing_fields=get_missing_fields(phase, user),
        messages_used=int(user.get("messages_used") or 0),
        messages_limit=int(user.get("messages_limit") or 0),
    )


@router.get("", response_model=ProfileResponse)
async def get_profile(current_user: CurrentUser) -> ProfileResponse:
    user = await SupabaseClient.get_user(current_user.id)
    return build_profile_response(user)


@router.patch("")
async def update_profile(
    current_user: CurrentUser,
    request: ProfilePatchRequest,
    engine: Annotated[ProfileMergeEngine, Depends(get_merge_engine)],
) -> dict[str, Any]:
    """Apply a user edit through the same merge rules as inferred updates.

    With ``replaceArrays`` the submitted lists replace the stored ones, which
    is how the editor removes items.

    Returns:
        Changed fields, capped fields, the new completeness and the profile.
    """
    patch = request.to_patch()
    if not patch:
        raise ValidationError("No profile fields to update")

    result = await engine.apply(current_user.id, patch, replace_arrays=request.replace_arrays)
    logger.info(
        "Profile edited via API",
        extra={"user_id": current_user.id, "changed_fields": result.changed_fields},
    )
    return {
        "changedFields": result.changed_fields,
        "cappedFields": [capped.to_dict() for capped in result.capped_fields],
        "completeness": result.completeness,
        "profile": build_profile_response(result.merged).model_dump(),
    }
