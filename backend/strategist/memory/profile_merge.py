"""Profile merge engine.

Merges proposed profile changes (from conversation extraction, enrichment
adapters or the profile editor) into the stored user row:

1. Scalars are overwritten only by non-empty values
2. List fields are unioned case-insensitively, capitalized and capped;
   existing items are never evicted to make room
3. ``profile_data`` is merged key by key so one enrichment's cached blob
   never erases another's
4. Writes are guarded by the ``profile_version`` column and retried on
   conflict
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from strategist.core.exceptions import ConflictError
from strategist.db.supabase import SupabaseClient
from strategist.models.profile import CappedField
from strategist.services.workflow import calculate_completeness

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3

SCALAR_FIELDS = ("first_name", "last_name", "primary_platform")

# Capped list columns: column -> (limit, label)
_CAPPED_COLUMNS: dict[str, tuple[int, str]] = {
    "content_niche": (10, "Content Niche"),
}

# Capped lists inside profile_data: key -> (limit, label)
_CAPPED_DATA_KEYS: dict[str, tuple[int, str]] = {
    "target_audience": (5, "Target Audience"),
    "content_goals": (5, "Content Goals"),
    "brand_voice": (5, "Brand Voice"),
}

# Provider snapshots: nested lists inside these are replaced, not unioned
_SNAPSHOT_KEYS = frozenset(
    {"instagram_profile", "blog_profile", "competitor_analyses", "hashtag_searches"}
)

# Keys that must never be persisted inside profile_data
_INTERNAL_DATA_KEYS = frozenset({"_capped_fields", "_cappedFields", "cached_at"})


@dataclass
class MergeResult:
    """Outcome of merging an update into a profile."""

    patch: dict[str, Any] = field(default_factory=dict)
    merged: dict[str, Any] = field(default_factory=dict)
    changed_fields: list[str] = field(default_factory=list)
    capped_fields: list[CappedField] = field(default_factory=list)
    completeness: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.changed_fields)


def capitalize_item(value: str) -> str:
    """Uppercase the first character only, leaving the rest untouched."""
    return value[:1].upper() + value[1:]


def _as_items(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def _dedupe(items: list[str], capitalize: bool = True) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        key = item.lower()
        if key not in seen:
            seen.add(key)
            result.append(capitalize_item(item) if capitalize else item)
    return result


def merge_capped_list(
    existing: Any,
    incoming: Any,
    limit: int,
    label: str,
    replace: bool = False,
) -> tuple[list[str], CappedField | None]:
    """Union two lists under a cardinality cap.

    Args:
        existing: Stored value (list or bare string).
        incoming: Proposed value (list or bare string).
        limit: Maximum number of items.
        label: Human-readable field name for the capped notice.
        replace: Replace the stored items instead of unioning.

    Returns:
        The merged list and a capped notice when proposed items were dropped.
        Existing items are kept even when they already exceed ``limit``.
    """
    new_items = _dedupe(_as_items(incoming))
    if replace:
        if len(new_items) > limit:
            return new_items[:limit], CappedField(label, limit, len(new_items))
        return new_items, None

    current = _dedupe(_as_items(existing), capitalize=False)
    known = {item.lower() for item in current}
    additions = [item for item in new_items if item.lower() not in known]

    slots = max(0, limit - len(current))
    admitted = additions[:slots]
    notice = None
    if len(additions) > slots:
        notice = CappedField(label, limit, len(current) + len(additions))
    return current + admitted, notice


def _merge_ordered_set(existing: Any, incoming: Any, lead: str | None, replace: bool) -> list[str]:
    items = _as_items(incoming) if replace else _as_items(existing) + _as_items(incoming)
    if lead:
        items = [lead, *items]
    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        if item.lower() not in seen:
            seen.add(item.lower())
            result.append(item)
    return result


def _merge_nested(
    existing: dict[str, Any],
    incoming: dict[str, Any],
    union_lists: bool,
    replace_arrays: bool,
) -> dict[str, Any]:
    merged = dict(existing)
    for key, value in incoming.items():
        if value is None:
            merged.pop(key, None)
            continue
        current = merged.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            merged[key] = _merge_nested(
                current,
                value,
                union_lists=union_lists and key not in _SNAPSHOT_KEYS,
                replace_arrays=replace_arrays,
            )
        elif isinstance(value, list) and isinstance(current, list) and union_lists and not replace_arrays:
            merged[key] = current + [item for item in value if item not in current]
        elif value == "" or value == [] or value == {}:
            # empty values never clobber stored ones
            merged.setdefault(key, value)
        else:
            merged[key] = value
    return merged


def merge_profile(
    current: dict[str, Any],
    update: dict[str, Any],
    replace_arrays: bool = False,
) -> MergeResult:
    """Merge ``update`` into the user row ``current`` without side effects.

    Args:
        current: Stored user row.
        update: Proposed change in storage shape (snake_case columns and a
            ``profile_data`` dict). ``None`` inside ``profile_data`` deletes
            that key only.
        replace_arrays: Replace list fields instead of unioning them.

    Returns:
        MergeResult whose ``patch`` holds only the columns that changed.
    """
    result = MergeResult()
    patch: dict[str, Any] = {}

    for name in SCALAR_FIELDS:
        value = update.get(name)
        if isinstance(value, str) and value.strip() and value.strip() != (current.get(name) or ""):
            patch[name] = value.strip()
            result.changed_fields.append(name)

    for column, (limit, label) in _CAPPED_COLUMNS.items():
        if column not in update:
            continue
        merged_list, notice = merge_capped_list(
            current.get(column), update[column], limit, label, replace=replace_arrays
        )
        if notice:
            result.capped_fields.append(notice)
        if merged_list != (current.get(column) or []):
            patch[column] = merged_list
            result.changed_fields.append(column)

    replace_platforms = replace_arrays and "primary_platforms" in update
    # A replaced list drops the stored lead unless this update sets a new one
    lead = patch.get("primary_platform")
    if not replace_platforms:
        lead = lead or current.get("primary_platform")
    if "primary_platforms" in update or "primary_platform" in patch:
        platforms = _merge_ordered_set(
            current.get("primary_platforms"),
            update.get("primary_platforms"),
            lead,
            replace=replace_platforms,
        )
        if platforms != (current.get("primary_platforms") or []):
            patch["primary_platforms"] = platforms
            result.changed_fields.append("primary_platforms")
        mirrored = patch.get("primary_platform") or current.get("primary_platform")
        if platforms and platforms[0] != mirrored:
            patch["primary_platform"] = platforms[0]
            result.changed_fields.append("primary_platform")

    incoming_data = update.get("profile_data")
    if isinstance(incoming_data, dict) and incoming_data:
        stored = current.get("profile_data")
        stored = dict(stored) if isinstance(stored, dict) else {}
        data = {k: v for k, v in incoming_data.items() if k not in _INTERNAL_DATA_KEYS}

        capped_updates: dict[str, Any] = {}
        for key, (limit, label) in _CAPPED_DATA_KEYS.items():
            if key not in data or data[key] is None:
                continue
            merged_list, notice = merge_capped_list(
                stored.get(key), data.pop(key), limit, label, replace=replace_arrays
            )
            if notice:
                result.capped_fields.append(notice)
            capped_updates[key] = merged_list

        new_data = _merge_nested(stored, data, union_lists=True, replace_arrays=replace_arrays)
        new_data.update(capped_updates)

        changed_keys = sorted(
            key for key in set(stored) | set(new_data) if stored.get(key) != new_data.get(key)
        )
        if changed_keys:
            patch["profile_data"] = new_data
            result.changed_fields.extend(changed_keys)

    merged = {**current, **patch}
    result.patch = patch
    result.merged = merged
    result.completeness = calculate_completeness(merged)
    if patch:
        patch["profile_completeness"] = result.completeness
    return result


class ProfileMergeEngine:
    """Applies profile merges to the database with optimistic concurrency."""

    def merge(
        self,
        current: dict[str, Any],
        update: dict[str, Any],
        replace_arrays: bool = False,
    ) -> MergeResult:
        return merge_profile(current, update, replace_arrays=replace_arrays)

    async def apply(
        self,
        user_id: str,
        update: dict[str, Any],
        replace_arrays: bool = False,
    ) -> MergeResult:
        """Read, merge and write the user's profile.

        Each attempt re-reads the row, so a concurrent writer's changes are
        merged rather than overwritten.

        Args:
            user_id: The user's UUID.
            update: Proposed change in storage shape.
            replace_arrays: Replace list fields instead of unioning them.

        Returns:
            The merge result of the successful attempt.

        Raises:
            ConflictError: If every attempt lost the version race.
            NotFoundError: If the user does not exist.
            DatabaseError: If a read or write fails.
        """
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            current = await SupabaseClient.get_user(user_id)
            result = merge_profile(current, update, replace_arrays=replace_arrays)
            if not result.patch:
                return result

            version = int(current.get("profile_version") or 0)
            written = await SupabaseClient.update_user_profile(user_id, result.patch, version)
            if written is not None:
                logger.info(
                    "Profile merged",
                    extra={
                        "user_id": user_id,
                        "changed_fields": result.changed_fields,
                        "capped_fields": [c.field for c in result.capped_fields],
                        "attempt": attempt,
                    },
                )
                return result

            logger.warning(
                "Profile write lost version race, retrying",
                extra={"user_id": user_id, "attempt": attempt},
            )

        raise ConflictError("Profile was modified concurrently. Please try again.", resource="profile")
