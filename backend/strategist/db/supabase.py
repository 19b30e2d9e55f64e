"""Supabase gateway for user rows, profile writes and usage counters."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, cast

from supabase import Client, create_client

from strategist.core.circuit_breaker import supabase_circuit_breaker
from strategist.core.config import settings
from strategist.core.exceptions import DatabaseError, NotFoundError, StrategistError

logger = logging.getLogger(__name__)

# PostgREST code for zero rows from .single()
_NO_ROWS_CODE = "PGRST116"


@contextmanager
def _guarded(action: str, user_id: str) -> Iterator[None]:
    """Run a database call under the Supabase circuit breaker.

    Application errors raised inside the block (not found, open circuit) pass
    through untouched. Anything else counts as a database failure.
    """
    supabase_circuit_breaker.check()
    try:
        yield
    except NotFoundError:
        supabase_circuit_breaker.record_success()
        raise
    except StrategistError:
        raise
    except Exception as e:
        supabase_circuit_breaker.record_failure()
        logger.exception("Supabase call failed", extra={"action": action, "user_id": user_id})
        raise DatabaseError(f"Failed to {action}: {e}") from e
    supabase_circuit_breaker.record_success()


class SupabaseClient:
    """Process-wide Supabase client with the user-row operations the turn needs."""

    _client: Client | None = None

    @classmethod
    def get_client(cls) -> Client:
        """Return the shared client, creating it on first use.

        Raises:
            DatabaseError: If the client cannot be created.
        """
        if cls._client is not None:
            return cls._client
        try:
            cls._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_ROLE_KEY.get_secret_value(),
            )
        except Exception as e:
            logger.exception("Failed to initialize Supabase client")
            raise DatabaseError(f"Failed to initialize database connection: {e}") from e
        logger.info("Supabase client initialized")
        return cls._client

    @classmethod
    def reset_client(cls) -> None:
        cls._client = None

    @classmethod
    async def get_user(cls, user_id: str) -> dict[str, Any]:
        """Fetch a user row, including profile fields and usage counters.

        Raises:
            NotFoundError: If no row exists for ``user_id``.
            DatabaseError: If the query fails.
        """
        with _guarded("fetch user", user_id):
            try:
                response = (
                    cls.get_client().table("users").select("*").eq("id", user_id).single().execute()
                )
            except Exception as e:
                if _NO_ROWS_CODE not in str(e):
                    raise
                raise NotFoundError("User", user_id) from e
            if response.data is None:
                raise NotFoundError("User", user_id)
        return cast(dict[str, Any], response.data)

    @classmethod
    async def update_user_profile(
        cls,
        user_id: str,
        patch: dict[str, Any],
        expected_version: int,
    ) -> dict[str, Any] | None:
        """Write profile columns if the stored version still matches.

        The row's ``profile_version`` is bumped as part of the same update, so
        a concurrent writer that read the same version matches zero rows.

        Args:
            user_id: The user's UUID.
            patch: Column values to write.
            expected_version: The ``profile_version`` the patch was computed from.

        Returns:
            The updated row, or None when another writer got there first.

        Raises:
            DatabaseError: If the update fails.
        """
        with _guarded("update user profile", user_id):
            response = (
                cls.get_client()
                .table("users")
                .update({**patch, "profile_version": expected_version + 1})
                .eq("id", user_id)
                .eq("profile_version", expected_version)
                .execute()
            )
        if not response.data:
            logger.info(
                "Profile version conflict",
                extra={"user_id": user_id, "expected_version": expected_version},
            )
            return None
        return cast(dict[str, Any], response.data[0])

    @classmethod
    async def increment_message_usage(cls, user_id: str) -> None:
        """Atomically bump the user's consumed message counter."""
        with _guarded("increment message usage", user_id):
            cls.get_client().rpc("increment_message_usage", {"p_user_id": user_id}).execute()


def get_supabase_client() -> Client:
    """FastAPI dependency returning the shared Supabase client."""
    return SupabaseClient.get_client()
