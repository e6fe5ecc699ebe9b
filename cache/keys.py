"""Cache key builders, namespaced per user to keep sessions apart."""

from typing import Optional, Union


class CacheKeys:
    """Key builders for every cached data domain."""

    @staticmethod
    def jobs(user_id: str, filter_key: Optional[str] = None) -> str:
        return f"jobs:{user_id}:{filter_key or 'all'}"

    @staticmethod
    def jobs_prefix(user_id: str) -> str:
        return f"jobs:{user_id}:"

    @staticmethod
    def job(job_id: Union[int, str]) -> str:
        return f"job:{job_id}"

    @staticmethod
    def profile(user_id: str) -> str:
        return f"profile:{user_id}:unified"

    @staticmethod
    def profile_prefix(user_id: str) -> str:
        return f"profile:{user_id}:"

    @staticmethod
    def skills(user_id: str) -> str:
        return f"skills:{user_id}"

    @staticmethod
    def analytics(user_id: str, analytics_type: str) -> str:
        return f"analytics:{user_id}:{analytics_type}"

    @staticmethod
    def analytics_prefix(user_id: str) -> str:
        return f"analytics:{user_id}:"

    @staticmethod
    def calendar(user_id: str) -> str:
        return f"calendar:{user_id}"

    @staticmethod
    def interviews(user_id: str) -> str:
        return f"interviews:{user_id}"

    @staticmethod
    def user_prefixes(user_id: str) -> tuple:
        """Every prefix/key owned by one user, used when a session ends."""
        return (
            CacheKeys.jobs_prefix(user_id),
            CacheKeys.profile_prefix(user_id),
            CacheKeys.skills(user_id),
            CacheKeys.analytics_prefix(user_id),
            CacheKeys.calendar(user_id),
            CacheKeys.interviews(user_id),
        )
