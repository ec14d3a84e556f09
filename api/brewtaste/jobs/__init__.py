from .taste_profiles import refresh_profiles_job, refresh_stale_profiles_job

__all__ = [
    "refresh_profiles_job",
    "refresh_stale_profiles_job",
]
"""Background job modules for RQ workers and schedulers."""
