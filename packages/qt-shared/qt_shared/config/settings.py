"""Shared application configuration for QueryTorque verifier products."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class VerifierSettings(BaseSettings):
    """Verifier settings loaded from environment.

    Every field can be overridden with a ``QT_VERIFIER_<FIELD>`` variable
    or a ``.env`` file in the working directory.
    """

    # Identity
    test_id: str = "default"

    # Clusters (DuckDB database paths)
    control_database: str = ":memory:"
    test_database: str = ":memory:"
    control_timeout_seconds: Optional[float] = None
    test_timeout_seconds: Optional[float] = None

    # SQL handling
    dialect: str = "duckdb"
    decimal_literals_as_double: bool = True
    control_table_prefix: str = "tmp_verifier_c"
    test_table_prefix: str = "tmp_verifier_t"
    determinism_table_prefix: str = "tmp_verifier_d"

    # Checksum comparison
    relative_error_margin: float = 1e-4
    absolute_error_margin: float = 1e-12

    # Determinism analysis
    run_determinism_analysis: bool = True
    enable_limit_analysis: bool = True
    max_determinism_analysis_runs: int = 2

    # Retry policy (applied by the executor)
    retry_max_attempts: int = 3
    retry_min_backoff_seconds: float = 0.1
    retry_max_backoff_seconds: float = 2.0
    retry_scale_factor: float = 2.0

    # Worker pool
    max_concurrency: int = 4

    class Config:
        env_prefix = "QT_VERIFIER_"
        env_file = ".env"

    @property
    def has_timeouts(self) -> bool:
        """Check if either cluster enforces a query timeout."""
        return bool(self.control_timeout_seconds) or bool(self.test_timeout_seconds)


@lru_cache
def get_settings() -> VerifierSettings:
    """Get cached settings instance."""
    return VerifierSettings()
