"""
Environment configuration for the retention worker.

Only process-level concerns are configurable here. Retention thresholds,
window sizes and pacing pauses are fixed constants on each loop.
"""
import os
from typing import Optional

# Liveness endpoint port, fixed so orchestration can probe it without config
HEALTH_PORT = 6443

RESTART_POLICIES = ("restart", "halt")


class ConfigError(ValueError):
    """Raised when an environment setting cannot be used."""


class Config:
    """Process configuration read lazily from the environment"""

    def __init__(self):
        self._restart_policy: Optional[str] = None
        self._initial_backoff: Optional[float] = None
        self._max_backoff: Optional[float] = None

    def get_database_url(self) -> str:
        """Get the database URL from environment"""
        return os.getenv("DATABASE_URL", "sqlite:///./data.db")

    def get_health_host(self) -> str:
        return os.getenv("HEALTH_HOST", "0.0.0.0")

    def get_log_level(self) -> str:
        level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
        return "WARNING" if level == "WARN" else level

    @property
    def restart_policy(self) -> str:
        """
        What the supervisor does when a loop raises.

        "restart" relaunches the loop after an exponential backoff.
        "halt" logs the failure and leaves the loop stopped for the rest of
        the process lifetime; an operator restarts the whole process.
        """
        if self._restart_policy is None:
            policy = os.getenv("LOOP_RESTART_POLICY", "restart").strip().lower()
            if policy not in RESTART_POLICIES:
                raise ConfigError(
                    f"LOOP_RESTART_POLICY must be one of {', '.join(RESTART_POLICIES)}, got {policy!r}"
                )
            self._restart_policy = policy
        return self._restart_policy

    @property
    def initial_backoff_seconds(self) -> float:
        if self._initial_backoff is None:
            self._initial_backoff = self._read_seconds("LOOP_RESTART_INITIAL_BACKOFF_SECONDS", 1.0)
        return self._initial_backoff

    @property
    def max_backoff_seconds(self) -> float:
        if self._max_backoff is None:
            self._max_backoff = self._read_seconds("LOOP_RESTART_MAX_BACKOFF_SECONDS", 300.0)
        return self._max_backoff

    @staticmethod
    def _read_seconds(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ConfigError(f"{name} must be a number of seconds, got {raw!r}")
        if value < 0:
            raise ConfigError(f"{name} must not be negative, got {value}")
        return value

    def validate(self) -> tuple[bool, list[str], list[str]]:
        """
        Validate that configuration is usable.

        Returns:
            tuple: (is_valid, list_of_errors, list_of_warnings)
        """
        errors = []
        warnings = []

        for name in ("restart_policy", "initial_backoff_seconds", "max_backoff_seconds"):
            try:
                getattr(self, name)
            except ConfigError as e:
                errors.append(str(e))

        if not errors and self.initial_backoff_seconds > self.max_backoff_seconds:
            errors.append("LOOP_RESTART_INITIAL_BACKOFF_SECONDS exceeds LOOP_RESTART_MAX_BACKOFF_SECONDS")

        db_url = self.get_database_url()
        if db_url == "sqlite:///./data.db":
            warnings.append("DATABASE_URL not set - using local SQLite database")
        elif "sqlite" in db_url.lower():
            warnings.append("SQLite database detected - PostgreSQL recommended for production scale")

        if not errors and self.restart_policy == "halt":
            warnings.append("LOOP_RESTART_POLICY=halt - a failed purge or trim loop stays stopped until process restart")

        return (len(errors) == 0, errors, warnings)

    def summary(self) -> dict:
        """Configuration summary safe to log (no credentials)"""
        db_url = self.get_database_url()
        return {
            "database": db_url.split("@")[-1] if "@" in db_url else db_url,
            "health_host": self.get_health_host(),
            "health_port": HEALTH_PORT,
            "restart_policy": self.restart_policy,
            "initial_backoff_seconds": self.initial_backoff_seconds,
            "max_backoff_seconds": self.max_backoff_seconds,
        }


# Global config instance
config = Config()
