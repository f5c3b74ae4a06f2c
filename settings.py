from dataclasses import dataclass
import os

DEFAULT_EXPIRY_WINDOW_MS = 300_000  # 300s without heartbeat -> expired
DEFAULT_STORE_TTL_SECONDS = 3600 * 24  # fallback cleanup only
DEFAULT_MAX_WRITE_ATTEMPTS = 5


@dataclass(frozen=True)
class RegistrySettings:
    expiry_window_ms: int = DEFAULT_EXPIRY_WINDOW_MS
    store_ttl_seconds: int = DEFAULT_STORE_TTL_SECONDS
    max_write_attempts: int = DEFAULT_MAX_WRITE_ATTEMPTS

    def __post_init__(self):
        if self.expiry_window_ms <= 0:
            raise ValueError("expiry_window_ms must be positive")
        if self.store_ttl_seconds <= 0:
            raise ValueError("store_ttl_seconds must be positive")
        if self.max_write_attempts < 1:
            raise ValueError("max_write_attempts must be at least 1")

    @property
    def heartbeat_expire_seconds(self) -> int:
        return self.expiry_window_ms // 1000

    @classmethod
    def from_env(cls) -> "RegistrySettings":
        return cls(
            expiry_window_ms=int(os.getenv("HEARTBEAT_EXPIRE", str(DEFAULT_EXPIRY_WINDOW_MS // 1000))) * 1000,
            store_ttl_seconds=int(os.getenv("KV_TTL_SECONDS", str(DEFAULT_STORE_TTL_SECONDS))),
            max_write_attempts=int(os.getenv("MAX_WRITE_ATTEMPTS", str(DEFAULT_MAX_WRITE_ATTEMPTS))),
        )
