import os
from typing import List


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except Exception:
            return default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        # Comma-separated list of allowed CORS origins for the admin/POS web clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # FIFO reads fetch batches in pages of this size until the sale line is covered.
        self.batch_page_size = max(1, self._int("LEDGER_BATCH_PAGE_SIZE", 50))

    @property
    def verbose_errors(self) -> bool:
        return self.env in {"local", "dev"}


settings = Settings()
