"""
Configuration for FHE Detective
===============================

Environment variables (prefix DETECTIVE_):
- DETECTIVE_CONTRADICTION_TOLERANCE: Max score distance flagged as contradiction (default: 10)
- DETECTIVE_DECRYPT_DELAY_SECONDS: Pause before a decrypted value is returned (default: 1.5)
- DETECTIVE_CHALLENGE_DURATION_DAYS: durationDays line of the challenge (default: 30)
- DETECTIVE_VERIFY_SIGNATURES: Check challenge signatures against the wallet address (default: true)
- DETECTIVE_STORE_BACKEND: memory|sql (default: memory)
- DETECTIVE_DATABASE_URL: SQLAlchemy URL for the sql backend (default: sqlite:///./detective.db)
- DETECTIVE_CONTRACT_ADDRESS: Address embedded in the challenge message
- DETECTIVE_CHAIN_ID: Chain id embedded in the challenge message
"""

from typing import List
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from .schemas import StoreBackend


class Settings(BaseSettings):
    """Application settings from environment variables"""

    model_config = SettingsConfigDict(
        env_prefix="DETECTIVE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Contradiction analysis
    contradiction_tolerance: float = 10.0

    # Decryption
    decrypt_delay_seconds: float = 1.5
    challenge_duration_days: int = 30
    verify_signatures: bool = True

    # Key/value backend
    store_backend: StoreBackend = StoreBackend.MEMORY
    database_url: str = "sqlite:///./detective.db"

    # Chain context used to build the challenge
    contract_address: str = ""
    chain_id: int = 0

    # Service info
    service_version: str = "1.0.0"

    def validate_config(self) -> List[str]:
        """Validate configuration, return list of warnings"""
        warnings = []

        if not self.verify_signatures:
            warnings.append(
                "DETECTIVE_VERIFY_SIGNATURES=false - any signature unlocks decryption"
            )

        if self.store_backend == StoreBackend.SQL and not self.database_url:
            warnings.append("DETECTIVE_STORE_BACKEND=sql but DETECTIVE_DATABASE_URL not set")

        if self.contradiction_tolerance <= 0:
            warnings.append("DETECTIVE_CONTRADICTION_TOLERANCE <= 0 - no contradiction can ever be found")

        if not self.contract_address:
            warnings.append("DETECTIVE_CONTRACT_ADDRESS not set - challenge carries an empty address")

        return warnings


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
