"""
Configuration management using pydantic-settings.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from mscore.models import NetworkType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="MSWALLET_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: NetworkType = NetworkType.TESTNET
    esplora_url: str = "https://blockstream.info/testnet/api"
    registry_path: Path = Path.home() / ".mswallet" / "wallets.json"

    # Multisig key = signer key at this path
    key_path: str = "m"

    log_level: str = "INFO"

    request_timeout: float = 30.0
    max_retries: int = 3


def get_settings() -> Settings:
    return Settings()
