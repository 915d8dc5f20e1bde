from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

XZIP_HOME = Path.home() / ".xzip"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Service Info
    SERVICE_NAME: str = "xzip-license-server"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    # Authorization Server
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 8443
    SERVER_HOSTNAME: str = "xzip.com"
    TLS_ENABLED: bool = True
    TLS_CERT_FILE: str = "certs/server.crt"
    TLS_KEY_FILE: str = "certs/server.key"
    TLS_AUTO_GENERATE: bool = True  # Self-signed cert when files are missing

    # Key Issuance
    DEFAULT_MAX_USAGE: int = 100
    DEFAULT_VALID_DAYS: int = 365
    KEY_BYTES: int = 16
    SEED_TEST_KEYS: bool = True
    ADMIN_TOKEN: str = ""  # Empty disables the admin check

    # License Client
    LICENSE_API_URL: str = "https://xzip.com/authorize"
    LICENSE_API_TIMEOUT: int = 30
    LICENSE_SERVER_HOSTNAME: str = "xzip.com"
    KEY_FILE: Path = XZIP_HOME / "key"

    # Local authorization history
    HISTORY_ENABLED: bool = True
    HISTORY_DATABASE_URL: str = f"sqlite:///{XZIP_HOME / 'history.db'}"

    # Capability flag: password-capable vs. password-free client
    PASSWORD_SUPPORT: bool = True


settings = Settings()
