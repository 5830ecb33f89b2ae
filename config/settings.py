"""
Application Configuration Module
Handles all configuration settings for Butter Proxy
"""

from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache


class Settings(BaseSettings):
    """Main application settings"""

    # Application Settings
    app_name: str = "Butter Proxy"
    app_version: str = "1.0.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 3000
    workers: int = 1
    reload: bool = False
    forwarded_allow_ips: str = "*"

    # Relay Configuration
    proxy_path: str = "/fetch"
    request_timeout: float = 20.0  # seconds
    max_redirects: int = 10
    fallback_client_identity: str = "x"

    # Masquerading headers (ordinary mobile Safari)
    mobile_user_agent: str = (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.0 "
        "Mobile/15E148 Safari/604.1"
    )
    accept: str = "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8"
    accept_language: str = "en-US,en;q=0.9"

    # Cookie Jar
    cookie_jar_ttl: int = 86400  # idle seconds before a jar is dropped, 0 disables
    cookie_jar_max_entries: int = 10000  # 0 disables

    # Keep-alive self ping
    keepalive_enabled: bool = True
    keepalive_interval: int = 240  # 4 minutes
    keepalive_timeout: float = 5.0
    railway_public_domain: Optional[str] = None

    # Security Settings
    cors_origins: List[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: List[str] = ["*"]
    cors_allow_headers: List[str] = ["*"]

    # Logging Configuration
    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_rotation: str = "100 MB"
    log_retention: str = "30 days"
    log_format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {message}"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

        # Allow extra fields for flexibility
        extra = "allow"

    @property
    def self_url(self) -> str:
        """Base URL the keep-alive task pings"""
        if self.railway_public_domain:
            return f"https://{self.railway_public_domain}"
        return f"http://localhost:{self.port}"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
