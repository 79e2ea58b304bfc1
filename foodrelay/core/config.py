from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # storage
    use_mongo: bool = False
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_db: str = "foodrelay"

    # auth
    jwt_secret: str = "dev"
    jwt_alg: str = "HS256"
    access_ttl_min: int = 30
    refresh_ttl_days: int = 14
    otp_ttl_min: int = 10

    # email
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_username: str = ""
    smtp_password: str = ""
    smtp_sender: str = ""
    smtp_starttls: bool = True
    smtp_timeout: float = 10.0

    # maps
    geocoder: str = "nominatim"   # olamaps | nominatim | google | opencage
    ola_maps_api_key: str = ""
    google_maps_key: str = ""
    opencage_key: str = ""
    osrm_base_url: str = "https://router.project-osrm.org"
    admin_contact: str = "mailto:admin@example.com"
    http_timeout: float = 12.0

    # proximity search
    proximity_initial_radius_km: float = 5.0
    proximity_radius_step_km: float = 5.0
    proximity_max_radius_km: float = 50.0
    proximity_max_attempts: int = 10
    proximity_backoff_seconds: float = 2 * 60 * 60
    proximity_stop_on_first_match: bool = False

    # outbox
    outbox_enabled: bool = True
    outbox_poll_seconds: float = 5.0
    outbox_max_attempts: int = 6

    cors_origins: List[str] = ["*"]
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
