import logging
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # GCP
    gcp_project_id: str = "rxautomate-dev"
    env: str = "dev"

    # NHS API credentials
    nhs_client_id: str = ""
    nhs_client_secret: str = ""
    nhs_api_key: str = ""

    # NHS API endpoints
    nhs_api_base_url: str = "https://sandbox.api.service.nhs.uk"
    nhs_auth_url: str = "https://api.service.nhs.uk/oauth2/token"
    bsa_api_base_url: str = "https://sandbox.api.service.nhs.uk/bsa-eligibility"

    # Token refresh happens this many seconds before upstream expiry
    token_safety_margin_seconds: int = 300

    # Outbound HTTP
    nhs_timeout_seconds: float = 10.0
    nhs_connect_timeout_seconds: float = 3.0
    nhs_get_max_attempts: int = 3

    # Sliding-window rate limiting (empty redis_url = in-process store)
    redis_url: str = ""
    rate_limit_window_seconds: int = 60
    rate_limit_pds: int = 600
    rate_limit_eps: int = 300
    rate_limit_pecs: int = 300
    rate_limit_default: int = 300
    bypass_rate_limit: bool = False

    # Response cache TTLs (seconds)
    prescription_cache_ttl: int = 900
    patient_cache_ttl: int = 3600
    exemption_cache_ttl: int = 900
    eligibility_cache_ttl: int = 1800
    bsa_eligibility_cache_ttl: int = 3600
    response_cache_max_entries: int = 2048

    # NHS number checksum (modulus 11)
    enforce_nhs_checksum: bool = True

    # Firestore
    audit_collection: str = "audit_logs"
    prescriptions_collection: str = "prescriptions"
    patients_collection: str = "patients"
    inventory_collection: str = "inventory"

    # CORS
    cors_allowed_origins: str = "http://localhost:3000"

    @property
    def cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]

    @property
    def rate_limits(self) -> dict[str, int]:
        return {
            "pds": self.rate_limit_pds,
            "eps": self.rate_limit_eps,
            "pecs": self.rate_limit_pecs,
            "default": self.rate_limit_default,
        }

    @property
    def eps_base_url(self) -> str:
        return f"{self.nhs_api_base_url.rstrip('/')}/electronic-prescriptions/FHIR/R4/"

    @property
    def pubsub_audit_topic(self) -> str:
        return f"rxautomate-{self.env}-audit-events"

    @property
    def pubsub_notifications_topic(self) -> str:
        return f"rxautomate-{self.env}-pharmacist-notifications"

    model_config = {"env_prefix": "", "case_sensitive": False}

    @model_validator(mode="after")
    def _validate_required_in_production(self) -> "Settings":
        if self.env in ("staging", "prod"):
            if not self.nhs_client_id or not self.nhs_client_secret:
                raise ValueError(
                    f"NHS_CLIENT_ID and NHS_CLIENT_SECRET are required in {self.env} environment"
                )
            if self.bypass_rate_limit:
                raise ValueError(
                    f"BYPASS_RATE_LIMIT cannot be enabled in {self.env} environment"
                )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
