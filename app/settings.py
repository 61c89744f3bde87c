import os
from dataclasses import dataclass, field, replace
from typing import List

from dotenv import load_dotenv

from app.services.roof_topology.config import TopologyConfig

# Ensure .env from project root is loaded even if CWD differs
_BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
load_dotenv(os.path.join(_BASE_DIR, ".env"))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass
class Settings:
    enable_request_id_logging: bool = field(default_factory=lambda: _env_bool("ENABLE_REQUEST_ID_LOGGING", "true"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())
    # Default soffit/eave overhang applied to footprints (feet)
    soffit_offset_ft: float = field(default_factory=lambda: float(os.getenv("SOFFIT_OFFSET_FT", "1.0")))
    review_threshold: float = field(default_factory=lambda: float(os.getenv("TOPOLOGY_REVIEW_THRESHOLD", "0.5")))
    dsm_snap_endpoints: bool = field(default_factory=lambda: _env_bool("TOPOLOGY_DSM_SNAP", "true"))
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("PORT", "8000")))
    cors_allow_origins: List[str] = field(default_factory=lambda: [
        o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if o.strip()
    ])

    def topology_config(self) -> TopologyConfig:
        return replace(
            TopologyConfig(),
            soffit_offset_ft=self.soffit_offset_ft,
            review_threshold=self.review_threshold,
            dsm_snap_endpoints=self.dsm_snap_endpoints,
        )


def get_settings() -> Settings:
    return Settings()
