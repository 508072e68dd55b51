"""Configuration loading and validation for the image generation backend."""

import os
from pathlib import Path

from dotenv import load_dotenv

# Get the project root directory (parent of src)
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

# Bucket value marking an output whose storage_path is already a hosted URL
EXTERNAL_URL_BUCKET = "external-url"


class ConfigurationError(Exception):
    """A required backend or credential is not configured."""

    pass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() not in ("false", "0", "no")


def load_config() -> dict:
    """Load configuration from environment variables."""

    def resolve_path(path: str | None, default_relative: str) -> str:
        if not path:
            return str(PROJECT_ROOT / default_relative)
        if Path(path).is_absolute():
            return path
        return str(PROJECT_ROOT / path)

    config = {
        # Generative backend
        "gemini_api_key": os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "",
        "genai_model": os.getenv("GENAI_MODEL", "gemini-2.5-flash-image-preview"),
        "provider": os.getenv("PROVIDER", "gemini"),
        # Storage
        "image_bucket": os.getenv("IMAGE_BUCKET", "gen-images"),
        # Pinata (IPFS) - takes precedence over R2 when PINATA_JWT is set
        "pinata_jwt": os.getenv("PINATA_JWT", ""),
        "pinata_upload_endpoint": os.getenv(
            "PINATA_UPLOAD_ENDPOINT", "https://uploads.pinata.cloud/v3/files"
        ),
        "pinata_pin_endpoint": os.getenv(
            "PINATA_PIN_ENDPOINT", "https://api.pinata.cloud/pinning/pinFileToIPFS"
        ),
        "pinata_gateway_base": os.getenv(
            "PINATA_GATEWAY_BASE", "https://gateway.pinata.cloud/ipfs"
        ).rstrip("/"),
        # Pin straight to public IPFS instead of the (private) uploads API
        "pinata_prefer_ipfs": _env_bool("PINATA_PREFER_IPFS", "true"),
        # Cloudflare R2 (S3-compatible bucket storage)
        "r2_account_id": os.getenv("R2_ACCOUNT_ID", ""),
        "r2_access_key_id": os.getenv("R2_ACCESS_KEY_ID", ""),
        "r2_secret_access_key": os.getenv("R2_SECRET_ACCESS_KEY", ""),
        "r2_public_url": os.getenv("R2_PUBLIC_URL"),
        # Task store
        "task_db_path": resolve_path(os.getenv("TASK_DB_PATH"), ".imagegen/tasks.db"),
        # HTTP surface
        "dev_token": os.getenv("DEV_TOKEN", "dev-token"),
        "cors_origins": [
            origin.strip()
            for origin in os.getenv("CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ],
        "max_upload_bytes": int(os.getenv("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024))),
        # Result delivery
        "result_inline_max_bytes": int(os.getenv("RESULT_INLINE_MAX_BYTES", "800000")),
        "result_url_expiry_seconds": int(os.getenv("RESULT_URL_EXPIRY_SECONDS", "300")),
        # Logging
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_json": _env_bool("LOG_JSON", "false"),
    }

    return config


def has_r2_credentials(config: dict) -> bool:
    """True when every credential the R2 backend needs is present."""
    return all(
        config.get(key)
        for key in ("r2_account_id", "r2_access_key_id", "r2_secret_access_key")
    )


def validate_config(config: dict) -> list[str]:
    """Validate configuration and return a list of warnings.

    Nothing here is fatal at startup: each missing piece fails the
    operation that needs it instead.
    """
    warnings = []

    if not config.get("gemini_api_key"):
        warnings.append("GEMINI_API_KEY is not set; generation requests will fail")

    if not config.get("pinata_jwt") and not has_r2_credentials(config):
        warnings.append(
            "No storage backend configured: set PINATA_JWT or the R2_* credentials; "
            "image uploads will fail"
        )

    if config.get("result_inline_max_bytes", 0) <= 0:
        warnings.append("RESULT_INLINE_MAX_BYTES should be positive; results will always redirect")

    if config.get("dev_token") == "dev-token":
        warnings.append("DEV_TOKEN is the default value; do not expose this server publicly")

    return warnings
