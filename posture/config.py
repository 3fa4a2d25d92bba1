import os
from dotenv import load_dotenv

# Load .env from project root
load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "y")


AWS_REGION = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION") or "us-east-1"

# Asset data lake
ASSET_BUCKET = os.getenv("ASSET_BUCKET", "fortifaidatalake")
ASSET_DIRECTORY_KEY = os.getenv("ASSET_DIRECTORY_KEY", "Assets/AssetDirectory.parquet")
ASSET_CACHE_TTL_SECONDS = float(os.getenv("ASSET_CACHE_TTL_SECONDS", "10"))
ASSET_CACHE_MAXSIZE = int(os.getenv("ASSET_CACHE_MAXSIZE", "256"))

# "s3" reads Parquet tables directly, "gateway" asks the data-access API
GRAPH_SOURCE = os.getenv("GRAPH_SOURCE", "s3").lower()

# FortifAI relocation
SANDBOX_VPC_ID = os.getenv("SANDBOX_VPC_ID", "vpc-01e8afe5e74576696")
RELOCATION_POLL_SECONDS = float(os.getenv("RELOCATION_POLL_SECONDS", "5"))
RELOCATION_MAX_POLLS = int(os.getenv("RELOCATION_MAX_POLLS", "0"))

# External API gateway
GATEWAY_URL = os.getenv("GATEWAY_URL", "http://localhost:80").rstrip("/")
GATEWAY_USERNAME = os.getenv("GATEWAY_USERNAME", "development")
GATEWAY_PASSWORD = os.getenv("GATEWAY_PASSWORD", "development")
GATEWAY_VERIFY_TLS = _flag("GATEWAY_VERIFY_TLS", "true")
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "30"))
GATEWAY_LONG_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_LONG_TIMEOUT_SECONDS", "600"))

# HTTP server
CORS_ALLOW_ORIGINS = [o.strip() for o in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if o.strip()]
PORT = int(os.getenv("PORT", "3001"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
