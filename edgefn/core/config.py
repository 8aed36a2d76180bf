import os
from typing import Optional
from dotenv import load_dotenv

from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()

# Get database config from environment
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_SERVER = os.getenv("POSTGRES_SERVER", "localhost")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")
POSTGRES_DB = os.getenv("POSTGRES_DB", "edge_functions")

DB_URI = f"postgresql://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_SERVER}:{POSTGRES_PORT}/{POSTGRES_DB}"


class Settings(BaseSettings):
    """
    Application settings for the edge functions controller.
    """
    # API settings
    PROJECT_NAME: str = "Edge Functions Controller"
    LOG_LEVEL: str = "INFO"

    # Database settings
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL", DB_URI)

    # Kubernetes settings
    KUBE_CONFIG_PATH: Optional[str] = os.getenv("KUBE_CONFIG_PATH")
    CLUSTER_CONTEXT_TEMPLATE: str = "{region}-cluster"
    DEFAULT_REGION: str = "default"
    READINESS_POLL_ATTEMPTS: int = 30
    READINESS_POLL_INTERVAL: float = 1.0

    # Image build settings
    REGISTRY_URL: str = os.getenv("REGISTRY_URL", "localhost:5000")
    DOCKER_HOST: Optional[str] = os.getenv("DOCKER_HOST")

    # Multi-region fan-out
    MULTI_REGION_MAX_WORKERS: int = 4
    GLOBAL_ENDPOINT_DOMAIN: str = "global.example.com"

    # Metrics and billing
    REDIS_URL: Optional[str] = os.getenv("REDIS_URL")
    METRICS_QUEUE_SIZE: int = 1000
    METRICS_BUCKET_SECONDS: int = 60
    COST_PER_INVOCATION: float = 0.0000002  # USD per request
    COST_PER_GB_SECOND: float = 0.0000166  # USD per GB-second

    class Config:
        env_file = ".env"
        case_sensitive = True


# Create global settings object
settings = Settings()
