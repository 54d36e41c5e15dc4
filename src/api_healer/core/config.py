from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    # LLM credentials; model and sampling live in the YAML completion section
    GEMINI_API_KEY: str | None = None
    TRACK_LLM_COSTS: bool = Field(default=True, description="Enable/disable LLM cost tracking and logging")

    # Self-healing configuration
    SELF_HEALING_CONFIG_PATH: str = Field(default="config/self_healing.yaml", description="Path to the YAML self-healing configuration")
    SELF_HEALING_ENABLED: bool = Field(default=True, description="Global switch for the self-healing pipeline")
    CACHE_SNAPSHOT_PATH: str | None = Field(default=None, description="Optional file used to persist the response cache between runs")

    # Logging
    LOG_LEVEL: str = Field(default="INFO", description="Log level for healing loggers")
    LOG_DIR: str = Field(default="logs", description="Directory for rotating log files")

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        """Validate that LOG_LEVEL names a standard logging level."""
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"LOG_LEVEL must be a standard logging level, got '{v}'")
        return v.upper()

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'allow'  # Allow extra fields from .env file

settings = Settings()
