# config.py

from typing import Optional
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """
    Application configuration settings.
    Settings are loaded from the .env file, with sensible defaults provided here.
    """
    # --- Ollama Backend Settings ---
    OLLAMA_BASE_URL: str = "http://localhost:11434"
    OLLAMA_MODEL: str = "tinyllama"

    # --- Server Settings ---
    WORKERS: int = 1
    HOST: str = "0.0.0.0"
    PORT: int = 3000

    # --- Logging Settings ---
    LOG_FILE: str = "logs/app.log"
    LOG_LEVEL: str = "INFO"
    LOG_ROTATION: str = "1 day"

    # ===================================================================
    # --- Relay Limits ---
    # These bound how long we wait on the backend and how much we buffer.
    # ===================================================================

    CONNECT_TIMEOUT: float = 10.0           # Seconds to establish the backend connection.
    READ_TIMEOUT: Optional[float] = None    # Max gap between chunks. None waits forever.
    MAX_LINE_LENGTH: int = 1_048_576        # Characters buffered before a newline must appear.

    # --- Request Validation ---
    MAX_PROMPT_LENGTH: int = 4000

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'

settings = Settings()
