"""
Configuration module for the Attendance Session Engine.
Handles environment variables and application settings.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load .env from current working directory
load_dotenv()

class Config:
    """Application configuration class."""

    # Flask Configuration
    SECRET_KEY: str = os.getenv("SECRET_KEY", os.urandom(32).hex())
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    HOST: str = os.getenv("HOST", "127.0.0.1")
    PORT: int = int(os.getenv("PORT", "5000"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    MAX_CONTENT_LENGTH: int = int(os.getenv("MAX_CONTENT_LENGTH", "52428800"))  # 50MB

    # MongoDB Configuration
    MONGODB_URI: Optional[str] = os.getenv("MONGODB_URI")
    MONGODB_DATABASE: str = os.getenv("MONGODB_DATABASE", "attendance_db")

    # Recognition Service Configuration
    RECOGNITION_API_URL: Optional[str] = os.getenv("RECOGNITION_API_URL")
    RECOGNITION_API_TOKEN: Optional[str] = os.getenv("RECOGNITION_API_TOKEN")
    RECOGNITION_TIMEOUT_SECONDS: float = float(os.getenv("RECOGNITION_TIMEOUT_SECONDS", "300"))
    RECOGNITION_HEALTH_TIMEOUT_SECONDS: float = float(os.getenv("RECOGNITION_HEALTH_TIMEOUT_SECONDS", "5"))
    RECOGNITION_MAX_RETRIES: int = int(os.getenv("RECOGNITION_MAX_RETRIES", "4"))
    RECOGNITION_BACKOFF_BASE: float = float(os.getenv("RECOGNITION_BACKOFF_BASE", "1.0"))
    RECOGNITION_MAX_IMAGES: int = int(os.getenv("RECOGNITION_MAX_IMAGES", "6"))
    RECOGNITION_RESULTS_FILE: str = os.getenv("RECOGNITION_RESULTS_FILE", "results.json")

    # Image Normalization
    IMAGE_MAX_WIDTH: int = int(os.getenv("IMAGE_MAX_WIDTH", "1280"))
    IMAGE_MAX_HEIGHT: int = int(os.getenv("IMAGE_MAX_HEIGHT", "1280"))
    IMAGE_JPEG_QUALITY: int = int(os.getenv("IMAGE_JPEG_QUALITY", "90"))
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(8 * 1024 * 1024)))
    ALLOWED_IMAGE_EXTENSIONS: tuple = (".jpg", ".jpeg", ".png")

    # Scheduling
    DEFAULT_SLOT_MINUTES: int = int(os.getenv("DEFAULT_SLOT_MINUTES", "50"))
    LOCK_AFTER_HOURS: float = float(os.getenv("LOCK_AFTER_HOURS", "36"))
    TIMEZONE: str = os.getenv("TIMEZONE", "Asia/Kolkata")

    # Comma-separated list of actor ids allowed to unlock any session
    ADMIN_ACTORS: list = [x.strip() for x in os.getenv("ADMIN_ACTORS", "").split(",") if x.strip()]

    # Reporting
    LOW_ATTENDANCE_THRESHOLD: float = float(os.getenv("LOW_ATTENDANCE_THRESHOLD", "75"))

    @staticmethod
    def validate() -> None:
        """Validate configuration settings."""
        import pytz

        required_vars = [
            ("MONGODB_URI", Config.MONGODB_URI),
            ("RECOGNITION_API_URL", Config.RECOGNITION_API_URL),
        ]

        missing_vars = [var_name for var_name, var_value in required_vars if not var_value]
        if missing_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(missing_vars)}")

        if Config.RECOGNITION_MAX_RETRIES < 1:
            raise ValueError("RECOGNITION_MAX_RETRIES must be at least 1")

        if not 1 <= Config.RECOGNITION_MAX_IMAGES <= 6:
            raise ValueError("RECOGNITION_MAX_IMAGES must be between 1 and 6")

        if Config.RECOGNITION_TIMEOUT_SECONDS < 30:
            raise ValueError("RECOGNITION_TIMEOUT_SECONDS must be at least 30")

        if not 1 <= Config.DEFAULT_SLOT_MINUTES < 24 * 60:
            raise ValueError("DEFAULT_SLOT_MINUTES must be between 1 and 1439")

        if Config.LOCK_AFTER_HOURS <= 0:
            raise ValueError("LOCK_AFTER_HOURS must be positive")

        if Config.TIMEZONE not in pytz.all_timezones_set:
            raise ValueError(f"Unknown TIMEZONE: {Config.TIMEZONE}")
