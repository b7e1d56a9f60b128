"""
Configuration loader utility for environment-specific settings.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .settings import Settings, Environment

logger = logging.getLogger(__name__)


class ConfigLoader:
    """Utility class for loading environment-specific configurations"""

    @staticmethod
    def load_environment_config(environment: Optional[str] = None) -> Settings:
        """
        Load configuration for the specified environment.

        Args:
            environment: Target environment (development, staging, production, testing)
                        If None, uses ENVIRONMENT env var or defaults to development

        Returns:
            Settings instance with environment-specific configuration
        """
        if environment is None:
            environment = os.getenv("ENVIRONMENT", "development")

        env = Environment(environment.lower())
        env_file_path = Path(f".env.{env.value}")

        if env_file_path.exists():
            # Nested groups read os.environ, not the parent's env file.
            load_dotenv(env_file_path, override=False)
            return Settings(_env_file=str(env_file_path), environment=env)

        logger.warning(f"Environment file {env_file_path} not found, using default settings")
        return Settings(environment=env)

    @staticmethod
    def get_available_environments() -> list[str]:
        """Get list of available environment configurations"""
        env_files = []
        for env_file in Path(".").glob(".env.*"):
            if env_file.name.endswith(".sample"):
                continue
            env_files.append(env_file.name.replace(".env.", ""))
        return sorted(env_files)

    @staticmethod
    def validate_environment_config(environment: str) -> bool:
        """
        Validate that an environment configuration exists and is valid.

        Args:
            environment: Environment name to validate

        Returns:
            True if configuration is valid, False otherwise
        """
        try:
            env = Environment(environment.lower())
        except ValueError:
            return False

        if not Path(f".env.{env.value}").exists():
            return False

        try:
            settings = ConfigLoader.load_environment_config(env.value)
        except ValueError as e:
            logger.error(f"Invalid configuration for {env.value}: {e}")
            return False

        required_settings = [
            settings.app_name,
            settings.environment,
            settings.database.url,
            settings.sharing.code_alphabet,
        ]
        return all(setting is not None for setting in required_settings)

    @staticmethod
    def create_sample_env_file(environment: str, output_path: Optional[str] = None) -> str:
        """
        Create a sample .env file for the specified environment.

        Args:
            environment: Target environment
            output_path: Optional custom output path

        Returns:
            Path to the created sample file
        """
        env = Environment(environment.lower())

        if output_path is None:
            output_path = f".env.{env.value}.sample"

        defaults = Settings()

        sample_content = f"""# Sample configuration for {env.value} environment
# Copy this file to .env.{env.value} and modify as needed

# Application Configuration
APP_NAME={defaults.app_name}
APP_VERSION={defaults.app_version}
ENVIRONMENT={env.value}
DEBUG={'true' if env == Environment.DEVELOPMENT else 'false'}

# Server Configuration
HOST={defaults.host}
PORT={defaults.port}
RELOAD={'true' if env == Environment.DEVELOPMENT else 'false'}
WORKERS={1 if env == Environment.DEVELOPMENT else 4}

# Logging Configuration
LOG_LEVEL={defaults.log_level.value}
LOG_FORMAT=json

# Database Configuration
DATABASE_URL={defaults.database.url}

# Redis Configuration
REDIS_HOST={defaults.redis.host}
REDIS_PORT={defaults.redis.port}
REDIS_DB={defaults.redis.db}

# Shared Links
SHARING_CODE_LENGTH={defaults.sharing.code_length}
SHARING_MAX_CODE_ATTEMPTS={defaults.sharing.max_code_attempts}
SHARING_PUBLIC_BASE_URL={defaults.sharing.public_base_url}
SHARING_PUBLIC_PATH={defaults.sharing.public_path}

# Import Statistics
STATS_DAILY_BUCKETS={defaults.stats.daily_buckets}
STATS_WEEKLY_BUCKETS={defaults.stats.weekly_buckets}
STATS_TIMEZONE={defaults.stats.timezone}

# Realtime
REALTIME_BROKER={'memory' if env == Environment.DEVELOPMENT else 'redis'}
REALTIME_CHANNEL={defaults.realtime.channel}

# Storage
STORAGE_DEVICE_STORAGE_PATH={defaults.storage.device_storage_path}

# Security Configuration
SECURITY_JWT_SECRET=change-me
SECURITY_CORS_ORIGINS=["*"]
"""

        with open(output_path, "w") as f:
            f.write(sample_content)

        return output_path


def load_config_for_environment(environment: Optional[str] = None) -> Settings:
    """Convenience function to load configuration for an environment"""
    return ConfigLoader.load_environment_config(environment)
