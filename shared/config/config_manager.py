"""
Configuration Manager for PinDrop.

Handles environment file loading, secrets for the PIN codec, database and
storage service locations, and the lifecycle / quota / rate limit thresholds.
"""

import os
from pathlib import Path
from typing import Dict, Any, Optional


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class ConfigManager:
    """
    Central configuration management for PinDrop.

    Provides:
    - Environment file loading with precedence
    - Required secret lookup with validation
    - Typed accessors for engine thresholds
    """

    # Engine defaults, all overridable through the environment
    DEFAULTS = {
        'MAX_TOTAL_STORAGE_MB': 30,
        'MAX_FILE_SIZE_MB': 25,
        'BUCKET_EXPIRY_DAYS': 7,
        'INACTIVE_GRACE_HOURS': 24,
        'PIN_ATTEMPTS_BEFORE_CHALLENGE': 3,
        'PIN_ATTEMPTS_BEFORE_LOCKOUT': 10,
        'PIN_ATTEMPT_WINDOW_SECONDS': 3600,
        'BUCKET_CACHE_TTL_SECONDS': 60,
        'SWEEP_INTERVAL_HOURS': 24,
        'STORAGE_TIMEOUT_SECONDS': 30,
        'API_PORT': 8000,
        'POSTGRES_PORT': 5432,
    }

    def __init__(
        self,
        config_dir: Optional[str] = None,
        validate_secrets: bool = False,
        validate_database: bool = False
    ):
        """
        Initialize ConfigManager.

        Args:
            config_dir: Directory containing environment files
            validate_secrets: Whether to validate PIN codec secrets eagerly
            validate_database: Whether to validate database credentials
        """
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()

        # Initialize internal state
        self._env_vars: Dict[str, str] = {}

        # Load configuration
        self._load_env_files()

        # Perform validation
        if validate_secrets:
            self._validate_secrets()
        if validate_database:
            self._validate_database_config()

    def _load_env_files(self):
        """Load environment files with precedence: .env.prod > .env.staging > .env.dev > .env"""
        env = os.getenv('ENV', 'dev')

        # Define file precedence (load in order, higher precedence files override lower)
        env_files = ['.env']
        if env in ['dev', 'staging', 'prod']:
            env_files.append('.env.dev')
        if env in ['staging', 'prod']:
            env_files.append('.env.staging')
        if env == 'prod':
            env_files.append('.env.prod')

        for env_file in env_files:
            env_path = self.config_dir / env_file
            if env_path.exists():
                self._load_env_file(env_path)

    def _load_env_file(self, env_path: Path):
        """Load a single environment file into our internal env_vars dict."""
        try:
            with open(env_path, 'r') as f:
                for line in f:
                    line = line.strip()
                    if line and not line.startswith('#') and '=' in line:
                        key, value = line.split('=', 1)
                        self._env_vars[key.strip()] = value.strip()
        except OSError as e:
            raise ConfigValidationError(f"Cannot read environment file {env_path}: {e}")

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Look up a raw setting: os.environ first, then file-loaded env_vars."""
        return os.getenv(key) or self._env_vars.get(key) or default

    def _require(self, key: str) -> str:
        value = self.get(key)
        if not value:
            raise ConfigValidationError(f"{key} is required but not configured")
        return value

    def _get_int(self, key: str) -> int:
        raw = self.get(key)
        if raw is None:
            return self.DEFAULTS[key]
        try:
            value = int(raw)
        except ValueError:
            raise ConfigValidationError(f"Invalid {key}: '{raw}' - must be an integer")
        if value <= 0:
            raise ConfigValidationError(f"Invalid {key}: '{raw}' - must be positive")
        return value

    def _get_bool(self, key: str, default: bool) -> bool:
        raw = self.get(key)
        if raw is None:
            return default
        return raw.lower() in ('1', 'true', 'yes', 'on')

    def _validate_secrets(self):
        """Validate that both PIN secrets exist and are independent."""
        if self.pin_encryption_secret == self.pin_hmac_secret:
            raise ConfigValidationError(
                "PIN_ENCRYPTION_SECRET and PIN_HMAC_SECRET must be different values"
            )

    def _validate_database_config(self):
        """Validate database configuration."""
        if self.get('DATABASE_URL'):
            return
        required_vars = ['POSTGRES_DB', 'POSTGRES_USER', 'POSTGRES_PASSWORD']
        missing_vars = [var for var in required_vars if not self.get(var)]

        if missing_vars:
            raise ConfigValidationError(
                f"Missing required database configuration: {', '.join(missing_vars)}"
            )

    # Secrets

    @property
    def pin_encryption_secret(self) -> str:
        """Secret used to derive the AES key for owner-visible PINs."""
        return self._require('PIN_ENCRYPTION_SECRET')

    @property
    def pin_hmac_secret(self) -> str:
        """Secret used for the keyed PIN hash."""
        return self._require('PIN_HMAC_SECRET')

    @property
    def recaptcha_secret(self) -> Optional[str]:
        """reCAPTCHA secret; challenge verification fails closed without it."""
        return self.get('RECAPTCHA_SECRET_KEY')

    def get_api_key(self) -> str:
        """Get the configured API key from environment."""
        return self._require('API_KEY')

    def get_jwt_secret(self) -> str:
        """Get the configured JWT secret key from environment."""
        return self._require('JWT_SECRET_KEY')

    @property
    def jwt_algorithm(self) -> str:
        return self.get('JWT_ALGORITHM', 'HS256')

    @property
    def jwt_issuer(self) -> str:
        return self.get('JWT_ISSUER', 'pindrop')

    # Database

    @property
    def postgres_host(self) -> str:
        """Get PostgreSQL host."""
        is_docker = self.is_docker_environment
        return "postgres" if is_docker else self.get('POSTGRES_HOST', 'localhost')

    @property
    def postgres_port(self) -> int:
        """Get PostgreSQL port."""
        return self._get_int('POSTGRES_PORT')

    @property
    def postgres_db(self) -> str:
        """Get PostgreSQL database name."""
        return self.get('POSTGRES_DB', 'pindrop')

    @property
    def postgres_user(self) -> str:
        """Get PostgreSQL user."""
        return self.get('POSTGRES_USER', 'postgres')

    @property
    def postgres_password(self) -> str:
        """Get PostgreSQL password."""
        return self.get('POSTGRES_PASSWORD', 'postgres')

    def get_database_url(self) -> str:
        """Get database URL, preferring an explicit DATABASE_URL."""
        database_url = self.get('DATABASE_URL')
        if database_url:
            return database_url
        return (
            f"postgresql://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # Blob storage service

    @property
    def storage_service_url(self) -> str:
        """Base URL of the internal blob storage service."""
        return self.get('STORAGE_SERVICE_URL', 'http://storage:8001').rstrip('/')

    @property
    def storage_timeout_seconds(self) -> int:
        return self._get_int('STORAGE_TIMEOUT_SECONDS')

    # Quota

    @property
    def max_total_storage_bytes(self) -> int:
        """Per-owner storage cap in bytes."""
        return self._get_int('MAX_TOTAL_STORAGE_MB') * 1024 * 1024

    @property
    def max_file_size_bytes(self) -> int:
        """Per-object size ceiling in bytes."""
        return self._get_int('MAX_FILE_SIZE_MB') * 1024 * 1024

    # Lifecycle

    @property
    def bucket_expiry_days(self) -> int:
        return self._get_int('BUCKET_EXPIRY_DAYS')

    @property
    def inactive_grace_hours(self) -> int:
        return self._get_int('INACTIVE_GRACE_HOURS')

    @property
    def sweep_interval_hours(self) -> int:
        return self._get_int('SWEEP_INTERVAL_HOURS')

    @property
    def sweep_enabled(self) -> bool:
        return self._get_bool('SWEEP_ENABLED', True)

    @property
    def bucket_cache_ttl_seconds(self) -> int:
        return self._get_int('BUCKET_CACHE_TTL_SECONDS')

    # PIN attempt governor

    @property
    def pin_attempts_before_challenge(self) -> int:
        return self._get_int('PIN_ATTEMPTS_BEFORE_CHALLENGE')

    @property
    def pin_attempts_before_lockout(self) -> int:
        return self._get_int('PIN_ATTEMPTS_BEFORE_LOCKOUT')

    @property
    def pin_attempt_window_seconds(self) -> int:
        return self._get_int('PIN_ATTEMPT_WINDOW_SECONDS')

    # Service

    @property
    def api_port(self) -> int:
        return self._get_int('API_PORT')

    @property
    def trust_proxy_headers(self) -> bool:
        """Whether X-Forwarded-For comes from a reverse proxy in front of the API."""
        return self._get_bool('TRUST_PROXY_HEADERS', False)

    @property
    def is_docker_environment(self) -> bool:
        """Check if running in Docker environment."""
        return (self.get('DOCKER_ENV', 'false') or 'false').lower() == 'true'

    def get_configuration(self) -> Dict[str, Any]:
        """Non-secret configuration summary for health reporting."""
        return {
            "storage_service_url": self.storage_service_url,
            "max_total_storage_bytes": self.max_total_storage_bytes,
            "max_file_size_bytes": self.max_file_size_bytes,
            "bucket_expiry_days": self.bucket_expiry_days,
            "inactive_grace_hours": self.inactive_grace_hours,
            "sweep_enabled": self.sweep_enabled,
            "sweep_interval_hours": self.sweep_interval_hours,
            "trust_proxy_headers": self.trust_proxy_headers,
            "recaptcha_configured": bool(self.recaptcha_secret),
        }
