"""
Test suite for the configuration manager: env file precedence, secrets,
database URL and engine thresholds.
"""
import pytest
import os
from unittest.mock import patch

from shared.config.config_manager import ConfigManager, ConfigValidationError


class TestEnvFileLoading:
    """Environment files are layered by ENV; the process environment wins."""

    def test_env_file_values_loaded(self, tmp_path):
        (tmp_path / ".env").write_text("POSTGRES_DB=from_file\n# comment\nMAX_TOTAL_STORAGE_MB=40\n")

        with patch.dict(os.environ, {}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.postgres_db == "from_file"
            assert config.max_total_storage_bytes == 40 * 1024 * 1024

    def test_environment_overrides_files(self, tmp_path):
        (tmp_path / ".env").write_text("POSTGRES_DB=from_file\n")

        with patch.dict(os.environ, {"POSTGRES_DB": "from_env"}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.postgres_db == "from_env"

    def test_prod_file_has_highest_precedence(self, tmp_path):
        (tmp_path / ".env").write_text("BUCKET_EXPIRY_DAYS=1\n")
        (tmp_path / ".env.dev").write_text("BUCKET_EXPIRY_DAYS=2\n")
        (tmp_path / ".env.staging").write_text("BUCKET_EXPIRY_DAYS=3\n")
        (tmp_path / ".env.prod").write_text("BUCKET_EXPIRY_DAYS=4\n")

        with patch.dict(os.environ, {"ENV": "prod"}, clear=True):
            assert ConfigManager(config_dir=str(tmp_path)).bucket_expiry_days == 4

        with patch.dict(os.environ, {"ENV": "staging"}, clear=True):
            assert ConfigManager(config_dir=str(tmp_path)).bucket_expiry_days == 3

        with patch.dict(os.environ, {}, clear=True):
            assert ConfigManager(config_dir=str(tmp_path)).bucket_expiry_days == 2


class TestEngineDefaults:

    def test_defaults(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.max_total_storage_bytes == 30 * 1024 * 1024
            assert config.max_file_size_bytes == 25 * 1024 * 1024
            assert config.bucket_expiry_days == 7
            assert config.inactive_grace_hours == 24
            assert config.pin_attempts_before_challenge == 3
            assert config.pin_attempts_before_lockout == 10
            assert config.pin_attempt_window_seconds == 3600
            assert config.bucket_cache_ttl_seconds == 60
            assert config.sweep_enabled is True
            assert config.api_port == 8000
            assert config.trust_proxy_headers is False

    @pytest.mark.parametrize("value", ["abc", "0", "-5"])
    def test_invalid_integer_rejected(self, tmp_path, value):
        with patch.dict(os.environ, {"BUCKET_EXPIRY_DAYS": value}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))
            with pytest.raises(ConfigValidationError):
                config.bucket_expiry_days

    @pytest.mark.parametrize("value,expected", [("false", False), ("0", False), ("true", True), ("on", True)])
    def test_sweep_enabled_flag(self, tmp_path, value, expected):
        with patch.dict(os.environ, {"SWEEP_ENABLED": value}, clear=True):
            assert ConfigManager(config_dir=str(tmp_path)).sweep_enabled is expected

    def test_server_settings_from_environment(self, tmp_path):
        env = {"API_PORT": "9100", "TRUST_PROXY_HEADERS": "true"}
        with patch.dict(os.environ, env, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))

            assert config.api_port == 9100
            assert config.trust_proxy_headers is True


class TestSecrets:

    def test_missing_secret_raises(self, tmp_path):
        with patch.dict(os.environ, {}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))
            with pytest.raises(ConfigValidationError, match="PIN_ENCRYPTION_SECRET"):
                config.pin_encryption_secret
            with pytest.raises(ConfigValidationError, match="API_KEY"):
                config.get_api_key()

    def test_identical_secrets_rejected(self, tmp_path):
        env = {"PIN_ENCRYPTION_SECRET": "same", "PIN_HMAC_SECRET": "same"}
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ConfigValidationError, match="must be different"):
                ConfigManager(config_dir=str(tmp_path), validate_secrets=True)

    def test_valid_secrets(self, test_environment):
        config = ConfigManager(validate_secrets=True)
        assert config.pin_encryption_secret == test_environment["PIN_ENCRYPTION_SECRET"]
        assert config.pin_hmac_secret == test_environment["PIN_HMAC_SECRET"]
        assert config.get_jwt_secret() == test_environment["JWT_SECRET_KEY"]
        assert config.jwt_algorithm == "HS256"


class TestDatabaseConfiguration:

    def test_database_url_built_from_parts(self, tmp_path):
        env = {"POSTGRES_USER": "u", "POSTGRES_PASSWORD": "p", "POSTGRES_DB": "d", "POSTGRES_PORT": "5433"}
        with patch.dict(os.environ, env, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))
            assert config.get_database_url() == "postgresql://u:p@localhost:5433/d"

    def test_docker_uses_service_name(self, tmp_path):
        with patch.dict(os.environ, {"DOCKER_ENV": "true"}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path))
            assert config.postgres_host == "postgres"

    def test_explicit_database_url_wins(self, tmp_path):
        with patch.dict(os.environ, {"DATABASE_URL": "postgresql://x/y"}, clear=True):
            config = ConfigManager(config_dir=str(tmp_path), validate_database=True)
            assert config.get_database_url() == "postgresql://x/y"

    def test_configuration_summary_has_no_secrets(self, test_environment):
        summary = ConfigManager().get_configuration()

        assert summary["bucket_expiry_days"] == 7
        assert summary["recaptcha_configured"] is False
        for secret in test_environment.values():
            assert secret not in [str(v) for v in summary.values()]
