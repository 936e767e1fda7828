"""
Unit tests for settings loading and input validation helpers.
"""

import pytest

from feedgate.core.errors import ConfigurationError
from feedgate.settings import DEFAULT_CONFIG_PATH, DatabaseSettings, Settings, load_settings
from feedgate.utils.validation import (
    InputValidationError,
    validate_actor,
    validate_correction_field,
    validate_id,
    validate_id_list,
    validate_limit,
    validate_page,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("FEEDGATE_CONFIG", "FEEDGATE_DRY_RUN_SAMPLE_SIZE", "REDIS_URL", "DB_HOST", "DB_PORT", "DB_NAME", "DB_USER"):
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:

    def test_bundled_defaults(self):
        settings = load_settings(load_env_file=False)

        assert DEFAULT_CONFIG_PATH.exists()
        assert settings.dry_run_sample_size == 50
        assert settings.expiry_threshold_percent == 20.0
        assert settings.url_hash_threshold_ratio == 0.5
        assert settings.max_consecutive_failures == 3
        assert settings.redis_url is None

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("dry_run_sample_size: 25\nmax_consecutive_failures: 5\n")

        settings = load_settings(path, load_env_file=False)

        assert settings.dry_run_sample_size == 25
        assert settings.max_consecutive_failures == 5
        assert settings.pass_threshold == 0.9

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("fetch_timeout_seconds: 5\n")
        monkeypatch.setenv("FEEDGATE_CONFIG", str(path))

        assert load_settings(load_env_file=False).fetch_timeout_seconds == 5.0

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("dry_run_sample_size: 25\n")
        monkeypatch.setenv("FEEDGATE_DRY_RUN_SAMPLE_SIZE", "10")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")
        monkeypatch.setenv("DB_HOST", "db.internal")
        monkeypatch.setenv("DB_PORT", "6543")

        settings = load_settings(path, load_env_file=False)

        assert settings.dry_run_sample_size == 10
        assert settings.redis_url == "redis://cache:6379/0"
        assert settings.database.host == "db.internal"
        assert settings.database.port == 6543

    def test_database_mapping_merged_with_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("database:\n  host: db.yaml\n  name: catalog\n  user: ingest\n")
        monkeypatch.setenv("DB_HOST", "db.env")

        database = load_settings(path, load_env_file=False).database

        assert database.host == "db.env"
        assert database.name == "catalog"
        assert database.user == "ingest"
        assert database.port == 5432

    def test_database_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("database: postgres://somewhere\n")

        with pytest.raises(ConfigurationError, match="database"):
            load_settings(path, load_env_file=False)

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")

        assert load_settings(path, load_env_file=False) == Settings()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_settings(tmp_path / "absent.yaml", load_env_file=False)

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_settings(path, load_env_file=False)

    def test_invalid_value(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("pass_threshold: 1.5\n")

        with pytest.raises(ConfigurationError, match="Invalid settings"):
            load_settings(path, load_env_file=False)

    def test_warn_threshold_above_pass_threshold(self):
        with pytest.raises(ValueError, match="warn_threshold"):
            Settings(pass_threshold=0.5, warn_threshold=0.6)

    def test_page_limit_default_above_max(self):
        with pytest.raises(ValueError, match="quarantine_page_limit_default"):
            Settings(quarantine_page_limit_default=200)

    def test_database_defaults(self):
        database = DatabaseSettings.from_env()

        assert database.host == "localhost"
        assert database.port == 5432


class TestValidateId:

    @pytest.mark.parametrize("value", ["qr_7f3c", "feed-001", "run.1", "ns:id"])
    def test_valid_ids(self, value):
        assert validate_id(value) == value

    def test_strips_whitespace(self):
        assert validate_id("  qr_1  ") == "qr_1"

    @pytest.mark.parametrize("value", ["", "   ", None, 12, "bad id", "drop;table"])
    def test_invalid_ids(self, value):
        with pytest.raises(InputValidationError):
            validate_id(value)

    def test_too_long(self):
        with pytest.raises(InputValidationError, match="maximum length"):
            validate_id("a" * 256)

    def test_is_a_value_error(self):
        with pytest.raises(ValueError):
            validate_id("")


class TestValidateIdList:

    def test_duplicates_dropped_in_order(self):
        assert validate_id_list(["b", "a", "b"], max_items=10) == ["b", "a"]

    def test_empty(self):
        with pytest.raises(InputValidationError, match="cannot be empty"):
            validate_id_list([], max_items=10)

    def test_too_many(self):
        with pytest.raises(InputValidationError, match="maximum of 2"):
            validate_id_list(["a", "b", "c"], max_items=2)

    def test_not_a_list(self):
        with pytest.raises(InputValidationError):
            validate_id_list("a,b", max_items=10)


class TestPagination:

    def test_valid(self):
        assert validate_page(1) == 1
        assert validate_limit(100) == 100

    @pytest.mark.parametrize("page", [0, -1, True, "1"])
    def test_invalid_page(self, page):
        with pytest.raises(InputValidationError):
            validate_page(page)

    @pytest.mark.parametrize("limit", [0, 101, False, 2.5])
    def test_invalid_limit(self, limit):
        with pytest.raises(InputValidationError):
            validate_limit(limit)

    def test_custom_max(self):
        with pytest.raises(InputValidationError, match="maximum of 10"):
            validate_limit(11, max_limit=10)


class TestOperatorFields:

    def test_known_correction_field(self):
        assert validate_correction_field("price") == "price"

    def test_unknown_correction_field(self):
        with pytest.raises(InputValidationError, match="Unknown field"):
            validate_correction_field("colour")

    def test_actor(self):
        assert validate_actor(" ops@example.com ") == "ops@example.com"

    @pytest.mark.parametrize("actor", ["", "  ", None])
    def test_missing_actor(self, actor):
        with pytest.raises(InputValidationError, match="required"):
            validate_actor(actor)
