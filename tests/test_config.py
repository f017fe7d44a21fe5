"""Transfer settings loading and validation."""

import json
import os

import pytest

from dbtransfer.config import TransferSettings, get_store_url
from dbtransfer.exceptions import ConfigurationError


class TestDefaults:

    def test_defaults(self):
        settings = TransferSettings()

        assert settings.fetch_size == 10000
        assert settings.commit_after_rows == 10000
        assert settings.use_transactions
        assert settings.on_duplicate_key_insert_method == "insert"
        assert not settings.segmented
        assert settings.validate() is settings

    def test_copy_leaves_original_untouched(self):
        settings = TransferSettings()
        changed = settings.copy(max_jobs=4)

        assert changed.max_jobs == 4
        assert settings.max_jobs == 1


class TestFromDict:

    def test_camel_case_keys(self):
        settings = TransferSettings.from_dict({
            "extractType": "segmented",
            "segmentSize": "500",
            "truncateBeforeLoad": "yes",
            "onDuplicateKeyInsertMethod": "Replace",
        })

        assert settings.segmented
        assert settings.segment_size == 500
        assert settings.truncate_before_load is True
        assert settings.on_duplicate_key_insert_method == "replace"

    def test_base_values_are_kept(self):
        base = TransferSettings(fetch_size=25)
        settings = TransferSettings.from_dict({"max_jobs": 2, "fetch_size": None}, base=base)

        assert settings.fetch_size == 25
        assert settings.max_jobs == 2

    def test_unknown_option(self):
        with pytest.raises(ConfigurationError) as exc_info:
            TransferSettings.from_dict({"batchSize": 10})

        assert exc_info.value.option == "batchSize"

    @pytest.mark.parametrize("data", [
        {"use_transactions": "maybe"},
        {"fetch_size": "lots"},
        {"retry_delay": "soon"},
    ])
    def test_unconvertible_values(self, data):
        with pytest.raises(ConfigurationError):
            TransferSettings.from_dict(data)

    def test_callable_error_policy_is_kept(self):
        def policy(error):
            return "stop"

        assert TransferSettings.from_dict({"errorPolicy": policy}).error_policy is policy


class TestFromFileAndEnv:

    def test_from_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"commitAfterRows": 250, "useBatchInsert": False}), encoding="utf-8")

        settings = TransferSettings.from_file(str(path))

        assert settings.commit_after_rows == 250
        assert settings.use_batch_insert is False

    def test_file_must_hold_an_object(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ConfigurationError):
            TransferSettings.from_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            TransferSettings.from_file(str(tmp_path / "missing.json"))

    def test_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DBTRANSFER_FETCH_SIZE", "123")
        monkeypatch.setenv("DBTRANSFER_ERROR_POLICY", "retry-2")
        monkeypatch.setenv("DBTRANSFER_USE_TRANSACTIONS", "")

        settings = TransferSettings.from_env(dotenv_path=str(tmp_path / ".env"))

        assert settings.fetch_size == 123
        assert settings.error_policy == "retry-2"
        assert settings.use_transactions is True

    def test_dotenv_file_is_read(self, monkeypatch, tmp_path):
        monkeypatch.delenv("DBTRANSFER_MAX_JOBS", raising=False)
        env_file = tmp_path / ".env"
        env_file.write_text("DBTRANSFER_MAX_JOBS=3\n", encoding="utf-8")

        try:
            settings = TransferSettings.from_env(dotenv_path=str(env_file))
        finally:
            os.environ.pop("DBTRANSFER_MAX_JOBS", None)

        assert settings.max_jobs == 3

    def test_store_url_from_env(self, monkeypatch):
        monkeypatch.setenv("DBTRANSFER_STORE_URL", "sqlite:///runs.db")

        assert get_store_url() == "sqlite:///runs.db"


class TestValidate:

    @pytest.mark.parametrize("changes, option", [
        ({"extract_type": "streaming"}, "extract_type"),
        ({"fetch_size": 0}, "fetch_size"),
        ({"commit_after_rows": -5}, "commit_after_rows"),
        ({"retry_delay": -1.0}, "retry_delay"),
        ({"on_duplicate_key_insert_method": "merge"}, "on_duplicate_key_insert_method"),
        ({"name_case": "title"}, "name_case"),
        ({"error_policy": "panic"}, "error_policy"),
    ])
    def test_invalid_values(self, changes, option):
        with pytest.raises(ConfigurationError) as exc_info:
            TransferSettings().copy(**changes).validate()

        assert exc_info.value.option == option
