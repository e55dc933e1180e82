"""
Tests for engine configuration loading.
"""

import pytest
import yaml

from shipment_config import CONFIG_ENV_VAR, ConfigValidationError, get_active_config
from shipment_config.loader import compute_checksum, parse_engine_config
from shipment_kernel.db.engine import reset_engine
from shipment_kernel.domain.dtos import AuditLogFilter
from shipment_kernel.services.brokerage_engine import BrokerageEngine
from tests.conftest import CLIENT_ID, address, sample_items


def _write(tmp_path, document, name="engine.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump(document))
    return path


class TestDefaultConfig:
    def test_shipped_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = get_active_config()
        assert config.config_id == "default"
        assert config.offer_limit == 3
        assert config.fast_delivery_max_days == 2
        assert config.read_retries == 3
        assert config.audit_list_limit == 100
        assert config.log_level == "INFO"
        assert config.database_url.startswith("sqlite:///")
        assert len(config.checksum) == 64

    def test_load_is_traced(self, monkeypatch, captured_logs):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "SHIPMENT_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["checksum"] == config.checksum
        assert traces[0]["source"].endswith("default.yaml")


class TestCustomConfig:
    def test_explicit_path(self, tmp_path):
        path = _write(tmp_path, {
            "config_id": "strict",
            "version": 2,
            "negotiation": {"offer_limit": 1},
            "logging": {"level": "debug"},
        })
        config = get_active_config(path)
        assert config.config_id == "strict"
        assert config.version == 2
        assert config.offer_limit == 1
        assert config.log_level == "DEBUG"
        # Sections left out keep their defaults
        assert config.fast_delivery_max_days == 2

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"matching": {"fast_delivery_max_days": 4}})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert get_active_config().fast_delivery_max_days == 4

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_empty_document_is_all_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert get_active_config(path).offer_limit == 3

    def test_top_level_must_be_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigValidationError):
            get_active_config(path)


class TestValidation:
    def test_every_problem_is_reported(self):
        with pytest.raises(ConfigValidationError) as exc_info:
            parse_engine_config({
                "negotiation": {"offer_limit": 0},
                "store": {"read_retries": "three", "retry_backoff_seconds": -1},
                "logging": {"level": "LOUD"},
            }, "inline")
        errors = exc_info.value.errors
        assert len(errors) == 4
        assert any("negotiation.offer_limit" in e for e in errors)
        assert any("store.read_retries" in e for e in errors)
        assert any("store.retry_backoff_seconds" in e for e in errors)
        assert any("logging.level" in e for e in errors)
        assert "inline" in str(exc_info.value)

    def test_unknown_section(self):
        with pytest.raises(ConfigValidationError, match="unknown section"):
            parse_engine_config({"pricing": {"markup": 2}})

    def test_section_must_be_a_mapping(self):
        with pytest.raises(ConfigValidationError, match="audit: must be a mapping"):
            parse_engine_config({"audit": 5})

    def test_booleans_are_not_integers(self):
        with pytest.raises(ConfigValidationError):
            parse_engine_config({"negotiation": {"offer_limit": True}})

    def test_checksum_ignores_key_order(self):
        first = {"a": 1, "b": {"c": 2, "d": 3}}
        second = {"b": {"d": 3, "c": 2}, "a": 1}
        assert compute_checksum(first) == compute_checksum(second)
        assert compute_checksum(first) != compute_checksum({"a": 2, "b": {"c": 2, "d": 3}})


class TestEngineFromConfig:
    def test_facade_built_from_file(self, tmp_path):
        path = _write(tmp_path, {
            "store": {"database_url": f"sqlite:///{tmp_path / 'configured.db'}", "read_retries": 1},
            "negotiation": {"offer_limit": 2},
            "audit": {"default_list_limit": 1},
        })
        try:
            engine = BrokerageEngine.from_config(get_active_config(path))
            assert engine.offer_limit == 2
            assert engine.read_retries == 1

            request = engine.create_request(CLIENT_ID, address(), address("Jordan"), sample_items())
            engine.submit_offer(request.id, "company-a", "100")
            assert len(engine.list_audit_log()) == 1
            assert len(engine.list_audit_log(AuditLogFilter(limit=10))) == 2
            assert engine.validate_audit_chain() is True
        finally:
            reset_engine()
