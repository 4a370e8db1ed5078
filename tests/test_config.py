import json
import logging

import pytest

from aipattest import config
from aipattest.logging_config import (
    AuditLogger,
    StructuredFormatter,
    get_request_id,
    set_request_id,
)


def test_cached_config_reloads_after_invalidate(tmp_path):
    path = tmp_path / "keys.json"
    path.write_text(json.dumps({"keys": []}), encoding="utf-8")
    cache = config.CachedConfig(ttl_seconds=3600)

    assert cache.get_json(str(path)) == {"keys": []}

    path.write_text(json.dumps({"keys": [{"key_id": "k"}]}), encoding="utf-8")
    assert cache.get_json(str(path)) == {"keys": []}
    assert cache.get_json(str(path), force_reload=True) == {"keys": [{"key_id": "k"}]}

    path.write_text(json.dumps({"keys": []}), encoding="utf-8")
    cache.invalidate(str(path))
    assert cache.get_json(str(path)) == {"keys": []}


def test_cached_config_zero_ttl_always_reloads(tmp_path, monkeypatch):
    path = tmp_path / "keys.json"
    path.write_text("{}", encoding="utf-8")
    cache = config.CachedConfig(ttl_seconds=0)
    cache.get_json(str(path))
    monkeypatch.setattr(config.time, "time", lambda: 10 ** 12)
    path.write_text('{"reloaded": true}', encoding="utf-8")
    assert cache.get_json(str(path)) == {"reloaded": True}


def test_load_published_keys(tmp_path):
    path = tmp_path / "published.json"
    path.write_text(json.dumps({"keys": [{"key_id": "key-1", "public_key": "00"}]}), encoding="utf-8")
    config.invalidate_config_cache()
    assert config.load_published_keys(str(path))["keys"][0]["key_id"] == "key-1"


def test_validate_config(monkeypatch, tmp_path):
    key_path = tmp_path / "k.json"
    key_path.write_text("{}", encoding="utf-8")
    monkeypatch.setattr(config, "SIGNER_TYPE", "file")
    monkeypatch.setattr(config, "SIGNING_KEY_PATH", str(key_path))
    monkeypatch.setattr(config, "PUBLISHED_KEYS_PATH", str(tmp_path / "missing.json"))
    assert config.validate_config() == {"published_keys": False, "signing_key": True}

    monkeypatch.setattr(config, "SIGNER_TYPE", "aws_kms")
    monkeypatch.setattr(config, "AWS_KMS_KEY_ID", "")
    assert config.validate_config()["aws_kms_key_id"] is False

    monkeypatch.setattr(config, "SIGNER_TYPE", "hsm")
    assert config.validate_config()["signer_type"] is False


def test_debug_flag(monkeypatch):
    monkeypatch.setenv("AIPATTEST_DEBUG", "true")
    assert config.is_debug()
    monkeypatch.setenv("AIPATTEST_DEBUG", "0")
    assert not config.is_debug()


def test_structured_formatter_emits_json():
    set_request_id("req-123")
    record = logging.LogRecord("aipattest.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.extra_fields = {"event_type": "TEST"}
    data = json.loads(StructuredFormatter().format(record))
    assert data["message"] == "hello world"
    assert data["level"] == "INFO"
    assert data["request_id"] == "req-123"
    assert data["event_type"] == "TEST"


def test_request_id_generated():
    rid = set_request_id()
    assert rid and get_request_id() == rid


@pytest.fixture
def audit_records():
    records = []

    class Collector(logging.Handler):
        def emit(self, record):
            records.append(record)

    logger = logging.getLogger("aipattest.audit.test")
    handler = Collector()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    yield AuditLogger("aipattest.audit.test"), records
    logger.removeHandler(handler)


def test_audit_events(audit_records):
    audit, records = audit_records
    audit.checkpoint_appended("agent-1", "ic-1", "ab" * 32, 0)
    audit.chain_verification(valid=False, links_verified=2, broken_at=2, details="broken")
    audit.writer_contention("agent-1")

    assert [r.extra_fields["event_type"] for r in records] == [
        "CHECKPOINT_APPENDED", "CHAIN_VERIFICATION", "WRITER_CONTENTION",
    ]
    assert records[0].extra_fields["position"] == 0
    assert records[1].levelno == logging.WARNING
    assert records[1].extra_fields["broken_at"] == 2


def test_security_event_severity(audit_records):
    audit, records = audit_records
    audit.security_event("key_mismatch", severity="critical", key_id="key-1")
    assert records[0].levelno == logging.CRITICAL
    assert records[0].extra_fields["key_id"] == "key-1"
