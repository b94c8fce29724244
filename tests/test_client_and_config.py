"""
tests/test_client_and_config.py

Client SDK, configuration and logging tests.

  ORACLE
    ORC-01  Oracle exceptions and unusable scores → OracleDataFetchFailed
    ORC-02  Valid oracle score flows into verify_compliance
  CHECK
    CHK-01  Rejection → False, nothing recorded unless asked
    CHK-02  record_rejections=True appends exactly one violation
  CONFIG
    CFG-01  Defaults ← YAML ← environment, in that precedence
    CFG-02  Unknown keys and unreadable files → ConfigError
"""

import json
import logging

import pytest

from complifi.client import ComplianceClient, fetch_risk_score, jurisdictions_arg
from complifi.config import ConfigError, EngineConfig, PolicySpec
from complifi.core.crypto import Ed25519KeyManager
from complifi.core.exceptions import OracleDataFetchFailed
from complifi.core.jurisdiction import bitmap_from_codes
from complifi.core.models import EventType
from complifi.ledger.accounts import AccountStore
from complifi.ledger.events import MemoryEventSink
from complifi.logging_config import JSONFormatter, configure_logging
from complifi.program.processor import DEFAULT_PROGRAM_ID, ComplianceProgram


@pytest.fixture
def sink():
    return MemoryEventSink()


@pytest.fixture
def admin(sink):
    program = ComplianceProgram(AccountStore(sinks=[sink]))
    client = ComplianceClient(program, Ed25519KeyManager.generate())
    client.initialize()
    client.initialize_policy()
    client.set_policy(max_risk_score=5, require_kyc=False, allowed_jurisdictions=[])
    sink.clear()
    return client


@pytest.fixture
def wallet():
    return Ed25519KeyManager.generate().public_key_hex


# ─────────────────────────────────────────────────────────────
# Oracle
# ─────────────────────────────────────────────────────────────

class TestOracle:

    def test_ORC01_oracle_exception(self, wallet):
        def broken(_wallet):
            raise ConnectionError("oracle offline")

        with pytest.raises(OracleDataFetchFailed) as info:
            fetch_risk_score(broken, wallet)
        assert info.value.code == 6006
        assert isinstance(info.value.__cause__, ConnectionError)

    @pytest.mark.parametrize("score", [-1, 101, None, "5", 2.0, True])
    def test_ORC01_unusable_score(self, wallet, score):
        with pytest.raises(OracleDataFetchFailed):
            fetch_risk_score(lambda _w: score, wallet)

    def test_ORC02_score_is_used(self, admin, wallet):
        queried = []

        def oracle(w):
            queried.append(w)
            return 4

        assert admin.check_compliance(wallet, "swap", oracle=oracle) is True
        assert queried == [wallet]
        assert admin.program.get_state().verification_count == 1

    def test_ORC02_oracle_failure_propagates(self, admin, wallet):
        with pytest.raises(OracleDataFetchFailed):
            admin.check_compliance(wallet, "swap", oracle=lambda _w: 500)
        assert admin.program.get_state().verification_count == 0


# ─────────────────────────────────────────────────────────────
# check_compliance
# ─────────────────────────────────────────────────────────────

class TestCheckCompliance:

    def test_CHK01_rejection_returns_false(self, admin, wallet, sink):
        assert admin.check_compliance(wallet, "swap", risk_score=6) is False
        state = admin.program.get_state()
        assert state.violation_count == 0
        assert state.verification_count == 0
        assert sink.events == []

    def test_CHK01_rejection_logged_as_warning(self, admin, wallet, caplog):
        caplog.set_level(logging.WARNING, logger="complifi")
        admin.check_compliance(wallet, "swap", risk_score=6)
        assert any(
            r.levelno == logging.WARNING and "RiskScoreTooHigh" in r.getMessage()
            for r in caplog.records
        )

    def test_CHK02_rejection_recorded(self, admin, wallet, sink):
        assert admin.check_compliance(
            wallet, "swap", risk_score=6, record_rejections=True,
        ) is False

        assert admin.program.get_state().violation_count == 1
        violations = sink.of_type(EventType.VIOLATION)
        assert len(violations) == 1
        assert violations[0].user == wallet
        assert violations[0].reason.startswith("swap: ")

    def test_CHK02_reason_truncated_to_label_limit(self, admin, wallet, sink):
        action = "é" * 100  # 200 UTF-8 bytes on its own
        admin.set_policy(max_risk_score=0, require_kyc=False, allowed_jurisdictions=[])
        assert admin.check_compliance(
            wallet, action, risk_score=1, record_rejections=True,
        ) is False
        reason = sink.of_type(EventType.VIOLATION)[0].reason
        assert len(reason.encode("utf-8")) <= 200

    def test_success_records_nothing_extra(self, admin, wallet):
        assert admin.check_compliance(wallet, "swap", risk_score=5, record_rejections=True)
        assert admin.program.get_state().violation_count == 0

    def test_needs_a_score(self, admin, wallet):
        with pytest.raises(ValueError):
            admin.check_compliance(wallet, "swap")

    def test_jurisdictions_arg(self):
        assert jurisdictions_arg([1, 9]) == bitmap_from_codes([1, 9]).hex()
        assert jurisdictions_arg(b"\x01\x02") == "0102"


# ─────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────

class TestConfig:

    def test_CFG01_defaults(self):
        config = EngineConfig.load(env={})
        assert config.program_id == DEFAULT_PROGRAM_ID
        assert config.log_level == "INFO"
        assert config.json_logs is False

    def test_CFG01_yaml_then_env(self, tmp_path):
        path = tmp_path / "complifi.yaml"
        path.write_text(
            "program_id: staging\n"
            "state_path: /var/lib/complifi/accounts.json\n"
            "log_level: DEBUG\n",
            encoding="utf-8",
        )
        config = EngineConfig.load(path, env={
            "COMPLIFI_LOG_LEVEL":  "WARNING",
            "COMPLIFI_JSON_LOGS":  "true",
        })
        assert config.program_id == "staging"
        assert config.state_path == "/var/lib/complifi/accounts.json"
        assert config.log_level == "WARNING"
        assert config.json_logs is True

    def test_CFG01_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert EngineConfig.load(path, env={}) == EngineConfig()

    def test_CFG02_unknown_key(self, tmp_path):
        path = tmp_path / "complifi.yaml"
        path.write_text("programme_id: typo\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            EngineConfig.load(path, env={})

    def test_CFG02_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            EngineConfig.load(tmp_path / "nope.yaml", env={})

    def test_CFG02_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("program_id: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            EngineConfig.load(path, env={})

    def test_policy_file(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text(
            "max_risk_score: 5\nrequire_kyc: true\nallowed_jurisdictions: [1, 44]\n",
            encoding="utf-8",
        )
        assert PolicySpec.from_yaml(path) == PolicySpec(5, True, [1, 44])

    def test_policy_file_requires_ceiling(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("require_kyc: true\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            PolicySpec.from_yaml(path)

    def test_policy_file_rejects_non_bool_kyc(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("max_risk_score: 5\nrequire_kyc: sometimes\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            PolicySpec.from_yaml(path)


# ─────────────────────────────────────────────────────────────
# Logging
# ─────────────────────────────────────────────────────────────

class TestLogging:

    def test_json_formatter(self):
        record = logging.LogRecord(
            name="complifi.program.processor",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="Rejected %s",
            args=("verify_compliance",),
            exc_info=None,
        )
        entry = json.loads(JSONFormatter().format(record))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "complifi.program.processor"
        assert entry["message"] == "Rejected verify_compliance"
        assert "timestamp" in entry

    def test_configure_logging_replaces_handlers(self):
        logger = logging.getLogger("complifi")
        saved_handlers, saved_level = list(logger.handlers), logger.level
        try:
            configure_logging("debug", json_output=True)
            configure_logging("debug", json_output=True)
            assert len(logger.handlers) == 1
            assert isinstance(logger.handlers[0].formatter, JSONFormatter)
            assert logger.level == logging.DEBUG
        finally:
            logger.handlers[:] = saved_handlers
            logger.setLevel(saved_level)
