import dataclasses
import io
import json
import logging

import pytest

from poolvault import logging as vlog
from poolvault.config import CFG, load_config
from poolvault.errors import (
    BudgetExhausted,
    CodecError,
    CriticalWriteFailure,
    PolicyViolation,
    ReasonCode,
    VaultError,
)
from poolvault.runtime.context import InvocationContext, TriggerKind, to_bytes

# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


def test_error_to_dict_is_json_safe():
    err = PolicyViolation(ReasonCode.ALREADY_REFUNDED, "already refunded", address=b"\xab\xcd", n=3)
    d = err.to_dict()
    assert d == {
        "code": 7,
        "reason": "ALREADY_REFUNDED",
        "message": "already refunded",
        "data": {"address": "ABCD", "n": 3},
        "retryable": False,
    }
    json.dumps(d)
    assert "ALREADY_REFUNDED(7)" in str(err)


def test_with_context_keeps_type_and_source_untouched():
    err = CodecError("bad", field="x")
    err2 = err.with_context(key=b"\x01")
    assert isinstance(err2, CodecError)
    assert err2.data == {"field": "x", "key": "01"}
    assert err.data == {"field": "x"}


def test_error_families():
    assert CriticalWriteFailure(b"total_raised").retryable
    assert CriticalWriteFailure(b"total_raised").data == {"key": "total_raised"}
    assert not BudgetExhausted(1, 2, 3).retryable
    assert isinstance(BudgetExhausted(1, 2, 3), VaultError)


# ---------------------------------------------------------------------------
# Invocation context
# ---------------------------------------------------------------------------


def test_context_normalizes_inputs():
    ctx = InvocationContext(
        trigger="invoke",
        sender="0x" + "ab" * 20,
        params={"command": " Coupon ", "pool": 41},
    )
    assert ctx.trigger is TriggerKind.INVOKE
    assert ctx.sender == b"\xab" * 20
    assert ctx.command == "coupon"
    assert ctx.param("pool") == "41"
    assert ctx.param("missing", "d") == "d"
    with pytest.raises(TypeError):
        ctx.params["x"] = "y"
    assert ctx.to_dict()["sender"] == "AB" * 20


@pytest.mark.parametrize(
    "kwargs,code",
    [
        ({"amount": -1}, ReasonCode.BAD_AMOUNT),
        ({"amount": 1.5}, ReasonCode.BAD_AMOUNT),
        ({"now": -1}, ReasonCode.BAD_TRANSACTION),
    ],
)
def test_context_validation(kwargs, code):
    with pytest.raises(PolicyViolation) as ei:
        InvocationContext(trigger=TriggerKind.PAYMENT, sender=b"\x01" * 20, **kwargs)
    assert ei.value.code == code


def test_trigger_parse_and_to_bytes():
    assert TriggerKind.parse("emission_result") is TriggerKind.EMISSION_RESULT
    assert TriggerKind.parse("whatever") is TriggerKind.OTHER
    assert to_bytes(bytearray(b"\x01")) == b"\x01"
    with pytest.raises(PolicyViolation):
        to_bytes(12)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


def test_config_env_overrides(monkeypatch):
    monkeypatch.setenv("POOLVAULT_DUST_CEILING", "250")
    monkeypatch.setenv("VAULT_MAX_HOLDERS", "0")  # legacy prefix, clamped to 1
    monkeypatch.setenv("POOLVAULT_STEP_LIMIT", "lots")
    load_config.cache_clear()
    try:
        cfg = load_config()
        assert cfg.dust_ceiling == 250
        assert cfg.max_holders == 1
        assert cfg.step_limit == 100_000
    finally:
        load_config.cache_clear()


def test_config_replace_and_dict():
    small = CFG.replace(max_participants=3)
    assert small.max_participants == 3
    assert small.as_dict()["max_participants"] == 3
    assert set(small.as_dict()) == set(CFG.as_dict())
    with pytest.raises(dataclasses.FrozenInstanceError):
        small.max_participants = 4


def test_capacities_fit_the_value_cap():
    big = CFG.replace(max_participants=1000, max_holders=4096, max_tokens=4096)
    assert big.max_participants == 16_384 // 21
    assert big.max_holders == 16_384 // 21
    assert big.max_tokens == 16_384 // 33
    assert CFG.replace(max_participants=10).max_participants == 10


def test_key_and_value_caps_cover_the_layout():
    cfg = CFG.replace(address_len=64, max_key_bytes=16, max_value_bytes=64, max_participants=5)
    assert cfg.max_key_bytes == 9 + 128
    assert cfg.max_value_bytes == 65
    assert cfg.max_participants == 1


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def _record(msg="hello", **extra):
    rec = logging.LogRecord("poolvault.test", logging.INFO, __file__, 1, msg, None, None)
    for k, v in extra.items():
        setattr(rec, k, v)
    return rec


def test_json_formatter_includes_context_and_hex_bytes():
    with vlog.trace_scope("t-1", vault="v", sender=b"\x0a\x0b") as tid:
        assert tid == "t-1"
        line = vlog.JSONFormatter().format(_record(amount=5, dest=b"\xff"))
    payload = json.loads(line)
    assert payload["msg"] == "hello"
    assert payload["trace_id"] == "t-1"
    assert payload["sender"] == "0A0B"
    assert payload["dest"] == "FF"
    assert payload["amount"] == 5
    assert vlog.context() == {}


def test_text_formatter_line():
    with vlog.trace_scope("t-2", trigger="PAYMENT"):
        line = vlog.TextFormatter().format(_record("status changed", to="SUCCEEDED"))
    assert "trace_id=t-2 trigger=PAYMENT" in line
    assert line.endswith("status changed to=SUCCEEDED")


def test_bind_unbind_and_adapter():
    vlog.clear_context()
    vlog.bind(vault="a")
    vlog.unbind("vault")
    assert vlog.context() == {}
    adapter = vlog.with_fields(vlog.get_logger("poolvault.test"), vault=b"\x01")
    _, kwargs = adapter.process("m", {"extra": {"x": 1}})
    assert kwargs["extra"] == {"vault": "01", "x": 1}


@pytest.fixture
def restore_root_logger():
    logger = logging.getLogger(vlog.ROOT_LOGGER)
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    logger.handlers[:] = saved[0]
    logger.setLevel(saved[1])
    logger.propagate = saved[2]


def test_configure_writes_json_lines(restore_root_logger):
    buf = io.StringIO()
    vlog.configure(json=True, level="DEBUG", stream=buf)
    vlog.get_logger("poolvault.ledger").debug("contribution recorded", extra={"amount": 600})
    payload = json.loads(buf.getvalue().strip())
    assert payload["level"] == "DEBUG"
    assert payload["logger"] == "poolvault.ledger"
    assert payload["amount"] == 600
    assert restore_root_logger.propagate is False


def test_version_override(monkeypatch):
    from poolvault.version import BASE_VERSION, resolve_version

    monkeypatch.setenv("POOLVAULT_VERSION", "9.9.9")
    assert resolve_version() == "9.9.9"
    monkeypatch.delenv("POOLVAULT_VERSION")
    assert resolve_version()
    assert BASE_VERSION.count(".") == 2
