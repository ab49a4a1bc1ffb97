"""
Security tests for data protection and privacy

Tests the sealed box, the session codec's client binding, master key
validation, and that tokens and passwords stay out of logs.
"""

import base64
import json
import logging

import pytest

from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.security import (
    client_fingerprint,
    generate_master_key,
    load_master_key,
    mask_email,
    sanitize_log_data,
)
from merchant_relay.core.utils.encryption import NONCE_BYTES, TAG_BYTES, SealedBox
from merchant_relay.core.utils.logging_config import (
    PLAIN_FORMAT,
    SECURITY_LOGGER,
    CorrelationIdFilter,
    StructuredFormatter,
    log_security_event,
    set_correlation_id,
)
from merchant_relay.core.utils.session_codec import SessionCodec
from merchant_relay.providers.gobiz.common.exceptions import UpstreamFailure
from merchant_relay.providers.gobiz.common.services.auth_flows import LOGIN_REQUEST_PATH, PasswordFlow
from merchant_relay.providers.gobiz.common.services.token_manager import TOKEN_PATH

# Mark all tests in this module as security tests
pytestmark = pytest.mark.security

USER_AGENT = "pytest-agent/1.0"


@pytest.mark.encryption
class TestSealedBox:
    """Test authenticated encryption of opaque blobs"""

    def test_roundtrip(self, box):
        assert box.unseal(box.seal(b"\x00binary\xff")) == b"\x00binary\xff"
        assert box.unseal_text(box.seal_text("refresh-token")) == "refresh-token"

    def test_layout(self, box):
        sealed = base64.urlsafe_b64decode(box.seal(b"abc"))

        assert len(sealed) == NONCE_BYTES + TAG_BYTES + 3

    def test_nonce_is_fresh_per_seal(self, box):
        first, second = box.seal(b"same"), box.seal(b"same")

        assert first != second
        assert base64.urlsafe_b64decode(first)[:NONCE_BYTES] != base64.urlsafe_b64decode(second)[:NONCE_BYTES]

    def test_tampered_ciphertext_rejected(self, box):
        raw = bytearray(base64.urlsafe_b64decode(box.seal(b"payload")))
        raw[-1] ^= 0x01

        assert box.unseal(base64.urlsafe_b64encode(bytes(raw)).decode()) is None

    def test_tampered_tag_rejected(self, box):
        raw = bytearray(base64.urlsafe_b64decode(box.seal(b"payload")))
        raw[NONCE_BYTES] ^= 0x80

        assert box.unseal(base64.urlsafe_b64encode(bytes(raw)).decode()) is None

    def test_wrong_key_rejected(self, box):
        other = SealedBox(bytes.fromhex(generate_master_key()))

        assert other.unseal(box.seal(b"payload")) is None

    @pytest.mark.parametrize("blob", [None, "", "not base64 !!", "AAAA", base64.urlsafe_b64encode(b"x" * 20).decode()])
    def test_garbage_returns_none(self, box, blob):
        assert box.unseal(blob) is None
        assert box.unseal_text(blob) is None

    def test_empty_plaintext(self, box):
        assert box.unseal(box.seal(b"")) == b""

    @pytest.mark.parametrize("key", [b"", b"short", b"x" * 31, b"x" * 33])
    def test_key_must_be_32_bytes(self, key):
        with pytest.raises(ValueError):
            SealedBox(key)


class TestMasterKey:
    """Test MASTER_KEY validation"""

    def test_generated_key_is_valid(self):
        key = generate_master_key()

        assert len(key) == 64
        assert len(load_master_key(key)) == 32

    def test_generated_keys_differ(self):
        assert generate_master_key() != generate_master_key()

    @pytest.mark.parametrize(
        "value,message",
        [
            (None, "Missing env: MASTER_KEY"),
            ("", "Missing env: MASTER_KEY"),
            ("zz" * 32, "hex"),
            ("ab" * 16, "32 bytes"),
            ("ab" * 33, "32 bytes"),
        ],
    )
    def test_invalid_keys(self, value, message):
        with pytest.raises(ValueError, match=message):
            load_master_key(value)

    def test_from_hex(self):
        box = SealedBox.from_hex("ab" * 32)

        assert box.unseal(box.seal(b"ok")) == b"ok"


@pytest.mark.encryption
class TestSessionCodec:
    """Test the sealed cookie value and its binding to the client"""

    @pytest.fixture
    def codec(self, box):
        return SessionCodec(box)

    def test_roundtrip(self, codec, record_factory):
        record = record_factory(merchant_id="G001", merchant_name="Warung")

        decoded = codec.decode(codec.encode(record), record.client_identity)

        assert decoded == record

    def test_token_is_opaque(self, codec, record_factory, box):
        record = record_factory(merchant_name="Warung Rahasia")
        token = codec.encode(record)

        assert "Warung" not in token
        assert record.account_handle not in token

    def test_other_user_agent_rejected(self, codec, record_factory):
        token = codec.encode(record_factory(user_agent="Browser A"))

        assert codec.decode(token, "Browser B") is None

    def test_missing_user_agent_binds_to_empty_identity(self, codec):
        record = SessionRecord.new(None)
        token = codec.encode(record)

        assert codec.decode(token, "") == record
        assert codec.decode(token, USER_AGENT) is None
        assert record.user_agent == "Mozilla/5.0"

    def test_token_from_other_key_rejected(self, codec, record_factory):
        other = SessionCodec(SealedBox(bytes.fromhex(generate_master_key())))

        assert codec.decode(other.encode(record_factory()), USER_AGENT) is None

    def test_unknown_schema_version_rejected(self, codec, box, record_factory):
        payload = {"v": 2, **record_factory().model_dump()}
        token = box.seal(json.dumps(payload).encode())

        assert codec.decode(token, USER_AGENT) is None

    @pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b"\xff\xfe"])
    def test_malformed_payload_rejected(self, codec, box, raw):
        assert codec.decode(box.seal(raw), USER_AGENT) is None

    def test_invalid_fields_rejected(self, codec, box):
        payload = {
            "v": 1,
            "account_handle": "",
            "client_identity": USER_AGENT,
            "client_fingerprint": client_fingerprint(USER_AGENT),
        }

        assert codec.decode(box.seal(json.dumps(payload).encode()), USER_AGENT) is None

    def test_none_token(self, codec):
        assert codec.decode(None, USER_AGENT) is None

    def test_fingerprint_is_hashed(self):
        fingerprint = client_fingerprint(USER_AGENT)

        assert USER_AGENT not in fingerprint
        assert len(fingerprint) == 64
        assert client_fingerprint(None) == client_fingerprint("")


class TestLogHygiene:
    """Test that secrets do not reach the logs"""

    def test_sanitize_masks_bearer_tokens(self):
        assert "abc.def" not in sanitize_log_data("Authorization: Bearer abc.def")

    def test_sanitize_masks_named_secrets(self):
        sanitized = sanitize_log_data("password=hunter2 otp: 123456")

        assert "hunter2" not in sanitized
        assert "123456" not in sanitized

    def test_sanitize_masks_long_opaque_values(self):
        assert "A" * 40 not in sanitize_log_data("value " + "A" * 40)

    def test_sanitize_truncates(self):
        assert len(sanitize_log_data("x " * 200, max_length=50)) <= 53

    def test_mask_email(self):
        assert mask_email("owner@example.com") == "o****@example.com"

    def test_structured_formatter_redacts_sensitive_extras(self):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "event", None, None)
        record.refresh_token = "secret-refresh"
        record.account_handle = "handle-1"

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["extra"]["refresh_token"] == "[REDACTED]"
        assert entry["extra"]["account_handle"] == "handle-1"
        assert "secret-refresh" not in json.dumps(entry)

    async def test_login_does_not_log_password(self, http, tokens, fake_gobiz, caplog):
        async def no_sleep(_):
            return None

        fake_gobiz.queue(LOGIN_REQUEST_PATH, fake_gobiz.reply(200, {}))
        fake_gobiz.queue(TOKEN_PATH, fake_gobiz.tokens(access="a-secret", refresh="r-secret"))
        caplog.set_level(logging.DEBUG)

        await PasswordFlow(http, tokens, sleep=no_sleep).login(
            SessionRecord.new(USER_AGENT), "owner@example.com", "hunter2-pass"
        )

        logged = " ".join(r.getMessage() for r in caplog.records)
        assert "hunter2-pass" not in logged
        assert "a-secret" not in logged
        assert "owner@example.com" not in logged

    def test_forced_logout_event_is_scrubbed_and_correlated(self, caplog):
        error = UpstreamFailure(
            "upstream-error",
            status=503,
            message="rejected Bearer eyJhbGciOi.payload token=abc123",
            upstream={"access_token": "raw-body-secret"},
        )
        caplog.set_level(logging.INFO, logger=SECURITY_LOGGER)
        set_correlation_id("req-42")

        log_security_event("forced_logout", "Ending session", account_handle="handle-1", error=error)

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.event_type == "forced_logout"
        assert record.correlation_id == "req-42"
        assert record.reason == "upstream-error"
        assert record.upstream_status == 503
        assert "eyJhbGciOi" not in record.upstream_message
        assert "abc123" not in record.upstream_message
        assert "raw-body-secret" not in StructuredFormatter().format(record)

    def test_correlation_id_filter_stamps_records(self):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "event", None, None)
        set_correlation_id("req-7")

        assert CorrelationIdFilter().filter(record) is True
        assert record.correlation_id == "req-7"
        assert json.loads(StructuredFormatter().format(record))["correlation_id"] == "req-7"

    def test_plain_format_includes_correlation_id(self):
        record = logging.LogRecord("test", logging.INFO, __file__, 1, "event", None, None)
        set_correlation_id("req-9")
        CorrelationIdFilter().filter(record)

        assert "[req-9]" in logging.Formatter(PLAIN_FORMAT).format(record)
