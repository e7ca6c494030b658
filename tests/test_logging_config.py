"""
Tests for the structured logging processors.

Verifies that secrets are redacted and that the call session id is attached
to every record logged while a call is handled.
"""

from agi_tts.logging_config import (
    add_correlation_id,
    add_service_context,
    get_correlation_id,
    reset_correlation_id,
    sanitize_secrets,
    set_correlation_id,
)


class TestSanitizeSecrets:
    def test_redact_password(self):
        result = sanitize_secrets(None, None, {'event': 'Login', 'password': 'SuperSecret123!'})

        assert result['password'] == 'Su***REDACTED***'
        assert result['event'] == 'Login'

    def test_separator_variants_match(self):
        result = sanitize_secrets(None, None, {'api-key': 'abcdefgh', 'sip_password': 'hunter22'})

        assert result['api-key'] == 'ab***REDACTED***'
        assert result['sip_password'] == 'hu***REDACTED***'

    def test_short_and_non_string_values(self):
        result = sanitize_secrets(None, None, {'token': 'abc', 'secret': 1234, 'password': None})

        assert result['token'] == '***REDACTED***'
        assert result['secret'] == '***REDACTED***'
        assert result['password'] is None

    def test_nested_dicts(self):
        result = sanitize_secrets(None, None, {'config': {'auth_token': 'abcdefgh', 'host': 'localhost'}})

        assert result['config']['auth_token'] == 'ab***REDACTED***'
        assert result['config']['host'] == 'localhost'

    def test_call_fields_untouched(self):
        event = {'event': 'Handling TTS request', 'callerid': '1000', 'extension': '500', 'language': 'es'}
        assert sanitize_secrets(None, None, dict(event)) == event


class TestCorrelationId:
    def test_set_and_reset(self):
        token = set_correlation_id("session-1")
        try:
            assert get_correlation_id() == "session-1"
            assert add_correlation_id(None, None, {})['correlation_id'] == "session-1"
        finally:
            reset_correlation_id(token)
        assert get_correlation_id() is None

    def test_generated_when_missing(self):
        token = set_correlation_id()
        try:
            assert get_correlation_id()
        finally:
            reset_correlation_id(token)

    def test_no_id_outside_a_call(self):
        assert 'correlation_id' not in add_correlation_id(None, None, {})


def test_service_context():
    result = add_service_context(None, None, {'logger': 'agi_tts.engine'})

    assert result['service'] == 'tts-agi'
    assert result['component'] == 'agi_tts.engine'
