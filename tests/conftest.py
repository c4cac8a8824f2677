"""Test configuration for the onetime package."""

import pytest

from onetime.keys import KeyHistory, KeyInterval, kex_reason


CONV_ID = "conv_test_123"


@pytest.fixture
def conv_id() -> str:
    """Conversation id shared by the algebra tests."""
    return CONV_ID


@pytest.fixture
def history() -> KeyHistory:
    """Provide an empty ledger for the test conversation."""
    return KeyHistory(CONV_ID)


@pytest.fixture
def scenario_history() -> KeyHistory:
    """Ledger after one key exchange, one sent and one received message."""
    h = KeyHistory(CONV_ID)
    h.record_extension(KeyInterval(CONV_ID, 0, 1024), kex_reason("kex_123"), "kex_123")
    h.record_consumption(h.current_state.consume_segment(12), 'send "hello world"', "msg_001")
    h.record_consumption(h.current_state.consume_segment(2), 'recv "yo"', "msg_002")
    return h


@pytest.fixture
def sample_config():
    """Provide a development configuration for testing."""
    from onetime.config import Config, ConfigProfile
    return Config(profile=ConfigProfile.DEVELOPMENT)
