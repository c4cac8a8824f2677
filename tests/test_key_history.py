from __future__ import annotations

import json
import logging

import pytest

from onetime.config import Config, ConfigProfile, KeyExchangeConfig, LedgerConfig
from onetime.keys import (
    CrossConversationMismatch,
    InsufficientKeyMaterial,
    KeyHistory,
    KeyInterval,
    KeyOperationType,
    LedgerCorruption,
    NonContiguousConsumption,
    NonContiguousExtension,
    deserialize_key_history,
    dumps_key_history,
    kex_reason,
    loads_key_history,
    serialize_key_history,
)


def test_new_history_starts_empty(history: KeyHistory, conv_id: str) -> None:
    assert history.is_empty
    assert history.length == 0
    assert len(history) == 0
    assert history.current_state == KeyInterval.empty(conv_id)
    assert history.format() == "t0 : key = [0, 0)"


def test_record_extension_updates_state(history: KeyHistory, conv_id: str) -> None:
    op = history.record_extension(KeyInterval(conv_id, 0, 1024), kex_reason("kex_123"), "kex_123")

    assert history.length == 1
    assert not history.is_empty
    assert history.current_state == KeyInterval(conv_id, 0, 1024)
    assert op.type is KeyOperationType.EXTENSION
    assert op.kex_id == "kex_123"
    assert op.message_id is None
    assert op.reason == "kex id=kex_123"
    assert op.key_before == KeyInterval.empty(conv_id)
    assert op.key_after == history.current_state


def test_record_consumption_updates_state(history: KeyHistory, conv_id: str) -> None:
    history.record_extension(KeyInterval(conv_id, 0, 1024), "kex id=kex_123")
    op = history.record_consumption(
        history.current_state.consume_segment(12), 'send "hello world"', message_id="msg_456"
    )

    assert history.length == 2
    assert history.current_state == KeyInterval(conv_id, 12, 1024)
    assert op.type is KeyOperationType.CONSUMPTION
    assert op.message_id == "msg_456"
    assert op.kex_id is None
    assert op.operator_symbol == "-"


def test_full_scenario_with_formatted_output(scenario_history: KeyHistory, conv_id: str) -> None:
    assert scenario_history.length == 3
    assert scenario_history.current_state == KeyInterval(conv_id, 14, 1024)

    lines = scenario_history.format().split("\n")
    assert lines == [
        "t0 : key = [0, 0)",
        "t1 : key = [0, 1024)\t+ [0, 1024) by kex id=kex_123",
        't2 : key = [12, 1024)\t- [0, 12) by send "hello world"',
        't3 : key = [14, 1024)\t- [12, 14) by recv "yo"',
    ]


@pytest.mark.parametrize(
    "segment,error",
    [
        (KeyInterval("conv_test_123", 0, 10), NonContiguousExtension),
        (KeyInterval("other", 1024, 2048), CrossConversationMismatch),
    ],
)
def test_rejected_extension_is_not_recorded(
    scenario_history: KeyHistory, segment: KeyInterval, error: type
) -> None:
    before = scenario_history.current_state
    with pytest.raises(error):
        scenario_history.record_extension(segment, "bad kex")
    assert scenario_history.length == 3
    assert scenario_history.current_state == before


@pytest.mark.parametrize(
    "segment,error",
    [
        (KeyInterval("conv_test_123", 12, 20), NonContiguousConsumption),
        (KeyInterval("conv_test_123", 14, 2000), InsufficientKeyMaterial),
        (KeyInterval("other", 14, 20), CrossConversationMismatch),
    ],
)
def test_rejected_consumption_is_not_recorded(
    scenario_history: KeyHistory, segment: KeyInterval, error: type
) -> None:
    before = scenario_history.current_state
    with pytest.raises(error):
        scenario_history.record_consumption(segment, "replay attempt")
    assert scenario_history.length == 3
    assert scenario_history.current_state == before


def test_rejected_operation_is_logged(history: KeyHistory, conv_id: str, caplog) -> None:
    with caplog.at_level(logging.WARNING, logger="onetime.keys.history"):
        with pytest.raises(InsufficientKeyMaterial):
            history.record_consumption(KeyInterval(conv_id, 0, 1), "send")
    assert "rejected consumption" in caplog.text


def test_operations_view_is_read_only(scenario_history: KeyHistory, conv_id: str) -> None:
    ops = scenario_history.operations
    with pytest.raises((AttributeError, TypeError)):
        ops.append(ops[0])  # type: ignore[attr-defined]
    with pytest.raises(TypeError):
        ops[0] = ops[1]  # type: ignore[index]

    assert scenario_history.length == 3
    assert scenario_history.current_state == KeyInterval(conv_id, 14, 1024)


def test_current_state_is_fold_of_operations(scenario_history: KeyHistory) -> None:
    state = scenario_history.initial_state
    for op in scenario_history.operations:
        state = state + op.segment if op.type is KeyOperationType.EXTENSION else state - op.segment
    assert state == scenario_history.current_state


def test_copy_is_independent(scenario_history: KeyHistory) -> None:
    clone = scenario_history.copy()
    assert clone == scenario_history

    clone.record_consumption(clone.current_state.consume_segment(6), 'send "later"')
    assert clone.length == 4
    assert scenario_history.length == 3
    assert clone != scenario_history


def test_needs_key_exchange(history: KeyHistory, conv_id: str) -> None:
    assert history.needs_key_exchange()
    history.record_extension(KeyInterval(conv_id, 0, 2048), "kex id=k")
    assert not history.needs_key_exchange()
    assert history.needs_key_exchange(threshold=4096)


def test_real_world_lifecycle() -> None:
    conv_id = "conv_real_world"
    history = KeyHistory(conv_id)

    history.record_extension(KeyInterval(conv_id, 0, 65536), kex_reason("kex_initial"), "kex_initial")
    assert history.current_state.length == 65536

    for direction, content, size in [
        ("send", "pseudo Alice", 672),
        ("recv", "pseudo Bob", 648),
        ("send", "Hello Bob!", 88),
        ("recv", "Hi Alice!", 72),
        ("send", "How are you?", 96),
        ("recv", "Great, thanks!", 112),
    ]:
        seg = history.current_state.consume_segment(size)
        history.record_consumption(seg, f'{direction} "{content}"')

    ext = history.current_state.extend_segment(32768)
    history.record_extension(ext, kex_reason("kex_extend_1"), "kex_extend_1")

    consumed = 672 + 648 + 88 + 72 + 96 + 112
    assert history.length == 8
    assert history.current_state == KeyInterval(conv_id, consumed, 65536 + 32768)

    # No byte was handed out twice.
    spent = [op.segment for op in history.operations if op.type is KeyOperationType.CONSUMPTION]
    for i, a in enumerate(spent):
        for b in spent[i + 1 :]:
            assert not a.overlaps(b)


def test_serialization_roundtrip(scenario_history: KeyHistory) -> None:
    blob = serialize_key_history(scenario_history)
    assert blob["conversationId"] == scenario_history.conversation_id
    assert [op["type"] for op in blob["operations"]] == ["extension", "consumption", "consumption"]
    assert blob["operations"][0]["kexId"] == "kex_123"
    assert blob["operations"][1]["messageId"] == "msg_001"
    assert (blob["operations"][2]["startIndex"], blob["operations"][2]["endIndex"]) == (12, 14)

    restored = deserialize_key_history(json.loads(json.dumps(blob)))
    assert restored.conversation_id == scenario_history.conversation_id
    assert restored.length == scenario_history.length
    assert restored.current_state == scenario_history.current_state
    assert restored.operations == scenario_history.operations
    assert restored == scenario_history
    assert restored.format() == scenario_history.format()


def test_json_text_roundtrip(scenario_history: KeyHistory) -> None:
    restored = loads_key_history(dumps_key_history(scenario_history))
    assert restored == scenario_history


def test_restore_accepts_flat_operation_layout(conv_id: str) -> None:
    blob = {
        "conversationId": conv_id,
        "operations": [
            {"type": "extension", "startIndex": 0, "endIndex": 100, "reason": "kex id=k", "kexId": "k"},
            {"type": "consumption", "startIndex": 0, "endIndex": 7, "reason": "send", "messageId": "m"},
        ],
    }
    restored = deserialize_key_history(blob)
    assert restored.current_state == KeyInterval(conv_id, 7, 100)
    assert restored.operations[0].kex_id == "k"
    assert restored.operations[1].message_id == "m"


def test_restore_rejects_non_composing_operations(scenario_history: KeyHistory) -> None:
    blob = serialize_key_history(scenario_history, config=LedgerConfig(include_digest=False))
    blob["operations"][2]["segment"]["startIndex"] = 0
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(blob)


def test_restore_rejects_mismatched_snapshot(scenario_history: KeyHistory, conv_id: str) -> None:
    blob = serialize_key_history(scenario_history, config=LedgerConfig(include_digest=False))
    blob["currentState"] = KeyInterval(conv_id, 0, 1024).to_dict()
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(blob)


def test_restore_rejects_tampered_digest(scenario_history: KeyHistory) -> None:
    blob = serialize_key_history(scenario_history)
    blob["operations"][1]["reason"] = 'send "something else"'
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(blob)

    # Verification can be switched off.
    restored = deserialize_key_history(blob, config=LedgerConfig(verify_digest_on_restore=False))
    assert restored.operations[1].reason == 'send "something else"'


def test_restore_rejects_foreign_segment(scenario_history: KeyHistory) -> None:
    blob = serialize_key_history(scenario_history)
    blob["operations"][0]["segment"]["conversationId"] = "other"
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(blob)


def test_fingerprint_tracks_operations(scenario_history: KeyHistory) -> None:
    fp = scenario_history.fingerprint()
    assert len(fp) == 64
    assert scenario_history.copy().fingerprint() == fp

    clone = scenario_history.copy()
    clone.record_consumption(clone.current_state.consume_segment(1), "send")
    assert clone.fingerprint() != fp


def test_restore_rejects_flat_range_disagreeing_with_segment(scenario_history: KeyHistory) -> None:
    blob = serialize_key_history(scenario_history)
    blob["operations"][2]["startIndex"] = 500
    blob["operations"][2]["endIndex"] = 900
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(blob)


@pytest.mark.parametrize(
    "mutate",
    [
        lambda blob: blob["operations"].__setitem__(1, ["garbage"]),
        lambda blob: blob["operations"][0].__setitem__("segment", {"conversationId": "conv_test_123"}),
        lambda blob: blob["operations"][0]["segment"].__setitem__("startIndex", "0"),
        lambda blob: blob.__setitem__("currentState", {"conversationId": "conv_test_123"}),
        lambda blob: blob.__setitem__("currentState", {"conversationId": "c", "startIndex": 9, "endIndex": 1}),
        lambda blob: blob.__setitem__("operations", None),
        lambda blob: blob.pop("conversationId"),
        lambda blob: blob.__setitem__("conversationId", None),
    ],
)
def test_restore_rejects_malformed_records(scenario_history: KeyHistory, mutate) -> None:
    blob = serialize_key_history(scenario_history)
    mutate(blob)
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(blob)


def test_restore_rejects_non_mapping_record() -> None:
    with pytest.raises(LedgerCorruption):
        deserialize_key_history(["not", "a", "record"])  # type: ignore[arg-type]


def test_needs_key_exchange_uses_given_config(history: KeyHistory, conv_id: str) -> None:
    history.record_extension(KeyInterval(conv_id, 0, 512), "kex id=k")
    assert history.needs_key_exchange()
    assert not history.needs_key_exchange(config=KeyExchangeConfig(low_key_threshold=256))
    assert not history.needs_key_exchange(config=Config(ConfigProfile.DEVELOPMENT).key_exchange)
    assert history.needs_key_exchange(1024, config=KeyExchangeConfig(low_key_threshold=256))


def test_needs_key_exchange_honours_environment_override(
    history: KeyHistory, conv_id: str, monkeypatch
) -> None:
    history.record_extension(KeyInterval(conv_id, 0, 2048), "kex id=k")
    monkeypatch.setenv("ONETIME_LOW_KEY_THRESHOLD", "4096")
    config = Config()
    config.apply_environment()
    assert history.needs_key_exchange(config=config.key_exchange)
