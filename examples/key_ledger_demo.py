#!/usr/bin/env python3
"""Key ledger walkthrough.

Demonstrates one conversation's key lifecycle: a key exchange, a sent and a
received message, a rejected replay, persistence and restoration.
"""

import sys
from pathlib import Path

# Add the parent directory to the path so we can import onetime
sys.path.insert(0, str(Path(__file__).parent.parent))

from onetime.config import Config, ConfigProfile, configure_logging
from onetime.keys import (
    ConversationLocks,
    KeyAlgebraError,
    KeyHistory,
    KeyInterval,
    dumps_key_history,
    kex_reason,
    loads_key_history,
)


def main() -> None:
    """Run the key ledger walkthrough."""
    config = Config(profile=ConfigProfile.DEVELOPMENT)
    config.apply_environment()
    configure_logging(config)

    print("Onetime key ledger example")
    print("=" * 40)

    conv_id = "conv_demo"
    history = KeyHistory(conv_id)
    locks = ConversationLocks(config.lock)

    print("\n1. Key exchange...")
    size = config.key_exchange.default_segment_size
    with locks.acquire(conv_id, "alice") as access:
        segment = history.current_state.extend_segment(size)
        access.record_extension(history, segment, kex_reason("kex_001"), "kex_001")
    print(f"   key = {history.current_state}")

    print("\n2. Sending and receiving...")
    for direction, text in [("send", "hello world"), ("recv", "yo")]:
        with locks.acquire(conv_id, "alice") as access:
            segment = history.current_state.consume_segment(len(text.encode("utf-8")))
            # The caller encrypts/decrypts with these key bytes, then commits.
            access.record_consumption(history, segment, f'{direction} "{text}"')
    print(f"   key = {history.current_state}")

    print("\n3. Replaying an already consumed segment...")
    try:
        history.record_consumption(KeyInterval(conv_id, 0, 11), 'send "again"')
    except KeyAlgebraError as e:
        print(f"   rejected: {e}")

    print("\n4. Persisting and restoring...")
    restored = loads_key_history(dumps_key_history(history, config=config.ledger), config=config.ledger)
    print(f"   restored {restored.length} operations, key = {restored.current_state}")
    print(f"   needs key exchange: {restored.needs_key_exchange(config=config.key_exchange)}")

    print("\n5. Audit trail:")
    print(restored.format())


if __name__ == "__main__":
    main()
