"""
Test that zombie_logging can be imported without circular import and logger works.
"""

from __future__ import annotations


def test_logging_import():
    """Import get_logger from zombie_logging and use the logger."""
    from backend_zombie.zombie_logging import get_logger

    logger = get_logger("test")
    assert logger is not None
    for level in ("info", "debug", "warning", "error"):
        assert hasattr(logger, level)
    # Smoke test: call info with a full-length wallet address (should not raise)
    logger.info("test_message", wallet="0x" + "ab" * 32, key="value")


def test_bind_wallet_smoke():
    from backend_zombie.zombie_logging import bind_wallet

    log = bind_wallet("0x" + "cd" * 32)
    log.warning("bound_message", digest="Dg1")


def test_processors_shorten_addresses_and_name_events():
    from backend_zombie.zombie_logging.logger import _event_type, _shorten_addresses

    wallet = "0x" + "ab" * 32
    out = _shorten_addresses(None, "info", {"wallet": wallet, "digest": "D" * 44})
    assert out["wallet"] == wallet[:10] + "..." + wallet[-4:]
    assert out["digest"] == "D" * 44

    out = _event_type(None, "info", {"event": "checkin_mirrored"})
    assert out == {"event_type": "checkin_mirrored", "message": "checkin_mirrored"}
