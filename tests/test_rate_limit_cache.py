"""
Tests for rate-limited logging.
"""
import threading
from unittest.mock import MagicMock, patch

from claimsettle._rate_limited_log import rate_limited_log, reset_rate_limits


class TestRateLimitedLog:

    def test_first_message_is_logged(self):
        log = MagicMock()
        assert rate_limited_log("provider down", logger_instance=log) is True
        log.warning.assert_called_once_with("provider down")

    def test_repeat_is_suppressed(self):
        log = MagicMock()
        rate_limited_log("provider down", logger_instance=log)
        assert rate_limited_log("provider down", logger_instance=log) is False
        assert log.warning.call_count == 1

    def test_levels_are_separate(self):
        log = MagicMock()
        rate_limited_log("provider down", level="warning", logger_instance=log)
        assert rate_limited_log("provider down", level="error", logger_instance=log) is True
        log.error.assert_called_once_with("provider down")

    def test_unknown_level_falls_back_to_warning(self):
        log = MagicMock(spec=["warning"])
        rate_limited_log("odd", level="loud", logger_instance=log)
        log.warning.assert_called_once_with("odd")

    def test_reset_allows_message_again(self):
        log = MagicMock()
        rate_limited_log("provider down", logger_instance=log)
        reset_rate_limits()
        assert rate_limited_log("provider down", logger_instance=log) is True

    def test_expired_entries_log_again(self):
        from cachetools import TTLCache

        now = [0]
        cache = TTLCache(maxsize=10, ttl=300, timer=lambda: now[0])
        log = MagicMock()
        with patch('claimsettle._rate_limited_log._log_cache', cache):
            rate_limited_log("provider down", logger_instance=log)
            now[0] = 301
            assert rate_limited_log("provider down", logger_instance=log) is True
        assert log.warning.call_count == 2

    def test_concurrent_callers_log_once(self):
        log = MagicMock()
        barrier = threading.Barrier(8)
        emitted = []

        def worker():
            barrier.wait()
            emitted.append(rate_limited_log("same outage", logger_instance=log))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert emitted.count(True) == 1
        assert log.warning.call_count == 1
