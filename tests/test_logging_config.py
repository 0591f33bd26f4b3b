import logging

from conftest import FakeClock
from serve_analysis.utils.logging_config import (
    IntervalLogger,
    LoggerMixin,
    get_logger,
    setup_logging_from_config,
)


class Detector(LoggerMixin):
    pass


class TestIntervalLogger:
    def test_repeats_suppressed_within_interval(self, caplog):
        clock = FakeClock()
        failures = IntervalLogger(logging.getLogger("test.interval"), interval=5.0, clock=clock)

        with caplog.at_level(logging.WARNING, logger="test.interval"):
            assert failures.warning("color", "Tier 'color' failed")
            clock.advance(1.0)
            assert not failures.warning("color", "Tier 'color' failed")
            assert not failures.warning("color", "Tier 'color' failed")
            clock.advance(5.0)
            assert failures.warning("color", "Tier 'color' failed")

        messages = [r.getMessage() for r in caplog.records]
        assert messages == [
            "Tier 'color' failed",
            "Tier 'color' failed (2 similar messages suppressed)",
        ]

    def test_keys_are_independent(self):
        failures = IntervalLogger(logging.getLogger("test.interval"), clock=FakeClock())
        assert failures.warning("color", "a")
        assert failures.warning("brightest", "b")

    def test_reset(self):
        failures = IntervalLogger(logging.getLogger("test.interval"), clock=FakeClock())
        failures.warning("color", "a")
        failures.reset()
        assert failures.warning("color", "a")


class TestSetup:
    def configure(self, config, verbose=False):
        """Run setup and restore the root logger afterwards; returns the configured level."""
        root = logging.getLogger()
        level, handlers = root.level, list(root.handlers)
        try:
            setup_logging_from_config(config, verbose=verbose)
            return root.level
        finally:
            for handler in root.handlers:
                handler.close()
            root.handlers[:] = handlers
            root.setLevel(level)

    def test_level_from_config(self, tmp_path):
        log_file = tmp_path / "logs" / "serve.log"
        assert self.configure({"logging": {"level": "WARNING", "file": str(log_file)}}) == logging.WARNING
        assert log_file.parent.exists()

    def test_verbose_overrides(self):
        assert self.configure({"logging": {"level": "ERROR"}}, verbose=True) == logging.DEBUG

    def test_logger_mixin_name(self):
        assert Detector().logger.name.endswith("test_logging_config.Detector")

    def test_get_logger_is_shared(self):
        assert get_logger("serve_analysis.test") is logging.getLogger("serve_analysis.test")
