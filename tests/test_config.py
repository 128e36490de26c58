"""
Tests for otpwallet_core.config — TOML configuration and environment overrides.

Covers:
  - Default values for all dataclass sections
  - TOML parsing and section merging
  - Environment variable overrides (precedence over TOML)
  - _merge helper edge cases
  - Builder schedule validation
"""

from __future__ import annotations

import os
import textwrap
import unittest
from unittest.mock import patch

import pytest

from otpwallet_core.config import (
    BuilderConfig,
    LoggingConfig,
    OTPWalletConfig,
    StorageConfig,
    WorkerConfig,
    _merge,
    load_config,
)
from otpwallet_core.errors import InvalidConfigurationError

# ═══════════════════════════════════════════════════════════════════
#  Defaults
# ═══════════════════════════════════════════════════════════════════

class TestDefaults(unittest.TestCase):

    def test_builder_defaults(self):
        b = BuilderConfig()
        self.assertEqual(b.interval, 30_000)
        self.assertEqual(b.slot_size, 1)
        self.assertEqual(b.multi_code, 0)
        self.assertEqual(b.duration % b.interval, 0)

    def test_worker_defaults(self):
        self.assertEqual(WorkerConfig().max_workers, 1)

    def test_storage_defaults(self):
        s = StorageConfig()
        self.assertFalse(s.enabled)
        self.assertEqual(s.path, "data/otpwallet.db")

    def test_logging_defaults(self):
        log_cfg = LoggingConfig()
        self.assertEqual(log_cfg.level, "INFO")
        self.assertEqual(log_cfg.format, "human")
        self.assertIsNone(log_cfg.file)

    def test_top_level(self):
        cfg = OTPWalletConfig()
        self.assertIsInstance(cfg.builder, BuilderConfig)
        self.assertIsInstance(cfg.storage, StorageConfig)


# ═══════════════════════════════════════════════════════════════════
#  _merge helper
# ═══════════════════════════════════════════════════════════════════

class TestMerge(unittest.TestCase):

    def test_merge_updates_fields(self):
        b = BuilderConfig()
        _merge(b, {"interval": 60_000, "slot_size": 3})
        self.assertEqual(b.interval, 60_000)
        self.assertEqual(b.slot_size, 3)

    def test_merge_ignores_unknown_keys(self):
        b = BuilderConfig()
        _merge(b, {"unknown_field": 42})
        self.assertFalse(hasattr(b, "unknown_field"))

    def test_merge_hyphenated_keys(self):
        b = BuilderConfig()
        _merge(b, {"report-interval": 50})
        self.assertEqual(b.report_interval, 50)


# ═══════════════════════════════════════════════════════════════════
#  TOML loading
# ═══════════════════════════════════════════════════════════════════

class TestLoadConfig:

    def test_load_no_file(self):
        cfg = load_config(None)
        assert cfg.builder.interval == 30_000

    def test_load_missing_file(self, tmp_path):
        cfg = load_config(str(tmp_path / "missing.toml"))
        assert cfg.storage.enabled is False

    def test_load_toml_file(self, tmp_path):
        path = tmp_path / "otpwallet.toml"
        path.write_text(textwrap.dedent("""\
            [builder]
            interval = 60000
            duration = 600000
            slot-size = 2
            multi_code = 3

            [worker]
            max_workers = 4

            [storage]
            enabled = true
            path = "trees.db"

            [logging]
            level = "DEBUG"
            format = "json"
        """))
        cfg = load_config(str(path))
        assert cfg.builder.interval == 60_000
        assert cfg.builder.duration == 600_000
        assert cfg.builder.slot_size == 2
        assert cfg.builder.multi_code == 3
        assert cfg.worker.max_workers == 4
        assert cfg.storage.enabled is True
        assert cfg.storage.path == "trees.db"
        assert cfg.logging.format == "json"

    def test_inconsistent_schedule_rejected(self, tmp_path):
        path = tmp_path / "bad.toml"
        path.write_text("[builder]\ninterval = 30000\nduration = 45000\n")
        with pytest.raises(InvalidConfigurationError):
            load_config(str(path))


# ═══════════════════════════════════════════════════════════════════
#  Environment variable overrides
# ═══════════════════════════════════════════════════════════════════

class TestEnvOverrides(unittest.TestCase):

    @patch.dict(os.environ, {"OTPWALLET_INTERVAL": "60000",
                             "OTPWALLET_DURATION": "120000"}, clear=False)
    def test_env_schedule(self):
        cfg = load_config(None)
        self.assertEqual(cfg.builder.interval, 60_000)
        self.assertEqual(cfg.builder.duration, 120_000)

    @patch.dict(os.environ, {"OTPWALLET_SLOT_SIZE": "4", "OTPWALLET_WORKERS": "2"}, clear=False)
    def test_env_slot_size_and_workers(self):
        cfg = load_config(None)
        self.assertEqual(cfg.builder.slot_size, 4)
        self.assertEqual(cfg.worker.max_workers, 2)

    @patch.dict(os.environ, {"OTPWALLET_DB_PATH": "/tmp/trees.db"}, clear=False)
    def test_env_db_path_enables_storage(self):
        cfg = load_config(None)
        self.assertEqual(cfg.storage.path, "/tmp/trees.db")
        self.assertTrue(cfg.storage.enabled)

    @patch.dict(os.environ, {"OTPWALLET_LOG_LEVEL": "debug", "OTPWALLET_LOG_FMT": "json"},
                clear=False)
    def test_env_logging(self):
        cfg = load_config(None)
        self.assertEqual(cfg.logging.level, "DEBUG")
        self.assertEqual(cfg.logging.format, "json")

    @patch.dict(os.environ, {"OTPWALLET_INTERVAL": "soon"}, clear=False)
    def test_env_not_an_integer(self):
        with self.assertRaises(InvalidConfigurationError):
            load_config(None)

    def test_env_overrides_toml(self):
        import tempfile
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "c.toml")
            with open(path, "w") as f:
                f.write("[builder]\nslot_size = 2\n")
            with patch.dict(os.environ, {"OTPWALLET_SLOT_SIZE": "5"}, clear=False):
                cfg = load_config(path)
        self.assertEqual(cfg.builder.slot_size, 5)
