import json
import tempfile
import unittest
from dataclasses import asdict
from pathlib import Path
from unittest import mock

from config import (
    Config,
    CURRENT_CONFIG_VERSION,
    apply_dict_to_dataclass,
    migrate_config,
)
import config_persistence
from exceptions import ConfigError


class TestConfigMigration(unittest.TestCase):
    def test_missing_version_recovers_preset_name(self):
        cfg = Config()
        data = {
            # version intentionally omitted to simulate legacy file
            "pressure": {"slope": 0.6, "intercept": 4.0},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.pressure.name, "initial_estimate")

    def test_unmatched_legacy_pair_is_custom(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {"version": 0, "pressure": {"slope": 0.7, "intercept": 1.0}})
        migrate_config(cfg, 0)
        self.assertEqual(cfg.pressure.name, "custom")

    def test_none_values_are_sanitized(self):
        cfg = Config()
        data = {
            "version": 0,
            "pressure": {"slope": None, "intercept": None},
            "registration": {"search_interval_s": None},
            "log_level": None,
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.pressure.slope, 0.68)
        self.assertEqual(cfg.pressure.intercept, -1.2)
        self.assertEqual(cfg.pressure.name, "figure4_regression")
        self.assertEqual(cfg.registration.search_interval_s, 0.0)
        self.assertEqual(cfg.log_level, "INFO")

    def test_preserves_custom_values(self):
        cfg = Config()
        data = {
            "version": 1,
            "pressure": {"name": "clinic_fit", "slope": 0.7, "intercept": 0.5},
            "audio": {"device_index": 2},
            "zones": {"target_min": 12.0, "target_max": 18.0},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.pressure.name, "clinic_fit")
        self.assertEqual(cfg.pressure.slope, 0.7)
        self.assertEqual(cfg.audio.device_index, 2)
        self.assertEqual(cfg.zones.target_min, 12.0)
        # Sections not in the file keep their defaults
        self.assertEqual(cfg.audio.sample_rate, 44100)

    def test_out_of_range_values_are_clamped(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {
            "version": 1,
            "pitch": {"min_correlation": 1.5},
            "stability": {"decay_rate": "bogus"},
            "registration": {"min_score": -2.0},
        })
        migrate_config(cfg, 1)

        self.assertEqual(cfg.pitch.min_correlation, 1.0)
        self.assertEqual(cfg.stability.decay_rate, 0.8)
        self.assertEqual(cfg.registration.min_score, 0.0)

    def test_unknown_keys_are_ignored(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {"display": {"theme": "dark"}, "pitch": {"nope": 1}})
        self.assertFalse(hasattr(cfg, "display"))
        self.assertFalse(hasattr(cfg.pitch, "nope"))

    def test_validate(self):
        Config().validate()

        cfg = Config()
        cfg.stability.decay_rate = 1.0
        with self.assertRaises(ConfigError) as ctx:
            cfg.validate()
        self.assertEqual(ctx.exception.field_name, "stability.decay_rate")

        cfg = Config()
        cfg.preprocess.downsample_factor = 0
        with self.assertRaises(ConfigError):
            cfg.validate()

    def test_load_config_auto_saves_bumped_version(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg_file = Path(tmpdir) / "config.json"
            legacy_cfg = Config()
            legacy_cfg.version = 0
            legacy_data = asdict(legacy_cfg)
            legacy_data["pressure"]["slope"] = None  # force migration path
            with open(cfg_file, "w", encoding="utf-8") as f:
                json.dump(legacy_data, f)

            with mock.patch.object(config_persistence, "get_config_file", return_value=cfg_file), \
                    mock.patch.object(config_persistence, "save_config",
                                      wraps=config_persistence.save_config) as save_mock:
                cfg = config_persistence.load_config()

            self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
            save_mock.assert_called_once()

            with open(cfg_file, "r", encoding="utf-8") as f:
                persisted = json.load(f)
            self.assertEqual(persisted.get("version"), CURRENT_CONFIG_VERSION)
            self.assertEqual(persisted["pressure"]["slope"], 0.68)


if __name__ == "__main__":
    unittest.main()
