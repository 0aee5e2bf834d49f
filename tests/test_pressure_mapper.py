import unittest

from config import Config, PressureCalibrationConfig, PressureZone
from exceptions import ConfigError
from pressure_mapper import PressureMapper


class TestPressureMapper(unittest.TestCase):
    def setUp(self):
        self.mapper = PressureMapper(Config())

    def test_out_of_range_pitch_maps_to_zero(self):
        self.assertEqual(self.mapper.map(5.0), 0.0)
        self.assertEqual(self.mapper.map(45.0), 0.0)
        self.assertEqual(self.mapper.map(0.0), 0.0)

    def test_default_calibration(self):
        self.assertEqual(self.mapper.calibration_name, "figure4_regression")
        self.assertAlmostEqual(self.mapper.map(25.0), 15.8, delta=0.01)
        self.assertAlmostEqual(self.mapper.map(10.0), 5.6, places=9)
        self.assertAlmostEqual(self.mapper.map(40.0), 26.0, places=9)

    def test_initial_estimate_preset(self):
        config = Config()
        config.pressure = PressureCalibrationConfig.from_preset("initial_estimate")
        mapper = PressureMapper(config)
        self.assertAlmostEqual(mapper.map(25.0), 19.0, places=9)

    def test_unknown_preset(self):
        with self.assertRaises(ConfigError):
            PressureCalibrationConfig.from_preset("does_not_exist")

    def test_negative_line_clamps_to_zero(self):
        config = Config()
        config.pressure = PressureCalibrationConfig(name="custom", slope=0.68, intercept=-10.0)
        mapper = PressureMapper(config)
        self.assertEqual(mapper.map(10.0), 0.0)
        self.assertAlmostEqual(mapper.map(20.0), 3.6, places=9)

    def test_zones(self):
        self.assertEqual(self.mapper.classify(0.0), PressureZone.NONE)
        self.assertEqual(self.mapper.classify(5.0), PressureZone.OUTSIDE)
        self.assertEqual(self.mapper.classify(10.0), PressureZone.TARGET)
        self.assertEqual(self.mapper.classify(15.8), PressureZone.TARGET)
        self.assertEqual(self.mapper.classify(20.0), PressureZone.TARGET)
        self.assertEqual(self.mapper.classify(26.0), PressureZone.OUTSIDE)


if __name__ == "__main__":
    unittest.main()
