import datetime
import os
import tempfile
import unittest
import unittest.mock

import numpy as np
import yaml

import pyocean
import pyocean.config
import pyocean.run
from pyocean.exceptions import ConfigurationError

CONFIGURATION = """
grid:
  nx: 12
  ny: 10
  nz: 2
  extent: [12000., 10000., 20.]
  topology: [PERIODIC, BOUNDED, BOUNDED]
free_surface:
  type: split_explicit
  cfl: 0.5
model:
  momentum_advection: UPWIND_FIRST_ORDER
  tracer_advection: CENTERED_SECOND_ORDER
  coriolis:
    latitude: 45.
  closure:
    horizontal_viscosity: 10.
    horizontal_diffusivity: 10.
  buoyancy: buoyancy_tracer
  tracers: [b]
initial_conditions:
  eta:
    amplitude: 0.05
    width: 2000.
  b:
    amplitude: 1.e-3
    width: 3000.
    background: 0.01
time:
  start: 2000-01-01 00:00:00
  timestep: 60.
  stop: 2000-01-01 00:05:00
"""


class TestConfig(unittest.TestCase):
    def setUp(self):
        self.logger = pyocean.parallel.get_logger(level="ERROR")
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)

    def write(self, text: str) -> str:
        path = os.path.join(self.tmpdir.name, "configuration.yaml")
        with open(path, "w") as f:
            f.write(text)
        return path

    def test_node(self):
        node = pyocean.config.Node({"a": 1, "b": {"c": 2, "d": 3}, "e": 4})
        self.assertEqual(node["b/c"], 2)
        self.assertEqual(node.get("b/x", 5), 5)
        self.assertEqual(node.get("a"), 1)
        self.assertEqual(sorted(node.check()), ["b/d", "e"])
        with self.assertRaises(KeyError):
            node["a/c"]
        with self.assertRaises(ConfigurationError):
            pyocean.config.Node(5)
        with self.assertRaises(ConfigurationError):
            pyocean.config.configure(self.write("- 1\n- 2\n"))

    def test_build_and_run(self):
        config = pyocean.config.configure(self.write(CONFIGURATION))
        simulation = pyocean.config.build_simulation(config, self.logger)
        self.assertEqual(config.check(), [])
        self.assertEqual(simulation.stop_time, 300.0)

        model = simulation.model
        self.assertTrue(model.split_explicit_free_surface)
        self.assertEqual(model.free_surface.cfl, 0.5)
        self.assertEqual(tuple(model.tracers), ("b",))
        self.assertIsNotNone(model.pressure)
        self.assertGreater(model.eta.values.max(), 0.04)
        self.assertLessEqual(model.eta.values.max(), 0.05)
        self.assertTrue((model.tracers["b"].values >= 0.01).all())

        simulation.run(config["time/start"], check_finite=True)
        self.assertEqual(simulation.istep, 5)
        self.assertEqual(model.clock.iteration, 5)
        stop = pyocean.simulation.to_cftime(datetime.datetime(2000, 1, 1, 0, 5))
        self.assertEqual(simulation.time, stop)
        self.assertTrue(np.isfinite(model.u.values).all())

    def test_invalid_settings(self):
        for path, value in (
            ("model/momentum_advection", "FOURTH_ORDER"),
            ("model/buoyancy", "nonlinear"),
            ("free_surface/type", "implicit"),
        ):
            with self.subTest(path=path):
                settings = yaml.safe_load(CONFIGURATION)
                section, name = path.split("/")
                settings[section][name] = value
                with self.assertRaises(ConfigurationError):
                    pyocean.config.build_simulation(
                        pyocean.config.Node(settings), self.logger
                    )

    def test_command_line(self):
        path = self.write(CONFIGURATION + "unknown_section:\n  value: 1\n")
        with unittest.mock.patch("sys.argv", ["pyocean-run", path, "-l", "ERROR"]):
            with self.assertRaises(SystemExit) as cm:
                pyocean.run.run()
        self.assertEqual(cm.exception.code, 2)

        with unittest.mock.patch(
            "sys.argv", ["pyocean-run", path, "-f", "-l", "ERROR", "-r", "1"]
        ):
            pyocean.run.run()


if __name__ == "__main__":
    unittest.main()
