import unittest

import numpy as np

import pyocean
import pyocean.debug
from pyocean import free_surface
from pyocean.domain import Location, Topology
from pyocean.exceptions import ConfigurationError


def tendencies(grid):
    return {
        "u": grid.array(z=pyocean.CENTERS, location=Location.FCC, register=False),
        "v": grid.array(z=pyocean.CENTERS, location=Location.CFC, register=False),
    }


def total_volume(grid, eta):
    h = grid.halo
    area = grid.dxc[np.newaxis, h:-h] * grid.dyc[h:-h, np.newaxis]
    return (eta.values * area).sum()


class TestAveragingWeights(unittest.TestCase):
    def test_normalization(self):
        for kernel in (
            free_surface.averaging_shape_function,
            free_surface.cosine_averaging_kernel,
            free_surface.constant_averaging_kernel,
        ):
            for substeps in (7, 30, 101):
                with self.subTest(kernel=kernel.__name__, substeps=substeps):
                    weights, active = free_surface.averaging_weights(substeps, kernel)
                    self.assertEqual(weights.shape, (substeps,))
                    self.assertAlmostEqual(weights.sum(), 1.0, places=14)
                    self.assertTrue(0 < active <= substeps)
                    self.assertGreater(weights[active - 1], 0.0)
                    self.assertTrue((weights[active:] == 0.0).all())
                    self.assertFalse(weights.flags.writeable)

        weights, active = free_surface.averaging_weights(30)
        self.assertEqual(active, 21)
        self.assertTrue((weights[:4] < 0.0).all())
        weights, active = free_surface.averaging_weights(
            8, free_surface.constant_averaging_kernel
        )
        self.assertEqual(active, 8)
        self.assertTrue((weights == 0.125).all())

        with self.assertRaises(ConfigurationError):
            free_surface.averaging_weights(10, lambda tau: -np.ones_like(tau))

    def test_settings(self):
        settings = free_surface.SplitExplicitSettings(30, 600.0)
        self.assertEqual(settings.substep_size, 40.0)
        self.assertEqual(settings.active_substeps, 21)
        self.assertIs(settings.free_surface_weights, settings.velocity_weights)
        with self.assertRaises(AttributeError):
            settings.substeps = 10
        with self.assertRaises(ConfigurationError):
            free_surface.SplitExplicitSettings(0, 600.0)


class TestSplitExplicit(unittest.TestCase):
    def setUp(self):
        self.logger = pyocean.parallel.get_logger(level="ERROR")

    def create_basin(self):
        depth = np.full((15, 20), 50.0)
        depth[5:8, 8:11] = 20.0
        depth[:4, :3] = 0.0
        depth[10:, 17:] = 0.0
        return pyocean.domain.create_uniform(
            20,
            15,
            3,
            (20000.0, 15000.0, 50.0),
            bottom_depth=depth,
            logger=self.logger,
        )

    def gaussian(self, grid, amplitude=0.1):
        x, y, _ = grid.coordinates(Location.CCC)
        values = amplitude * np.exp(
            -((x[np.newaxis, :] - 10000.0) ** 2 + (y[:, np.newaxis] - 7500.0) ** 2)
            / 3000.0 ** 2
        )
        return np.where(grid.mask.values != 0, values, 0.0)

    def test_construction(self):
        with self.assertRaises(ConfigurationError):
            free_surface.SplitExplicitFreeSurface()
        with self.assertRaises(ConfigurationError):
            free_surface.SplitExplicitFreeSurface(substeps=0)

        grid = self.create_basin()
        fs = free_surface.SplitExplicitFreeSurface(substeps=2)
        with self.assertRaises(ConfigurationError):
            fs.initialize(grid, timestep=600.0)

        fs = free_surface.SplitExplicitFreeSurface(cfl=0.5)
        fs.initialize(grid, timestep=600.0)
        expected = int(np.ceil(2.0 * 600.0 / (0.5 * fs.maxdt)))
        self.assertEqual(fs.settings.substeps, expected)
        self.assertLessEqual(fs.settings.substep_size, 0.5 * fs.maxdt)
        self.assertIs(fs.configure(600.0), fs.settings)
        self.assertEqual(
            fs.configure(300.0).substeps, int(np.ceil(600.0 / (0.5 * fs.maxdt)))
        )

    def test_zero_timestep(self):
        grid = self.create_basin()
        fs = free_surface.SplitExplicitFreeSurface(substeps=30)
        fs.initialize(grid, logger=self.logger)
        fs.eta.values[...] = self.gaussian(grid)
        before = fs.state.snapshot()
        with self.assertLogs(fs.logger, level="WARNING"):
            stepped = free_surface.step_free_surface(fs, tendencies(grid), None, 0.0)
        self.assertFalse(stepped)
        after = fs.state.snapshot()
        for name, values in before.items():
            self.assertTrue(np.array_equal(values, after[name]), name)

    def test_mass_conservation(self):
        grid = self.create_basin()
        fs = free_surface.SplitExplicitFreeSurface(substeps=40)
        fs.initialize(grid, timestep=300.0)
        fs.eta.values[...] = self.gaussian(grid)
        G = tendencies(grid)
        G_previous = tendencies(grid)
        G["u"].values[...] = 1e-6 * np.random.random(G["u"].shape)
        G["u"].values[...] *= grid.active(Location.FCC)[..., 2:-2, 2:-2]
        volume0 = total_volume(grid, fs.eta)
        land = grid.mask.values == 0
        for _ in range(20):
            self.assertTrue(
                free_surface.step_free_surface(fs, G, G_previous, 300.0, chi=0.1)
            )
            self.assertTrue(
                pyocean.debug.check_equal(
                    "volume",
                    total_volume(grid, fs.eta),
                    volume0,
                    rtol=1e-12,
                    atol=1e-12 * abs(volume0),
                    logger=self.logger,
                )
            )
            self.assertTrue((fs.eta.values[land] == 0.0).all())
            self.assertTrue(np.isfinite(fs.eta.values).all())
        self.assertTrue(np.array_equal(fs.eta.values, fs.state.eta_avg.values))
        # walls carry no transport
        for U in (fs.U, fs.state.U_avg):
            self.assertTrue((U.values[:, 0] == 0.0).all())
        for V in (fs.V, fs.state.V_avg):
            self.assertTrue((V.values[0, :] == 0.0).all())

    def test_barotropic_correction(self):
        grid = self.create_basin()
        fs = free_surface.SplitExplicitFreeSurface(substeps=40)
        fs.initialize(grid, timestep=300.0)
        fs.eta.values[...] = self.gaussian(grid)
        G = tendencies(grid)
        free_surface.step_free_surface(fs, G, None, 300.0, chi=-0.5)

        u = grid.array(z=pyocean.CENTERS, location=Location.FCC, register=False)
        v = grid.array(z=pyocean.CENTERS, location=Location.CFC, register=False)
        for w in (u, v):
            w.values[...] = np.random.random(w.shape) - 0.5
            w.all_values[~grid.active(w.location)] = 0.0
        U = grid.array(location=Location.FCC, register=False)
        V = grid.array(location=Location.CFC, register=False)
        free_surface.barotropic_mode(U, V, grid, u, v)
        U_predicted, V_predicted = U.values.copy(), V.values.copy()
        self.assertFalse(np.allclose(fs.U.values, U_predicted))
        fs.correct(u, v)

        free_surface.barotropic_mode(U, V, grid, u, v)
        self.assertTrue(np.allclose(U.values, fs.state.U_avg.values, rtol=1e-12, atol=1e-12))
        self.assertTrue(np.allclose(V.values, fs.state.V_avg.values, rtol=1e-12, atol=1e-12))

        # the next cycle starts from the depth integrals before the correction
        aux = fs.auxiliary
        self.assertTrue(np.array_equal(aux.U_instantaneous.values, U_predicted))
        self.assertTrue(np.array_equal(aux.V_instantaneous.values, V_predicted))
        self.assertTrue(np.array_equal(fs.U.values, U_predicted))
        self.assertTrue(np.array_equal(fs.V.values, V_predicted))
        self.assertFalse(np.allclose(fs.U.values, fs.state.U_avg.values))

        # inactive points are untouched
        for w in (u, v):
            self.assertTrue((w.all_values[~grid.active(w.location)] == 0.0).all())

    def test_periodic_gravity_wave(self):
        grid = pyocean.domain.create_uniform(
            10,
            10,
            1,
            (1e5, 1e5, 100.0),
            topology=(Topology.PERIODIC, Topology.PERIODIC, Topology.BOUNDED),
            logger=self.logger,
        )
        fs = free_surface.SplitExplicitFreeSurface(
            substeps=30, gravitational_acceleration=9.81
        )
        fs.initialize(grid, timestep=600.0)
        self.assertEqual(fs.settings.substep_size, 40.0)
        x, _, _ = grid.coordinates(Location.CCC)
        fs.eta.values[...] = 1e-3 * np.sin(2.0 * np.pi * x / 1e5)[np.newaxis, :]
        G = tendencies(grid)
        u = grid.array(z=pyocean.CENTERS, location=Location.FCC, register=False)
        v = grid.array(z=pyocean.CENTERS, location=Location.CFC, register=False)

        def rms():
            return np.sqrt((fs.eta.values ** 2).mean())

        rms0 = rms()
        volume0 = total_volume(grid, fs.eta)
        G_previous = None
        for cycle in range(100):
            free_surface.step_free_surface(fs, G, G_previous, 600.0)
            fs.correct(u, v)
            u.update_halos()
            v.update_halos()
            G_previous = G
            current = rms()
            self.assertTrue(np.isfinite(current))
            self.assertLess(current, 1.1 * rms0, "cycle %i" % cycle)
        self.assertLess(rms(), rms0)
        self.assertLess(abs(total_volume(grid, fs.eta) - volume0), 1e-5)

        # independent of y
        self.assertTrue(np.allclose(fs.eta.values, fs.eta.values[:1, :], rtol=0, atol=1e-18))


class TestExplicit(unittest.TestCase):
    def test_transports_and_gradient(self):
        logger = pyocean.parallel.get_logger(level="ERROR")
        grid = pyocean.domain.create_uniform(
            8,
            6,
            2,
            (8000.0, 6000.0, 20.0),
            topology=(Topology.PERIODIC, Topology.BOUNDED, Topology.BOUNDED),
            logger=logger,
        )
        fs = free_surface.ExplicitFreeSurface()
        fs.initialize(grid)
        u = grid.array(z=pyocean.CENTERS, location=Location.FCC, fill=0.5, register=False)
        v = grid.array(z=pyocean.CENTERS, location=Location.CFC, register=False)
        fs.set_transports(u, v)
        self.assertTrue(np.allclose(fs.U.values, 10.0))
        self.assertTrue((fs.V.values == 0.0).all())

        i, j = pyocean.kernels.open_grid("xy", (range(8), range(6)))
        self.assertTrue(np.allclose(fs.tendency(i, j, grid), 0.0))

        fs.eta.values[...] = np.arange(8)[np.newaxis, :] * 0.01
        fs.eta.update_halos()
        gradient = fs.x_gradient(i, j, None, grid)
        self.assertTrue(np.allclose(gradient[:, 1:], -9.81 * 0.01 / 1000.0))


if __name__ == "__main__":
    unittest.main()
