import inspect
import unittest

import numpy as np

import pyocean
from pyocean import free_surface
from pyocean.domain import Location, Topology
from pyocean.exceptions import ConfigurationError, UnsupportedCombinationError
from pyocean.tendencies import TendencyAssembly

PERIODIC = (Topology.PERIODIC, Topology.PERIODIC, Topology.BOUNDED)


class TestModel(unittest.TestCase):
    def setUp(self):
        self.logger = pyocean.parallel.get_logger(level="ERROR")

    def create_grid(self, nx=6, ny=5, nz=2, topology=PERIODIC, **kwargs):
        return pyocean.domain.create_uniform(
            nx,
            ny,
            nz,
            (nx * 1000.0, ny * 1000.0, 20.0),
            topology=topology,
            logger=self.logger,
            **kwargs
        )

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

    def test_unsupported_combinations(self):
        with self.assertRaises(UnsupportedCombinationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(),
                free_surface=pyocean.SplitExplicitFreeSurface(substeps=10),
                timestepper="RungeKutta3",
            )

        tiling = pyocean.parallel.Tiling(
            nrow=1, ncol=1, periodic_x=True, periodic_y=True
        )
        with self.assertRaises(UnsupportedCombinationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(tiling=tiling),
                free_surface=pyocean.SplitExplicitFreeSurface(substeps=10),
            )

        grid = pyocean.MultiRegionGrid(
            np.full(6, 1000.0),
            np.full(5, 1000.0),
            (10.0, 10.0),
            partition=pyocean.XPartition(2),
            topology=PERIODIC,
            bottom_depth=np.full((5, 6), 20.0),
            logger=self.logger,
        )
        for fs in (pyocean.SplitExplicitFreeSurface(substeps=10), None):
            with self.subTest(free_surface=fs), self.assertRaises(
                UnsupportedCombinationError
            ):
                pyocean.HydrostaticFreeSurfaceModel(grid, free_surface=fs)

    def test_configuration_errors(self):
        with self.assertRaises(ConfigurationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(halo=1),
                momentum_advection=pyocean.AdvectionScheme.UPWIND_THIRD_ORDER,
            )
        model = pyocean.HydrostaticFreeSurfaceModel(
            self.create_grid(halo=2),
            momentum_advection=pyocean.AdvectionScheme.UPWIND_THIRD_ORDER,
        )
        self.assertTrue(model.split_explicit_free_surface)

        with self.assertRaises(ConfigurationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(
                    nz=1, topology=(Topology.PERIODIC, Topology.PERIODIC, Topology.FLAT)
                )
            )
        with self.assertRaises(ConfigurationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(), buoyancy=pyocean.BuoyancyTracer(), tracers=("T",)
            )
        with self.assertRaises(ConfigurationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(), forcing={"w": 1.0}
            )
        with self.assertRaises(ConfigurationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_grid(), forcing={"T": 1.0}, tracers=("S",)
            )

        # barotropic time step too long for the number of substeps
        with self.assertRaises(ConfigurationError):
            pyocean.HydrostaticFreeSurfaceModel(
                self.create_basin(),
                free_surface=pyocean.SplitExplicitFreeSurface(substeps=2),
                timestep=600.0,
            )

    def test_default_free_surface(self):
        model = pyocean.HydrostaticFreeSurfaceModel(self.create_grid())
        self.assertTrue(model.split_explicit_free_surface)
        self.assertEqual(model.free_surface.cfl, 0.7)
        self.assertNotIn("eta", model.prognostic)

        tiling = pyocean.parallel.Tiling(
            nrow=1, ncol=1, periodic_x=True, periodic_y=True
        )
        model = pyocean.HydrostaticFreeSurfaceModel(self.create_grid(tiling=tiling))
        self.assertTrue(model.explicit_free_surface)
        self.assertIn("eta", model.prognostic)
        model.set(eta=lambda x, y: 1e-3 * np.sin(2.0 * np.pi * x / 6000.0))
        for _ in range(5):
            model.time_step(10.0)
        self.assertTrue(np.isfinite(model.eta.values).all())
        self.assertTrue(model.eta.compare_halos())

    def test_default_forcing(self):
        for cls in (pyocean.HydrostaticFreeSurfaceModel, TendencyAssembly):
            parameters = inspect.signature(cls).parameters
            for name in ("forcing", "boundary_conditions"):
                with self.subTest(cls=cls.__name__, name=name):
                    self.assertIsNone(parameters[name].default)

        first = pyocean.HydrostaticFreeSurfaceModel(self.create_grid(), free_surface=None)
        second = pyocean.HydrostaticFreeSurfaceModel(self.create_grid(), free_surface=None)
        self.assertEqual(first.tendencies.forcing, {})
        self.assertEqual(first.tendencies.boundary_conditions, {})
        self.assertIsNot(first.tendencies.forcing, second.tendencies.forcing)
        self.assertIsNot(
            first.tendencies.boundary_conditions, second.tendencies.boundary_conditions
        )

    def test_substeps_checked_by_simulation(self):
        model = pyocean.HydrostaticFreeSurfaceModel(
            self.create_basin(),
            free_surface=pyocean.SplitExplicitFreeSurface(substeps=2),
        )
        self.assertIsNone(model.free_surface.settings)
        with self.assertRaises(ConfigurationError):
            pyocean.Simulation(model, 600.0, stop_iteration=1)
        self.assertEqual(model.clock.iteration, 0)

        simulation = pyocean.Simulation(model, 10.0, stop_iteration=1)
        self.assertEqual(model.free_surface.settings.timestep, 10.0)
        self.assertEqual(model.free_surface.settings.substeps, 2)
        simulation.run()
        self.assertEqual(model.clock.iteration, 1)

    def test_transports_after_correction(self):
        model = pyocean.HydrostaticFreeSurfaceModel(
            self.create_grid(),
            free_surface=pyocean.SplitExplicitFreeSurface(substeps=10),
            momentum_advection=None,
            tracer_advection=None,
            forcing={"u": 1e-6},
            timestep=100.0,
        )
        model.time_step(100.0)
        fs = model.free_surface

        # the next cycle starts from the depth integral of the predicted velocity
        # (20 m of water moving at 1e-4 m s-1), not from the averaged transport
        self.assertTrue(np.allclose(fs.U.values, 2e-3, rtol=1e-12, atol=0.0))
        self.assertTrue((fs.V.values == 0.0).all())
        self.assertTrue(
            np.array_equal(fs.U.values, fs.auxiliary.U_instantaneous.values)
        )

        U = model.grid.array(location=Location.FCC, register=False)
        V = model.grid.array(location=Location.CFC, register=False)
        free_surface.barotropic_mode(U, V, model.grid, model.u, model.v)
        self.assertTrue(np.allclose(U.values, fs.state.U_avg.values, rtol=1e-12))
        self.assertTrue(np.allclose(model.eta.values, 0.0, rtol=0.0, atol=1e-15))

    def test_mass_conservation(self):
        grid = self.create_basin()
        model = pyocean.HydrostaticFreeSurfaceModel(
            grid, tracers=("c",), coriolis=pyocean.FPlane(f=1e-4)
        )
        simulation = pyocean.Simulation(model, 300.0, stop_iteration=10)
        model.set(
            eta=lambda x, y: 0.1
            * np.exp(-((x - 10000.0) ** 2 + (y - 7500.0) ** 2) / 3000.0 ** 2),
            u=lambda x, y, z: 0.01 * np.sin(2.0 * np.pi * y / 15000.0),
            c=np.random.random((3, 15, 20)),
        )
        land = grid.mask.values == 0
        self.assertTrue((model.eta.values[land] == 0.0).all())
        immersed = ~grid.active()[..., 2:-2, 2:-2]
        self.assertTrue((model.tracers["c"].values[immersed] == 0.0).all())

        volume0, tracers0 = simulation.totals
        simulation.start()
        U = grid.array(location=Location.FCC, register=False)
        V = grid.array(location=Location.CFC, register=False)
        while not simulation.finished:
            simulation.advance(check_finite=True)
            volume, tracers = simulation.totals
            self.assertLess(abs(volume - volume0), 1e-12 * volume0)
            self.assertLess(abs(tracers["c"] - tracers0["c"]), 1e-12 * tracers0["c"])

            # depth integrals of the corrected velocities match the averaged transports
            free_surface.barotropic_mode(U, V, grid, model.u, model.v)
            state = model.free_surface.state
            self.assertTrue(np.allclose(U.values, state.U_avg.values, atol=1e-12))
            self.assertTrue(np.allclose(V.values, state.V_avg.values, atol=1e-12))

            # no flow through the bottom
            self.assertTrue((model.w.values[0, ...] == 0.0).all())
        simulation.finish()
        self.assertEqual(model.clock.iteration, 10)
        self.assertEqual(model.clock.time, 3000.0)

    def test_uniform_tendency(self):
        for timestepper, nsteps in (("QuasiAdamsBashforth2", 3), ("RungeKutta3", 1)):
            with self.subTest(timestepper=timestepper):
                model = pyocean.HydrostaticFreeSurfaceModel(
                    self.create_grid(),
                    free_surface=None,
                    momentum_advection=None,
                    tracer_advection=None,
                    tracers=("c",),
                    forcing={"u": 1e-6, "c": pyocean.Relaxation(rate=0.0)},
                    timestepper=timestepper,
                )
                for _ in range(nsteps):
                    model.time_step(100.0)
                self.assertTrue(
                    np.allclose(model.u.values, nsteps * 1e-4, rtol=1e-12, atol=0.0)
                )
                self.assertTrue((model.v.values == 0.0).all())
                self.assertTrue((model.w.values == 0.0).all())
                self.assertEqual(model.clock.iteration, nsteps)
                self.assertAlmostEqual(model.clock.time, nsteps * 100.0, places=10)

    def test_boundary_fluxes(self):
        depth = np.full((5, 6), 20.0)
        depth[:, :3] = 10.0
        bcs = pyocean.FieldBoundaryConditions(
            top=pyocean.FluxBoundaryCondition(1e-5),
            bottom=pyocean.FluxBoundaryCondition(lambda x, y, t: np.full_like(x, 2e-5)),
        )
        self.assertTrue(bcs.has_flux("top"))
        with self.assertRaises(ValueError):
            bcs.has_flux("side")
        model = pyocean.HydrostaticFreeSurfaceModel(
            self.create_grid(bottom_depth=depth),
            free_surface=None,
            momentum_advection=None,
            tracer_advection=None,
            tracers=("c",),
            boundary_conditions={"c": bcs},
        )
        model.time_step(100.0)
        c = model.tracers["c"].values
        # layers are 10 m thick; shallow columns only contain the top layer
        self.assertTrue(np.allclose(c[1, :, 3:], -1e-4))
        self.assertTrue(np.allclose(c[0, :, 3:], 2e-4))
        self.assertTrue(np.allclose(c[1, :, :3], -1e-4 + 2e-4))
        self.assertTrue((c[0, :, :3] == 0.0).all())

    def test_set_and_output(self):
        model = pyocean.HydrostaticFreeSurfaceModel(
            self.create_grid(), tracers=("c",), buoyancy=None
        )
        model.set(c=lambda x, y, z: z, eta=0.01)
        _, _, z = model.grid.coordinates(Location.CCC)
        self.assertTrue((model.tracers["c"].values == z[:, np.newaxis, np.newaxis]).all())
        self.assertTrue((model.eta.values == 0.01).all())
        c = model.tracers["c"].all_values
        self.assertTrue((c[:, :2, :] == c[:, -4:-2, :]).all())
        with self.assertRaises(Exception):
            model.set(w=1.0)

        state = model.snapshot()
        for name in ("u", "v", "w", "c", "eta", "U", "V"):
            self.assertIn(name, state)
        state["c"][...] = 0.0
        self.assertFalse((model.tracers["c"].values == 0.0).all())

        ds = model.as_xarray()
        self.assertEqual(ds["c"].dims, ("zc", "yc", "xc"))
        self.assertEqual(ds["u"].dims, ("zc", "yc", "xf"))
        self.assertEqual(ds["w"].dims, ("zf", "yc", "xc"))
        self.assertEqual(ds.attrs["iteration"], 0)
        self.assertIs(model["c"], model.tracers["c"])


if __name__ == "__main__":
    unittest.main()
