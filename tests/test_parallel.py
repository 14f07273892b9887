import unittest

import numpy as np

import pyocean
from pyocean.domain import Location, Topology


class TestParallel(unittest.TestCase):
    def setUp(self):
        self.logger = pyocean.parallel.get_logger(level="ERROR")

    def create_grid(self, tiling=None):
        return pyocean.domain.create_uniform(
            9,
            8,
            2,
            (9000.0, 8000.0, 20.0),
            topology=(Topology.PERIODIC, Topology.PERIODIC, Topology.BOUNDED),
            tiling=tiling,
            logger=self.logger,
        )

    def test_tiling(self):
        tiling = pyocean.parallel.Tiling(nrow=1, ncol=1)
        self.assertFalse(tiling)
        self.assertFalse(tiling.connected(0, 0))
        grid = self.create_grid(tiling)
        self.assertIsNone(grid.tiling)

        tiling = pyocean.parallel.Tiling(
            nrow=1, ncol=1, periodic_x=True, periodic_y=True
        )
        self.assertTrue(tiling)
        self.assertEqual(tiling.n_neighbors, 8)
        tiling.set_extent(9, 8)
        self.assertEqual((tiling.nx_sub, tiling.ny_sub), (9, 8))
        with self.assertRaises(Exception):
            pyocean.parallel.Tiling(nrow=2, ncol=2)

    def test_halo_exchange(self):
        tiling = pyocean.parallel.Tiling(
            nrow=1, ncol=1, periodic_x=True, periodic_y=True
        )
        distributed = self.create_grid(tiling)
        self.assertTrue(distributed.partitioned)
        self.assertEqual(distributed.boundary(0, 1), Topology.CONNECTED)
        local = self.create_grid()
        self.assertFalse(local.partitioned)

        for location in (Location.CCC, Location.FCC, Location.CFC, Location.FFC):
            with self.subTest(location=location):
                values = np.random.random((2, 8, 9))
                a = distributed.array(z=pyocean.CENTERS, location=location, register=False)
                b = local.array(z=pyocean.CENTERS, location=location, register=False)
                a.values[...] = values
                b.values[...] = values
                self.assertFalse(a.compare_halos())
                a.update_halos()
                b.update_halos()
                self.assertTrue(np.array_equal(a.all_values, b.all_values))
                self.assertTrue(a.compare_halos())
                self.assertTrue(b.compare_halos())

    def test_reductions(self):
        tiling = pyocean.parallel.Tiling(
            nrow=1, ncol=1, periodic_x=True, periodic_y=True
        )
        grid = self.create_grid(tiling)
        values = np.random.random((8, 9))
        field = grid.array(fill=values, register=False)
        self.assertAlmostEqual(float(field.global_sum()), values.sum(), places=12)
        where = values > 0.5
        self.assertAlmostEqual(
            float(field.global_sum(where=where)), values[where].sum(), places=12
        )
        self.assertEqual(
            float(pyocean.parallel.Min(tiling, values.min())()), values.min()
        )
        self.assertEqual(grid.cfl_check(log=False), self.create_grid().cfl_check(log=False))


if __name__ == "__main__":
    unittest.main()
