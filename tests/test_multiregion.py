import unittest

import numpy as np

import pyocean
from pyocean import operators, kernels
from pyocean.domain import Grid, Location, Topology
from pyocean.multiregion import MultiRegionGrid, XPartition, YPartition, apply_regionally


class TestMultiRegion(unittest.TestCase):
    def setUp(self):
        self.logger = pyocean.parallel.get_logger(level="ERROR")
        self.dx = np.linspace(800.0, 1200.0, 11)
        self.dy = np.full(7, 1000.0)
        self.dz = np.full(3, 10.0)
        self.depth = np.full((7, 11), 30.0)
        self.depth[2:4, 4:6] = 0.0
        self.depth[5, :] = 15.0

    def create(self, partition, topology):
        grid = MultiRegionGrid(
            self.dx,
            self.dy,
            self.dz,
            partition,
            topology=topology,
            bottom_depth=self.depth,
            logger=self.logger,
        )
        full = Grid(
            self.dx,
            self.dy,
            self.dz,
            topology=topology,
            bottom_depth=self.depth,
            logger=self.logger,
        )
        return grid, full

    def test_partition(self):
        self.assertEqual(XPartition(3).bounds(11), [(0, 3), (3, 7), (7, 11)])
        self.assertEqual(YPartition(2).bounds(7), [(0, 3), (3, 7)])
        with self.assertRaises(Exception):
            XPartition(0)
        with self.assertRaises(Exception):
            XPartition(12).bounds(11)

    def test_halos_match_single_grid(self):
        for partition in (XPartition(3), YPartition(2)):
            for topology in (
                (Topology.PERIODIC, Topology.PERIODIC, Topology.BOUNDED),
                (Topology.BOUNDED, Topology.BOUNDED, Topology.BOUNDED),
                (Topology.PERIODIC, Topology.BOUNDED, Topology.BOUNDED),
            ):
                with self.subTest(partition=partition, topology=topology):
                    grid, full = self.create(partition, topology)
                    self.assertEqual(len(grid), partition.n)
                    h = full.halo
                    for location in (Location.CCC, Location.FCC, Location.CFC):
                        values = np.random.random((3, 7, 11))
                        reference = full.array(
                            z=pyocean.CENTERS, location=location, register=False
                        )
                        reference.values[...] = values
                        reference.update_halos()
                        field = grid.array(
                            fill=values, z=pyocean.CENTERS, location=location
                        )
                        self.assertEqual(field.global_shape, (3, 7, 11))
                        self.assertTrue(np.array_equal(field.gather(), values))
                        for region, (start, stop) in zip(field, grid.bounds):
                            if partition.axis == 0:
                                expected = reference.all_values[..., start : stop + 2 * h]
                            else:
                                expected = reference.all_values[..., start : stop + 2 * h, :]
                            self.assertTrue(np.array_equal(region.all_values, expected))

                    # metrics and masks of each region match the full grid
                    for region, (start, stop) in zip(grid, grid.bounds):
                        outer = slice(start, stop + 2 * h)
                        if partition.axis == 0:
                            self.assertTrue(np.array_equal(region.dxc, full.dxc[outer]))
                            self.assertTrue(np.array_equal(region.xc, full.xc[outer]))
                            expected = full.active()[..., outer]
                        else:
                            self.assertTrue(np.array_equal(region.dyc, full.dyc[outer]))
                            expected = full.active()[..., outer, :]
                        self.assertTrue(np.array_equal(region.active(), expected))

    def test_apply_regionally(self):
        grid, full = self.create(
            XPartition(3), (Topology.PERIODIC, Topology.BOUNDED, Topology.BOUNDED)
        )
        values = np.random.random((3, 7, 11))
        c = grid.array(fill=values, z=pyocean.CENTERS)
        reference = full.array(fill=values, z=pyocean.CENTERS, register=False)

        def gradient(grid, c):
            out = grid.array(z=pyocean.CENTERS, location=Location.FCC, register=False)

            def kernel(i, j, k):
                out.all_values[out.index(i, j, k)] = operators.partial_x_f(
                    i, j, k, grid, c
                )

            kernels.launch(kernels.describe_domain(grid, "xyz", Location.FCC), kernel)
            return out

        regional = apply_regionally(gradient, grid, c)
        self.assertEqual(len(regional), 3)
        result = np.concatenate([out.values for out in regional], axis=-1)
        self.assertTrue(np.array_equal(result, gradient(full, reference).values))

        self.assertEqual(
            apply_regionally(lambda g, n: g.nx * n, grid, 2), [6, 8, 8]
        )
        with self.assertRaises(Exception):
            apply_regionally(len, [1, 2])

    def test_minimum_timestep(self):
        grid, full = self.create(
            YPartition(2), (Topology.BOUNDED, Topology.BOUNDED, Topology.BOUNDED)
        )
        self.assertEqual(grid.minimum_timestep(), full.cfl_check(log=False))
        self.assertEqual(
            grid.minimum_timestep(gravity=1.0), full.cfl_check(gravity=1.0, log=False)
        )


if __name__ == "__main__":
    unittest.main()
