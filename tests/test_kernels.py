import unittest

import numpy as np

import pyocean
from pyocean import kernels, operators
from pyocean.domain import Location, Topology


class TestKernels(unittest.TestCase):
    def setUp(self):
        self.logger = pyocean.parallel.get_logger(level="ERROR")
        depth = np.full((11, 13), 50.0)
        depth[4:7, 5:9] = 25.0
        depth[0, :3] = 0.0
        self.grid = pyocean.domain.create_uniform(
            13,
            11,
            5,
            (13000.0, 11000.0, 50.0),
            topology=(Topology.PERIODIC, Topology.BOUNDED, Topology.BOUNDED),
            bottom_depth=depth,
            logger=self.logger,
        )
        self.c = self.grid.array(z=pyocean.CENTERS, register=False)
        self.c.values[...] = np.random.random(self.c.shape)
        self.c.update_halos()

    def laplacian(self, i, j, k, out):
        grid = self.grid
        value = operators.delta_x_c(i, j, k, grid, operators.partial_x_f, self.c)
        value = value + operators.delta_y_c(
            i, j, k, grid, operators.conditional_partial_y_f, self.c
        )
        out.all_values[out.index(i, j, k)] = value * operators.active(
            i, j, k, grid, Location.CCC
        )

    def test_dense_and_sparse_dispatch_agree(self):
        grid = self.grid
        dense = grid.array(z=pyocean.CENTERS, register=False)
        kernels.launch(kernels.describe_domain(grid, "xyz"), self.laplacian, dense)

        cells = grid.active_cells_map
        self.assertEqual(cells.shape[1], 3)
        for workgroup in (None, (4, 4), (1, 1), (7,)):
            with self.subTest(workgroup=workgroup):
                shuffled = cells[np.random.permutation(cells.shape[0]), :]
                sparse = grid.array(z=pyocean.CENTERS, register=False)
                kernels.launch(
                    kernels.describe_domain_from_map(shuffled, "xyz"),
                    self.laplacian,
                    sparse,
                    workgroup=workgroup,
                )
                self.assertTrue(np.array_equal(dense.values, sparse.values))

                tiled = grid.array(z=pyocean.CENTERS, register=False)
                kernels.launch(
                    kernels.describe_domain(grid, "xyz"),
                    self.laplacian,
                    tiled,
                    workgroup=workgroup,
                )
                self.assertTrue(np.array_equal(dense.values, tiled.values))

    def test_index_spaces(self):
        grid = self.grid
        space = kernels.describe_domain(grid, "xyz", Location.FCC)
        self.assertIsInstance(space, kernels.Dense)
        self.assertEqual(space.shape, (13, 11, 5))
        space = kernels.describe_domain(
            grid, "xyz", Location.CFF, exclude_periphery=True
        )
        self.assertEqual(space.ranges[1], range(1, 11))
        self.assertEqual(space.ranges[2], range(1, 6))
        space = kernels.describe_domain(
            grid, "xy", Location.FCC, exclude_periphery=True
        )
        self.assertEqual(space.ranges[0], range(0, 13))
        space = kernels.kernel_parameters((-1, 14), range(11))
        self.assertEqual(space.dims, "xy")
        self.assertEqual(space.size, 15 * 11)
        space = kernels.describe_domain_from_map(grid.active_columns_map, "xy")
        self.assertIsInstance(space, kernels.Sparse)
        self.assertEqual(space.size, 13 * 11 - 3)
        with self.assertRaises(ValueError):
            kernels.describe_domain(grid, "zyx")

        self.assertEqual(kernels.heuristic_workgroup(1, 1), (1, 1))
        self.assertEqual(kernels.heuristic_workgroup(1, 500), (1, 256))
        self.assertEqual(kernels.heuristic_workgroup(40, 1), (40, 1))
        self.assertEqual(kernels.heuristic_workgroup(40, 30, 5), (16, 16))

    def test_empty_dispatch(self):
        calls = []

        def kernel(*args):
            calls.append(args)

        kernels.launch(kernels.kernel_parameters((0, 0), (0, 5)), kernel)
        kernels.launch(
            kernels.describe_domain_from_map(np.empty((0, 2), dtype=int), "xy"), kernel
        )
        self.assertEqual(calls, [])
        with self.assertLogs(self.logger, level="WARNING"):
            kernels.launch([], kernel, logger=self.logger)
        with self.assertLogs("pyocean.kernels", level="WARNING") as cm:
            kernels.launch(kernels.kernel_parameters((0, 2), (0, 3)), [])
        self.assertEqual(cm.records[0].name, "pyocean.kernels")
        self.assertEqual(calls, [])

        kernels.launch(kernels.kernel_parameters((0, 2), (0, 3)), [kernel, kernel])
        self.assertEqual(len(calls), 2)


if __name__ == "__main__":
    unittest.main()
