"""
Unit tests for the intersection resolver: junction classification, T/L/cross
and parallel resolution, extreme angles and network optimization.
"""

import math
import unittest
from unittest.mock import Mock

from wall_kernel.engines.intersection_resolver import IntersectionResolver
from wall_kernel.engines.offset_engine import OffsetEngine
from wall_kernel.errors import ComplexityExceeded, InvalidParameter
from wall_kernel.models.enums import GeometricErrorType, JunctionType
from wall_kernel.models.geometry import Curve

TOL = 0.01


def _quiet(engine):
    engine.log_info = Mock()
    engine.log_warning = Mock()
    engine.log_error = Mock()
    return engine


_offsets = _quiet(OffsetEngine())


def _wall(coords, thickness=100, wall_id=None):
    return _offsets.create_wall_solid(Curve.from_coordinates(coords), thickness, tolerance=TOL, wall_id=wall_id)


def _resolver(**options):
    resolver = _quiet(IntersectionResolver(**options))
    _quiet(resolver.boolean_engine)
    _quiet(resolver.tolerance_manager)
    return resolver


def _room():
    """Four 100 mm walls around a 4000 x 3000 mm room, meeting at L corners."""
    return [
        _wall([(0, 0), (4000, 0)], wall_id="south"),
        _wall([(4000, 0), (4000, 3000)], wall_id="east"),
        _wall([(4000, 3000), (0, 3000)], wall_id="north"),
        _wall([(0, 3000), (0, 0)], wall_id="west"),
    ]


class TestJunctionClassification(unittest.TestCase):
    def setUp(self):
        self.resolver = _resolver()

    def test_l_junction(self):
        a = _wall([(0, 0), (1000, 0)])
        b = _wall([(1000, 0), (1000, 1000)])
        self.assertEqual(self.resolver.classify_junction(a, b, TOL), JunctionType.L_JUNCTION)

    def test_t_junction(self):
        main = _wall([(0, 0), (2000, 0)])
        branch = _wall([(1000, 0), (1000, 1000)])
        self.assertEqual(self.resolver.classify_junction(main, branch, TOL), JunctionType.T_JUNCTION)

    def test_crossing(self):
        a = _wall([(0, 0), (2000, 0)])
        b = _wall([(1000, -1000), (1000, 1000)])
        self.assertEqual(self.resolver.classify_junction(a, b, TOL), JunctionType.CROSS_JUNCTION)

    def test_collinear_walls_are_parallel(self):
        a = _wall([(0, 0), (1000, 0)])
        b = _wall([(1000, 0), (2000, 0)])
        self.assertEqual(self.resolver.classify_junction(a, b, TOL), JunctionType.PARALLEL_OVERLAP)

    def test_walls_apart(self):
        a = _wall([(0, 0), (1000, 0)])
        b = _wall([(0, 5000), (1000, 5000)])
        self.assertIsNone(self.resolver.classify_junction(a, b, TOL))
        self.assertIsNone(self.resolver.resolve_junction(a, b, TOL))


class TestPairwiseResolution(unittest.TestCase):
    def setUp(self):
        self.resolver = _resolver()

    def test_t_junction_equal_thickness(self):
        main = _wall([(0, 0), (100, 0)], 150, "main")
        branch = _wall([(100, 0), (100, 500)], 150, "branch")
        result = self.resolver.resolve_t_junction([main, branch], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.junction.junction_type, JunctionType.T_JUNCTION)
        self.assertFalse(any("thickness" in w for w in result.warnings))
        self.assertEqual(result.junction.participating_walls, ["main", "branch"])

    def test_t_junction_mismatched_thickness(self):
        main = _wall([(0, 0), (100, 0)], 100, "main")
        branch = _wall([(100, 0), (100, 500)], 400, "branch")
        result = self.resolver.resolve_t_junction([main, branch], TOL)
        self.assertTrue(result.success)
        self.assertTrue(any("thickness" in w for w in result.warnings))

    def test_l_junction(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (1000, 1000)], 100, "b")
        result = self.resolver.resolve_l_junction([a, b], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "l_junction_miter")
        self.assertAlmostEqual(result.result_solid.area, 200000, delta=1)
        self.assertEqual(result.tolerance_used, TOL)

    def test_extreme_angle_widens_tolerance(self):
        angle = math.radians(10)
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(0, 0), (1000 * math.cos(angle), 1000 * math.sin(angle))], 100, "b")
        result = self.resolver.resolve_l_junction([a, b], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "l_junction_bevel")
        self.assertGreater(result.tolerance_used, TOL)
        self.assertTrue(any("extreme angle" in w for w in result.warnings))

    def test_configured_parallel_threshold_reaches_composition(self):
        # |sin| = 0.0995 is an L corner once the threshold drops to 0.01
        resolver = _resolver(parallel_overlap_threshold=0.01)
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (2000, 100)], 100, "b")
        self.assertEqual(resolver.classify_junction(a, b, TOL), JunctionType.L_JUNCTION)
        result = resolver.resolve_junction(a, b, TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "l_junction_miter")
        self.assertIsNotNone(result.junction.miter_apex)
        adjusted = {w.id: w for w in result.adjusted_walls}
        # inner faces meet 50 * tan(5.71 deg / 2) short of the corner
        self.assertAlmostEqual(adjusted["a"].left_offset.end_point.x, 997.5, delta=0.1)

    def test_wrong_wall_count(self):
        a = _wall([(0, 0), (1000, 0)])
        with self.assertRaises(InvalidParameter):
            self.resolver.resolve_l_junction([a], TOL)

    def test_complexity_budget(self):
        resolver = _resolver(max_complexity=5)
        a = _wall([(0, 0), (1000, 0)])
        b = _wall([(1000, 0), (1000, 1000)])
        with self.assertRaises(ComplexityExceeded):
            resolver.resolve_l_junction([a, b], TOL)


class TestParallelOverlap(unittest.TestCase):
    def setUp(self):
        self.resolver = _resolver()

    def test_collinear_walls_end_to_end(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (2000, 0)], 100, "b")
        result = self.resolver.resolve_parallel_overlap([a, b], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "standard_union")
        self.assertEqual(result.junction.resolution_method, "parallel_standard_union")
        self.assertAlmostEqual(result.result_solid.area, 200000, delta=1)

    def test_mostly_overlapping_walls_merge(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(100, 0), (1100, 0)], 100, "b")
        result = self.resolver.resolve_junction(a, b, TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "merge_walls")
        self.assertEqual(result.junction.junction_type, JunctionType.PARALLEL_OVERLAP)
        self.assertAlmostEqual(result.result_solid.area, 110000, delta=1)

    def test_l_request_on_parallel_walls_is_not_mitered(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (2000, 0)], 100, "b")
        result = self.resolver.resolve_l_junction([a, b], TOL)
        self.assertTrue(result.success)
        self.assertIsNone(result.junction.miter_apex)
        self.assertTrue(result.strategy.endswith("union"))


class TestCrossJunction(unittest.TestCase):
    def setUp(self):
        self.resolver = _resolver()

    def _arms(self, count, length=1000):
        walls = []
        for k in range(count):
            theta = 2 * math.pi * k / count
            end = (length * math.cos(theta), length * math.sin(theta))
            walls.append(_wall([(0, 0), end], 100, f"arm{k}"))
        return walls

    def test_four_way_cross(self):
        result = self.resolver.resolve_cross_junction(self._arms(4), TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "sequential_union")
        self.assertTrue(any("complexity" in w for w in result.warnings))
        # two 2000 x 100 bars overlapping in a 100 x 100 hub
        self.assertAlmostEqual(result.result_solid.area, 390000, delta=1)
        self.assertEqual(len(result.junction.offset_intersections), 4)
        self.assertEqual(result.junction.resolution_method, "cross_sequential_union")
        for wall in result.adjusted_walls:
            self.assertEqual(wall.intersection_data[-1].junction_type, JunctionType.CROSS_JUNCTION)

    def test_six_way_cross_uses_hierarchical_union(self):
        result = self.resolver.resolve_cross_junction(self._arms(6), TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "hierarchical_union")
        self.assertGreaterEqual(result.complexity_score, 10)

    def test_walls_without_hub(self):
        walls = [_wall([(0, 5000 * k), (1000, 5000 * k)]) for k in range(3)]
        result = self.resolver.resolve_cross_junction(walls, TOL)
        self.assertFalse(result.success)
        self.assertEqual(result.errors[0].error_type, GeometricErrorType.TOPOLOGY_ERROR)

    def test_needs_three_walls(self):
        with self.assertRaises(InvalidParameter):
            self.resolver.resolve_cross_junction(self._arms(2), TOL)


class TestExtremeAngles(unittest.TestCase):
    def setUp(self):
        self.resolver = _resolver()

    def test_very_sharp(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(0, 0), (998.75, 49.98)], 100, "b")
        report = self.resolver.handle_extreme_angles([a, b], TOL)
        self.assertEqual(len(report.very_sharp), 1)
        self.assertEqual(report.total, 1)
        junction = report.very_sharp[0]
        self.assertEqual(sorted(junction.wall_ids), ["a", "b"])
        self.assertLess(junction.angle, 5)
        self.assertGreater(junction.tolerance, TOL)

    def test_near_straight(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (1999.55, 30)], 100, "b")
        report = self.resolver.handle_extreme_angles([a, b], TOL)
        self.assertEqual(len(report.near_straight), 1)
        self.assertEqual(report.total, 1)

    def test_right_angle_is_not_extreme(self):
        a = _wall([(0, 0), (1000, 0)])
        b = _wall([(1000, 0), (1000, 1000)])
        self.assertEqual(self.resolver.handle_extreme_angles([a, b], TOL).total, 0)


class TestNetworkOptimization(unittest.TestCase):
    def setUp(self):
        self.resolver = _resolver()

    def test_room(self):
        result = self.resolver.optimize_intersection_network(_room(), TOL)
        self.assertEqual(result.original_complexity, 6)
        self.assertEqual(result.optimized_complexity, 4)
        self.assertAlmostEqual(result.performance_gain, 100 * 2 / 6)
        self.assertIn("spatial_indexing", result.optimizations_applied)
        self.assertNotIn("parallel_processing", result.optimizations_applied)
        self.assertEqual(len(result.junctions), 4)
        self.assertEqual(len(result.groups), 1)
        self.assertEqual(sorted(result.groups[0]), ["east", "north", "south", "west"])

    def test_room_walls_are_mitered_at_both_ends(self):
        result = self.resolver.optimize_intersection_network(_room(), TOL)
        self.assertEqual([w.id for w in result.resolved_walls], ["south", "east", "north", "west"])
        for wall in result.resolved_walls:
            self.assertEqual(len(wall.intersection_data), 2)
        # 4100 x 3100 outline minus the 3900 x 2900 interior
        total = sum(w.area for w in result.resolved_walls)
        self.assertAlmostEqual(total, 4100 * 3100 - 3900 * 2900, delta=1)

    def test_large_sparse_network(self):
        walls = [
            _wall([((i % 12) * 1000, (i // 12) * 1000), ((i % 12) * 1000 + 300, (i // 12) * 1000)], 100, f"w{i}")
            for i in range(120)
        ]
        result = self.resolver.optimize_intersection_network(walls, TOL)
        self.assertIn("spatial_indexing", result.optimizations_applied)
        self.assertGreaterEqual(result.performance_gain, 0)
        self.assertEqual(result.optimized_complexity, 0)
        self.assertEqual(result.junctions, [])
        self.assertEqual(len(result.groups), 120)
        self.assertEqual(len(result.resolved_walls), 120)

    def test_parallel_processing_above_ten_walls(self):
        walls = []
        for k in range(6):
            x = 5000 * k
            walls.append(_wall([(x, 0), (x + 1000, 0)], 100, f"a{k}"))
            walls.append(_wall([(x + 1000, 0), (x + 1000, 1000)], 100, f"b{k}"))
        result = self.resolver.optimize_intersection_network(walls, TOL)
        self.assertIn("parallel_processing", result.optimizations_applied)
        self.assertEqual(len(result.junctions), 6)
        self.assertEqual(len(result.groups), 6)

    def test_optimization_disabled_tests_every_pair(self):
        resolver = _resolver(optimization_enabled=False)
        result = resolver.optimize_intersection_network(_room(), TOL)
        self.assertEqual(result.optimizations_applied, ["optimization_disabled"])
        self.assertEqual(result.optimized_complexity, 6)
        self.assertEqual(result.performance_gain, 0)
        self.assertEqual(len(result.junctions), 4)

    def test_pair_budget_exceeded(self):
        resolver = _resolver(max_complexity=2)
        with self.assertRaises(ComplexityExceeded):
            resolver.optimize_intersection_network(_room(), TOL)


if __name__ == "__main__":
    unittest.main()
