"""
Unit tests for the boolean engine: set operations, batch union and two-wall
junction composition.
"""

import unittest
from unittest.mock import Mock

from wall_kernel.engines.boolean_engine import BooleanEngine
from wall_kernel.engines.offset_engine import OffsetEngine
from wall_kernel.errors import BooleanFailure, InvalidParameter
from wall_kernel.models.enums import GeometricErrorType, JoinType, JunctionType
from wall_kernel.models.geometry import Curve, Polygon
from wall_kernel.models.wall_solid import WallSolid

TOL = 0.01


def _quiet(engine):
    engine.log_info = Mock()
    engine.log_warning = Mock()
    engine.log_error = Mock()
    return engine


_offsets = _quiet(OffsetEngine())


def _wall(coords, thickness=100, wall_id=None):
    return _offsets.create_wall_solid(Curve.from_coordinates(coords), thickness, tolerance=TOL, wall_id=wall_id)


def _bow_tie_wall(wall_id="bad", origin=(5000, 5000)):
    """Wall whose single face crosses itself; the baseline carries extra points so it sorts last."""
    x, y = origin
    baseline = Curve.from_coordinates([(x, y), (x + 10, y), (x + 20, y), (x + 30, y), (x + 40, y)])
    face = Polygon.from_coordinates([(x, y), (x + 100, y + 100), (x + 100, y), (x, y + 100)])
    return WallSolid(
        id=wall_id,
        baseline=baseline,
        thickness=100,
        left_offset=Curve.from_coordinates([(x, y + 50), (x + 40, y + 50)]),
        right_offset=Curve.from_coordinates([(x, y - 50), (x + 40, y - 50)]),
        solid_geometry=[face],
    )


class TestBooleanOperations(unittest.TestCase):
    def setUp(self):
        self.engine = _quiet(BooleanEngine())
        self.a = _wall([(0, 0), (1000, 0)], wall_id="a")
        self.b = _wall([(500, 0), (1500, 0)], wall_id="b")

    def test_union_of_overlapping_walls(self):
        result = self.engine.union([self.a, self.b], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.operation_type, "union")
        self.assertEqual(len(result.result_polygons), 1)
        self.assertAlmostEqual(result.result_solid.area, 150000, delta=1)
        self.assertFalse(result.requires_healing)

    def test_union_result_is_a_new_solid(self):
        result = self.engine.union([self.a, self.b], TOL)
        solid = result.result_solid
        self.assertNotIn(solid.id, ("a", "b"))
        self.assertEqual(solid.metadata["composed_from"], ["a", "b"])
        # inputs are untouched
        self.assertAlmostEqual(self.a.area, 100000)
        self.assertEqual(len(self.a.solid_geometry), 1)

    def test_union_of_disjoint_walls_keeps_both_faces(self):
        far = _wall([(0, 1000), (1000, 1000)], wall_id="far")
        result = self.engine.union([self.a, far], TOL)
        self.assertTrue(result.success)
        self.assertEqual(len(result.result_polygons), 2)
        self.assertAlmostEqual(result.result_solid.area, 200000, delta=1)

    def test_union_of_single_solid_returns_it(self):
        result = self.engine.union([self.a], TOL)
        self.assertTrue(result.success)
        self.assertIs(result.result_solid, self.a)

    def test_union_of_nothing_fails(self):
        result = self.engine.union([], TOL)
        self.assertFalse(result.success)
        self.assertEqual(result.errors[0].error_type, GeometricErrorType.BOOLEAN_FAILURE)

    def test_intersection(self):
        result = self.engine.intersection(self.a, self.b, TOL)
        self.assertTrue(result.success)
        self.assertAlmostEqual(result.result_solid.area, 50000, delta=1)

    def test_intersection_of_disjoint_walls_is_empty(self):
        far = _wall([(0, 1000), (1000, 1000)])
        result = self.engine.intersection(self.a, far, TOL)
        self.assertTrue(result.success)
        self.assertIsNone(result.result_solid)
        self.assertEqual(result.result_polygons, [])
        self.assertTrue(any("empty" in w for w in result.warnings))

    def test_difference_keeps_first_wall_id(self):
        result = self.engine.difference(self.a, self.b, TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.result_solid.id, "a")
        self.assertAlmostEqual(result.result_solid.area, 50000, delta=1)

    def test_self_intersecting_input_raises(self):
        with self.assertRaises(BooleanFailure) as ctx:
            self.engine.union([self.a, _bow_tie_wall()], TOL)
        self.assertEqual(ctx.exception.error_type, GeometricErrorType.BOOLEAN_FAILURE)
        self.assertTrue(ctx.exception.recoverable)

    def test_non_positive_tolerance_rejected(self):
        with self.assertRaises(InvalidParameter):
            self.engine.union([self.a, self.b], 0)

    def test_complexity_warning(self):
        engine = _quiet(BooleanEngine(max_complexity=5))
        result = engine.union([self.a, self.b], TOL)
        self.assertTrue(result.success)
        self.assertTrue(any("complexity" in w for w in result.warnings))


class TestBatchUnion(unittest.TestCase):
    def setUp(self):
        self.engine = _quiet(BooleanEngine())
        self.walls = [_wall([(0, 500 * i), (1000, 500 * i)], wall_id=f"w{i}") for i in range(25)]

    def test_divide_and_conquer(self):
        result = self.engine.batch_union(self.walls, TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.operation_type, "batch_union")
        self.assertEqual(len(result.result_polygons), 25)
        self.assertAlmostEqual(result.result_solid.area, 25 * 100000, delta=5)

    def test_sequential_fold_without_parallelism(self):
        engine = _quiet(BooleanEngine(enable_parallel_processing=False))
        result = engine.batch_union(self.walls[:5], TOL)
        self.assertTrue(result.success)
        self.assertEqual(len(result.result_polygons), 5)

    def test_stops_at_first_invalid_wall(self):
        walls = self.walls[:3] + [_bow_tie_wall()]
        result = self.engine.batch_union(walls, TOL)
        self.assertFalse(result.success)
        self.assertEqual(len(result.result_polygons), 3)
        self.assertIsNotNone(result.result_solid)
        self.assertEqual(result.errors[0].error_type, GeometricErrorType.BOOLEAN_FAILURE)
        self.assertTrue(any("batch_union stopped at wall bad" in w for w in result.warnings))

    def test_empty_batch(self):
        result = self.engine.batch_union([], TOL)
        self.assertFalse(result.success)


class TestJunctionComposition(unittest.TestCase):
    def setUp(self):
        self.engine = _quiet(BooleanEngine())

    def test_t_junction_same_thickness(self):
        """Two 150 mm walls sharing an endpoint: butt joint, no thickness warning."""
        main = _wall([(0, 0), (100, 0)], 150, "main")
        branch = _wall([(100, 0), (100, 500)], 150, "branch")
        result = self.engine.resolve_t_junction([main, branch], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "t_junction_butt")
        self.assertEqual(result.junction.junction_type, JunctionType.T_JUNCTION)
        self.assertFalse(any("thickness" in w for w in result.warnings))
        # main extended through to x = 175, branch trimmed back to y = 75
        self.assertAlmostEqual(result.result_solid.area, 175 * 150 + 150 * 425, delta=1)
        adjusted = {w.id: w for w in result.adjusted_walls}
        self.assertAlmostEqual(adjusted["main"].right_offset.end_point.x, 175)
        self.assertAlmostEqual(adjusted["branch"].left_offset.start_point.y, 75)

    def test_t_junction_thickness_mismatch_warns(self):
        main = _wall([(0, 0), (100, 0)], 100, "main")
        branch = _wall([(100, 0), (100, 500)], 400, "branch")
        result = self.engine.resolve_t_junction([main, branch], TOL)
        self.assertTrue(result.success)
        self.assertTrue(any("thickness" in w for w in result.warnings))

    def test_branch_into_side_is_trimmed(self):
        main = _wall([(0, 0), (2000, 0)], 200, "main")
        branch = _wall([(1000, 0), (1000, 1000)], 100, "branch")
        result = self.engine.resolve_t_junction([main, branch], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "t_junction_trim")
        self.assertAlmostEqual(result.result_solid.area, 2000 * 200 + 100 * 900, delta=1)
        adjusted = {w.id: w for w in result.adjusted_walls}
        self.assertAlmostEqual(adjusted["branch"].area, 100 * 900, delta=0.1)

    def test_l_junction_miter(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (1000, 1000)], 100, "b")
        result = self.engine.resolve_l_junction([a, b], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "l_junction_miter")
        self.assertAlmostEqual(result.result_solid.area, 200000, delta=1)
        apex = result.junction.miter_apex
        self.assertAlmostEqual(apex.x, 1050)
        self.assertAlmostEqual(apex.y, -50)
        adjusted = {w.id: w for w in result.adjusted_walls}
        self.assertEqual(adjusted["a"].join_types["end"], JoinType.MITER)
        self.assertEqual(adjusted["b"].join_types["start"], JoinType.MITER)
        self.assertEqual(len(adjusted["a"].intersection_data), 1)

    def test_l_junction_bevel_beyond_configured_miter_limit(self):
        # the right-angle miter reaches 70.7 mm from the corner, past 1.2 x 50 mm
        engine = _quiet(BooleanEngine(miter_limit=1.2))
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (1000, 1000)], 100, "b")
        result = engine.resolve_l_junction([a, b], TOL)
        self.assertTrue(result.success)
        self.assertEqual(result.strategy, "l_junction_bevel")
        self.assertIsNone(result.junction.miter_apex)
        adjusted = {w.id: w for w in result.adjusted_walls}
        self.assertEqual(adjusted["a"].join_types["end"], JoinType.BEVEL)

    def test_parallel_threshold_follows_config(self):
        # about 5.7 degrees off straight: |sin| = 0.0995
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(1000, 0), (2000, 100)], 100, "b")

        loose = self.engine.resolve_l_junction([a, b], TOL)
        self.assertEqual(loose.strategy, "parallel_merge")

        strict = _quiet(BooleanEngine(parallel_overlap_threshold=0.01))
        result = strict.resolve_l_junction([a, b], TOL)
        self.assertEqual(result.strategy, "l_junction_miter")
        self.assertIsNotNone(result.junction.miter_apex)

        # an explicit threshold overrides the config
        result = self.engine.compose_pair([a, b], TOL, JunctionType.L_JUNCTION, parallel_overlap_threshold=0.01)
        self.assertEqual(result.strategy, "l_junction_miter")

    def test_walls_that_do_not_meet(self):
        a = _wall([(0, 0), (1000, 0)], 100, "a")
        b = _wall([(5000, 5000), (6000, 5000)], 100, "b")
        result = self.engine.resolve_l_junction([a, b], TOL)
        self.assertFalse(result.success)
        self.assertEqual(result.errors[0].error_type, GeometricErrorType.TOPOLOGY_ERROR)

    def test_needs_exactly_two_walls(self):
        a = _wall([(0, 0), (1000, 0)])
        with self.assertRaises(InvalidParameter):
            self.engine.resolve_t_junction([a], TOL)


if __name__ == "__main__":
    unittest.main()
