"""
Unit tests for the validator.
"""

import math
import unittest
from unittest.mock import Mock

from wall_kernel.engines.boolean_engine import BooleanEngine
from wall_kernel.engines.offset_engine import OffsetEngine
from wall_kernel.engines.validator import Validator
from wall_kernel.models.enums import IssueSeverity
from wall_kernel.models.geometry import Curve, Polygon


class TestValidator(unittest.TestCase):
    def setUp(self):
        self.validator = Validator(tolerance=0.01)
        self.validator.log_info = Mock()
        self.validator.log_warning = Mock()
        self.validator.log_error = Mock()
        self.offsets = OffsetEngine()
        self.offsets.log_info = Mock()
        self.offsets.log_warning = Mock()
        self.wall = self._wall([(0, 0), (1000, 0)])

    def _wall(self, coords, thickness=100, wall_id=None):
        return self.offsets.create_wall_solid(Curve.from_coordinates(coords), thickness, tolerance=0.01,
                                              wall_id=wall_id)

    def test_clean_wall(self):
        result = self.validator.validate_wall_solid(self.wall)
        self.assertTrue(result.is_valid)
        self.assertGreater(result.quality_score, 0.95)
        self.assertEqual(result.errors, [])
        metrics = result.quality_metrics
        self.assertEqual(metrics.self_intersection_count, 0)
        self.assertEqual(metrics.sliver_face_count, 0)
        self.assertEqual(metrics.complexity, self.wall.complexity)
        self.assertIsNotNone(metrics.last_validated)

    def test_self_intersecting_face_is_invalid(self):
        face = Polygon.from_coordinates([(0, 0), (200, 0), (200, 100), (100, -50), (0, 100)])
        solid = self.wall.replace(solid_geometry=[face])
        result = self.validator.validate_wall_solid(solid)
        self.assertFalse(result.is_valid)
        self.assertEqual(result.quality_metrics.self_intersection_count, 1)
        self.assertLess(result.quality_score, 0.95)
        self.assertTrue(any(i.issue_type == "self_intersection" for i in result.issues))

    def test_missing_geometry_is_invalid(self):
        result = self.validator.validate_wall_solid(self.wall.replace(solid_geometry=[]))
        self.assertFalse(result.is_valid)
        self.assertTrue(any(i.issue_type == "missing_geometry" for i in result.issues))

    def test_wrong_offset_distance(self):
        # a 60 mm face around a wall recorded as 100 mm thick
        face = Polygon.from_coordinates([(0, 30), (1000, 30), (1000, -30), (0, -30)])
        left = Curve.from_coordinates([(0, 30), (1000, 30)])
        right = Curve.from_coordinates([(0, -30), (1000, -30)])
        solid = self.wall.replace(solid_geometry=[face], left_offset=left, right_offset=right)
        result = self.validator.validate_wall_solid(solid)
        self.assertFalse(result.is_valid)
        self.assertTrue(any(i.issue_type == "offset_distance" for i in result.issues))
        self.assertLess(result.quality_metrics.geometric_accuracy, 1.0)

    def test_thickness_out_of_range_only_warns(self):
        thin = self._wall([(0, 0), (1000, 0)], 10)
        result = self.validator.validate_wall_solid(thin)
        self.assertTrue(result.is_valid)
        self.assertAlmostEqual(result.quality_metrics.architectural_compliance, 0.9)
        self.assertAlmostEqual(result.quality_score, 1.0 - 0.15 * 0.1)
        self.assertTrue(result.warnings)

    def test_quality_weights_follow_config(self):
        validator = Validator(
            tolerance=0.01,
            weight_geometric_accuracy=0.25,
            weight_topological_consistency=0.25,
            weight_manufacturability=0.25,
            weight_architectural_compliance=0.25,
        )
        validator.log_info = Mock()
        thin = self._wall([(0, 0), (1000, 0)], 10)
        self.assertAlmostEqual(validator.validate_wall_solid(thin).quality_score, 1.0 - 0.25 * 0.1)

    def test_assess_quality_matches_validation_metrics(self):
        face = Polygon.from_coordinates([(0, 0), (200, 0), (200, 100), (100, -50), (0, 100)])
        solid = self.wall.replace(solid_geometry=[face])
        metrics = self.validator.assess_quality(solid)
        self.validator.log_info.assert_not_called()
        expected = self.validator.validate_wall_solid(solid).quality_metrics
        self.assertEqual(metrics.self_intersection_count, 1)
        self.assertEqual(metrics.model_dump(exclude={"last_validated"}),
                         expected.model_dump(exclude={"last_validated"}))
        self.assertLessEqual(metrics.last_validated, expected.last_validated)

    def test_validate_curve(self):
        self.assertEqual(self.validator.validate_curve(Curve.from_coordinates([(0, 0), (1000, 0)])), [])

        issues = self.validator.validate_curve(Curve.from_coordinates([(0, 0), (0.001, 0), (1000, 0)]))
        self.assertEqual([i.issue_type for i in issues], ["duplicate_vertices"])
        self.assertEqual(issues[0].severity, IssueSeverity.WARNING)

        issues = self.validator.validate_curve(Curve.from_coordinates([(0, 0), (1000, 0)], is_closed=True))
        self.assertEqual(issues[0].issue_type, "degenerate_curve")
        self.assertTrue(issues[0].is_blocking)

        issues = self.validator.validate_curve(Curve.from_coordinates([(0, 0), (math.inf, 0)]))
        self.assertEqual(issues[0].severity, IssueSeverity.CRITICAL)


class TestNetworkValidation(unittest.TestCase):
    def setUp(self):
        self.validator = Validator(tolerance=0.01)
        self.validator.log_info = Mock()
        offsets = OffsetEngine()
        offsets.log_info = Mock()
        offsets.log_warning = Mock()
        self.offsets = offsets

    def _wall(self, coords, wall_id):
        return self.offsets.create_wall_solid(Curve.from_coordinates(coords), 100, tolerance=0.01, wall_id=wall_id)

    def test_unresolved_overlap(self):
        a = self._wall([(0, 0), (1000, 0)], "a")
        b = self._wall([(500, -500), (500, 500)], "b")
        issues = self.validator.validate_wall_network([a, b])
        self.assertEqual([i.issue_type for i in issues], ["unresolved_overlap"])

    def test_resolved_junction_is_not_reported(self):
        a = self._wall([(0, 0), (1000, 0)], "a")
        b = self._wall([(1000, 0), (1000, 1000)], "b")
        engine = BooleanEngine()
        engine.log_info = Mock()
        result = engine.resolve_l_junction([a, b], 0.01)
        issues = self.validator.validate_wall_network(result.adjusted_walls)
        self.assertEqual(issues, [])

    def test_duplicate_ids(self):
        a = self._wall([(0, 0), (1000, 0)], "same")
        b = self._wall([(0, 5000), (1000, 5000)], "same")
        issues = self.validator.validate_wall_network([a, b])
        self.assertEqual([i.issue_type for i in issues], ["duplicate_wall_id"])
        self.assertTrue(issues[0].is_blocking)


if __name__ == "__main__":
    unittest.main()
