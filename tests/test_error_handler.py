"""
Unit tests for the error handler: strategy dispatch, bounded retries and
non-recoverable errors.
"""

import unittest
from unittest.mock import Mock

from wall_kernel.engines.error_handler import ErrorHandler
from wall_kernel.engines.offset_engine import OffsetEngine
from wall_kernel.errors import descriptor_for
from wall_kernel.models.enums import GeometricErrorType, JoinType
from wall_kernel.models.geometry import Curve, Polygon


def _quiet(engine):
    engine.log_info = Mock()
    engine.log_warning = Mock()
    engine.log_error = Mock()
    return engine


def _handler(**options):
    handler = _quiet(ErrorHandler(**options))
    for engine in (handler.healing_engine, handler.validator, handler.simplification_engine,
                   handler.offset_engine, handler.tolerance_manager):
        _quiet(engine)
    return handler


class TestErrorHandler(unittest.TestCase):
    def setUp(self):
        self.handler = _handler()
        offsets = _quiet(OffsetEngine())
        self.wall = offsets.create_wall_solid(Curve.from_coordinates([(0, 0), (1000, 0)]), 100, tolerance=0.01,
                                              wall_id="w1")
        # opposite corners swapped: the face crosses itself at the baseline midpoint
        twisted = Polygon.from_coordinates([(0, 50), (1000, 50), (0, -50), (1000, -50)])
        self.twisted = self.wall.replace(solid_geometry=[twisted])

    def test_invalid_parameter_is_not_recoverable(self):
        descriptor = descriptor_for(GeometricErrorType.INVALID_PARAMETER, "thickness must be positive")
        report = self.handler.handle_geometric_error(descriptor)
        self.assertFalse(report.success)
        self.assertFalse(report.recovery_applied)
        self.assertEqual(report.attempts, 0)
        self.assertEqual(report.context["error_type"], "invalid_parameter")

    def test_self_intersection_is_healed(self):
        descriptor = descriptor_for(GeometricErrorType.SELF_INTERSECTION, "face crosses itself",
                                    operation="union", solid=self.twisted, tolerance=0.01)
        report = self.handler.handle_geometric_error(descriptor)
        self.assertTrue(report.success)
        self.assertTrue(report.recovery_applied)
        self.assertEqual(report.attempts, 1)
        self.assertGreater(report.quality_improvement, 0)
        self.assertIn("repair_self_intersections", report.recovery_steps[0])
        recovered = report.recovered_solid
        self.assertEqual(recovered.id, "w1")
        self.assertFalse(any(p.self_intersects for p in recovered.solid_geometry))
        self.assertEqual(recovered.healing_history[0].operation_type, "repair_self_intersections")

    def test_numerical_instability_widens_tolerance(self):
        descriptor = descriptor_for(GeometricErrorType.NUMERICAL_INSTABILITY, "unstable",
                                    solid=self.twisted, tolerance=0.01)
        report = self.handler.handle_geometric_error(descriptor)
        self.assertTrue(report.success)
        self.assertTrue(report.recovery_steps[0].startswith("tolerance widened"))

    def test_offset_failure_rebuilds_from_baseline(self):
        baseline = Curve.from_coordinates([(0, 0), (500, 0), (500.0005, 0), (1000, 0)])
        descriptor = descriptor_for(
            GeometricErrorType.OFFSET_FAILURE,
            "offset failed",
            operation="create_wall_solid",
            tolerance=0.001,
            baseline=baseline,
            thickness=100,
            wall_type="layout",
            wall_id="w2",
        )
        report = self.handler.handle_geometric_error(descriptor)
        self.assertTrue(report.success)
        self.assertEqual(report.recovered_solid.id, "w2")
        self.assertEqual(len(report.recovered_solid.baseline.points), 3)
        self.assertEqual(report.recovered_solid.join_types["interior"], JoinType.BEVEL)
        self.assertIn("baseline healed (1 vertices fixed)", report.recovery_steps)

    def test_complexity_exceeded_simplifies(self):
        offsets = _quiet(OffsetEngine())
        wall = offsets.create_wall_solid(Curve.from_coordinates([(0, 0), (500, 0), (1000, 0)]), 100,
                                         tolerance=0.01)
        descriptor = descriptor_for(GeometricErrorType.COMPLEXITY_EXCEEDED, "too complex", solid=wall,
                                    tolerance=0.01)
        report = self.handler.handle_geometric_error(descriptor)
        self.assertTrue(report.success)
        self.assertIn("simplified: 2 points removed", report.recovery_steps)
        self.assertEqual(len(report.recovered_solid.solid_geometry[0].outer_ring), 4)

    def test_nothing_to_heal(self):
        descriptor = descriptor_for(GeometricErrorType.BOOLEAN_FAILURE, "union failed", tolerance=0.01)
        report = self.handler.handle_geometric_error(descriptor)
        self.assertFalse(report.success)
        self.assertFalse(report.recovery_applied)
        self.assertEqual(report.attempts, 1)
        self.assertIn("no solid to heal", report.recovery_steps)

    def test_attempts_are_bounded(self):
        # a solid that does not cover its baseline cannot be healed into a valid one
        offsets = _quiet(OffsetEngine())
        elsewhere = offsets.create_wall_solid(Curve.from_coordinates([(0, 5000), (1000, 5000)]), 100,
                                              tolerance=0.01)
        misplaced = self.wall.replace(solid_geometry=elsewhere.solid_geometry)
        descriptor = descriptor_for(GeometricErrorType.VALIDATION_FAILURE, "baseline outside solid",
                                    solid=misplaced, tolerance=0.01)
        report = self.handler.handle_geometric_error(descriptor)
        self.assertFalse(report.success)
        self.assertTrue(report.recovery_applied)
        self.assertEqual(report.attempts, 3)

    def test_auto_recovery_disabled(self):
        handler = _handler(enable_auto_recovery=False)
        descriptor = descriptor_for(GeometricErrorType.SELF_INTERSECTION, "face crosses itself",
                                    solid=self.twisted, tolerance=0.01)
        report = handler.handle_geometric_error(descriptor)
        self.assertFalse(report.success)
        self.assertFalse(report.recovery_applied)


if __name__ == "__main__":
    unittest.main()
