"""
Tests for the pipeline executor and the command line entry point.
"""

import json
import os
import tempfile
import unittest
from unittest.mock import Mock, patch

from wall_kernel.__main__ import main
from wall_kernel.config import IntersectionResolverConfig, KernelConfig, OffsetEngineConfig
from wall_kernel.errors import BooleanFailure
from wall_kernel.models.enums import GeometricErrorType, WallType
from wall_kernel.pipeline import FloorPlanInput, PipelineExecutor, WallInput

ROOM = [
    {"id": "south", "baseline": [[0, 0], [4000, 0]], "thickness": 100},
    {"id": "east", "baseline": [[4000, 0], [4000, 3000]], "thickness": 100},
    {"id": "north", "baseline": [[4000, 3000], [0, 3000]], "thickness": 100},
    {"id": "west", "baseline": [[0, 3000], [0, 0]], "thickness": 100},
]


def _quiet(engine):
    engine.log_info = Mock()
    engine.log_warning = Mock()
    engine.log_error = Mock()
    return engine


def _executor(config=None):
    executor = PipelineExecutor(config)
    for engine in (executor.tolerance_manager, executor.offset_engine, executor.boolean_engine,
                   executor.intersection_resolver, executor.healing_engine, executor.simplification_engine,
                   executor.validator, executor.error_handler):
        _quiet(engine)
    return executor


class PipelineTestCase(unittest.TestCase):
    def setUp(self):
        patcher = patch("wall_kernel.pipeline.pipeline_executor.logger")
        patcher.start()
        self.addCleanup(patcher.stop)
        self.executor = _executor()


class TestProcessWall(PipelineTestCase):
    def test_l_shaped_wall(self):
        wall = WallInput(id="w1", baseline=[(0, 0), (3000, 0), (3000, 2000)], thickness=150)
        result = self.executor.process_wall(wall)
        self.assertTrue(result.success)
        self.assertEqual(result.wall_id, "w1")
        self.assertEqual(list(result.step_timings), PipelineExecutor.PIPELINE_STEPS)
        self.assertTrue(result.validation.is_valid)
        solid = result.wall_solid
        self.assertEqual(solid.id, "w1")
        self.assertAlmostEqual(solid.area, 5000 * 150, delta=1)
        self.assertEqual(solid.geometric_quality, result.validation.quality_metrics)

    def test_default_thickness_from_wall_type(self):
        wall = WallInput(id="s", baseline=[(0, 0), (1000, 0)], wall_type=WallType.STRUCTURAL)
        result = self.executor.process_wall(wall)
        self.assertTrue(result.success)
        self.assertEqual(result.wall_solid.thickness, 200)

    def test_generated_id(self):
        result = self.executor.process_wall(WallInput(baseline=[(0, 0), (1000, 0)]))
        self.assertTrue(result.success)
        self.assertEqual(result.wall_solid.id, result.wall_id)

    def test_too_few_points_fails_without_recovery(self):
        result = self.executor.process_wall(WallInput(id="bad", baseline=[(0, 0)]))
        self.assertFalse(result.success)
        self.assertEqual(result.failed_step, "TOLERANCE")
        self.assertEqual(result.errors[0].error_type, GeometricErrorType.INVALID_PARAMETER)
        self.assertFalse(result.recovery.success)
        self.assertIsNone(result.wall_solid)

    def test_junction_with_adjacent_wall(self):
        first = self.executor.process_wall(WallInput(id="a", baseline=[(0, 0), (1000, 0)], thickness=100))
        result = self.executor.process_wall(
            WallInput(id="b", baseline=[(1000, 0), (1000, 1000)], thickness=100),
            adjacent=[first.wall_solid],
        )
        self.assertTrue(result.success)
        solid = result.wall_solid
        self.assertEqual(len(solid.intersection_data), 1)
        self.assertEqual(solid.intersection_data[0].resolution_method, "l_junction_miter")
        # mitered end: trapezoid between y = 50 (inner) and y = -50 (outer)
        self.assertAlmostEqual(solid.area, 100000, delta=1)

    def test_junction_engines_share_configured_limits(self):
        config = KernelConfig(
            offset=OffsetEngineConfig(miter_limit=1.2),
            intersection=IntersectionResolverConfig(parallel_overlap_threshold=0.01),
        )
        executor = _executor(config)
        self.assertEqual(executor.boolean_engine.config.miter_limit, 1.2)
        self.assertEqual(executor.boolean_engine.config.parallel_overlap_threshold, 0.01)
        first = executor.process_wall(WallInput(id="a", baseline=[(0, 0), (1000, 0)], thickness=100))
        result = executor.process_wall(
            WallInput(id="b", baseline=[(1000, 0), (1000, 1000)], thickness=100),
            adjacent=[first.wall_solid],
        )
        self.assertTrue(result.success)
        self.assertEqual(result.wall_solid.intersection_data[0].resolution_method, "l_junction_bevel")

    def test_quality_is_refreshed_after_each_geometry_step(self):
        executor = self.executor
        assess = Mock(wraps=executor.validator.assess_quality)
        heal = Mock(wraps=executor.healing_engine.heal_shape)
        simplify = Mock(wraps=executor.simplification_engine.simplify_wall_geometry)
        with patch.object(executor.validator, "assess_quality", assess), \
                patch.object(executor.healing_engine, "heal_shape", heal), \
                patch.object(executor.simplification_engine, "simplify_wall_geometry", simplify):
            result = executor.process_wall(WallInput(id="w1", baseline=[(0, 0), (1000, 0)], thickness=100))
        self.assertTrue(result.success)
        # offset, boolean, healing and simplification; no adjacent walls, no junctions
        self.assertEqual(assess.call_count, 4)
        after_boolean = heal.call_args[0][0].geometric_quality
        after_healing = simplify.call_args[0][0].geometric_quality
        final = result.wall_solid.geometric_quality
        self.assertIsNotNone(after_boolean.last_validated)
        self.assertLessEqual(after_boolean.last_validated, after_healing.last_validated)
        self.assertLessEqual(after_healing.last_validated, final.last_validated)

    def test_step_error_is_recovered(self):
        wall = WallInput(id="w1", baseline=[(0, 0), (1000, 0)], thickness=100)
        with patch.object(self.executor.boolean_engine, "union", side_effect=BooleanFailure("boom", operation="union")):
            result = self.executor.process_wall(wall)
        self.assertTrue(result.success)
        self.assertTrue(result.recovery.success)
        self.assertIn("recovered from boolean_failure in boolean", result.warnings)
        self.assertTrue(result.validation.is_valid)

    def test_unexpected_error_propagates(self):
        wall = WallInput(id="w1", baseline=[(0, 0), (1000, 0)], thickness=100)
        with patch.object(self.executor.healing_engine, "heal_shape", side_effect=RuntimeError("bug")):
            with self.assertRaises(RuntimeError):
                self.executor.process_wall(wall)


class TestProcessFloorPlan(PipelineTestCase):
    def test_room(self):
        plan = FloorPlanInput.model_validate({"walls": ROOM})
        result = self.executor.process_floor_plan(plan.walls)
        self.assertTrue(result.success)
        self.assertEqual(result.failed_walls, [])
        self.assertEqual(len(result.network.junctions), 4)
        self.assertEqual(result.network_issues, [])
        self.assertEqual([g.phase for g in result.groups], ["build", "finish"])
        for wall in result.walls:
            self.assertTrue(wall.validation.is_valid)
            self.assertEqual(len(wall.wall_solid.intersection_data), 2)
        self.assertEqual(len(result.composition.result_polygons), 1)
        self.assertAlmostEqual(result.composition.result_solid.area, 4100 * 3100 - 3900 * 2900, delta=1400)

    def test_failed_wall_does_not_stop_the_plan(self):
        walls = [WallInput.model_validate(w) for w in ROOM] + [WallInput(id="bad", baseline=[(9000, 9000)])]
        result = self.executor.process_floor_plan(walls)
        self.assertFalse(result.success)
        self.assertEqual(result.failed_walls, ["bad"])
        self.assertEqual(len(result.network.junctions), 4)
        self.assertIsNotNone(result.composition)

    def test_walls_run_in_groups(self):
        executor = _executor(KernelConfig(batch_size=10))
        walls = [WallInput(id=f"w{i}", baseline=[(0, 500 * i), (1000, 500 * i)]) for i in range(25)]
        result = executor.process_floor_plan(walls)
        self.assertTrue(result.success)
        build = [g for g in result.groups if g.phase == "build"]
        finish = [g for g in result.groups if g.phase == "finish"]
        self.assertEqual([g.wall_count for g in build], [10, 10, 5])
        self.assertEqual([g.wall_count for g in finish], [10, 10, 5])
        self.assertEqual(result.network.junctions, [])
        self.assertEqual(len(result.composition.result_polygons), 25)

    def test_summary_is_json_serializable(self):
        plan = FloorPlanInput.model_validate({"walls": ROOM})
        summary = self.executor.process_floor_plan(plan.walls).summary()
        text = json.dumps(summary)
        self.assertIn("composed_area", summary)
        self.assertEqual(summary["network"]["junctions"], 4)
        self.assertEqual(json.loads(text)["wall_count"], 4)


class TestCommandLine(unittest.TestCase):
    def setUp(self):
        for target in ("wall_kernel.__main__.configure_logging", "wall_kernel.__main__.logger",
                       "wall_kernel.pipeline.pipeline_executor.logger", "wall_kernel.engines.base_engine.logger"):
            patcher = patch(target)
            patcher.start()
            self.addCleanup(patcher.stop)
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def _write(self, name, content):
        path = os.path.join(self.tmp.name, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return path

    def test_report_written(self):
        plan = self._write("plan.json", json.dumps({"walls": ROOM}))
        output = os.path.join(self.tmp.name, "report.json")
        self.assertEqual(main([plan, "--output", output]), 0)
        with open(output, encoding="utf-8") as f:
            report = json.load(f)
        self.assertTrue(report["success"])
        self.assertEqual(report["wall_count"], 4)

    def test_full_report(self):
        plan = self._write("plan.json", json.dumps({"walls": ROOM[:1]}))
        output = os.path.join(self.tmp.name, "report.json")
        self.assertEqual(main([plan, "-o", output, "--full"]), 0)
        with open(output, encoding="utf-8") as f:
            report = json.load(f)
        self.assertEqual(report["walls"][0]["wall_solid"]["id"], "south")

    def test_failed_wall_exit_code(self):
        plan = self._write("plan.json", json.dumps({"walls": [{"id": "bad", "baseline": [[0, 0]]}]}))
        output = os.path.join(self.tmp.name, "report.json")
        self.assertEqual(main([plan, "-o", output]), 1)

    def test_unreadable_plan(self):
        self.assertEqual(main([os.path.join(self.tmp.name, "missing.json")]), 2)
        self.assertEqual(main([self._write("broken.json", "{not json")]), 2)
        self.assertEqual(main([self._write("invalid.json", json.dumps({"walls": [{"thickness": 100}]}))]), 2)


if __name__ == "__main__":
    unittest.main()
