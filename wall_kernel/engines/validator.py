"""
Validator – quality metrics and a pass/fail verdict for wall solids.

Metrics are recomputed from scratch on every call. Self-intersections and
structural/topological errors invalidate a solid; slivers, micro-gaps and
compliance findings only lower the quality score, which is a weighted sum of
four sub-scores (accuracy, topology, manufacturability, compliance).
"""

import math
import time
from collections import Counter
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

import shapely
from shapely.geometry import LineString, Point as ShapelyPoint
from shapely.strtree import STRtree

from ..config import ValidatorConfig
from ..geometry.vector_utils import Vec, point_distance, turning_angle
from ..models.enums import IssueSeverity
from ..models.geometry import Curve, Point
from ..models.results import ValidationIssue, ValidationResult
from ..models.wall_solid import QualityMetrics, WallSolid
from .base_engine import BaseEngine

# Bytes per stored coordinate pair, for the memory estimate in QualityMetrics
COORDINATE_BYTES = 16


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _issue(issue_type: str, severity: IssueSeverity, message: str, suggested_fix: str = "",
           location: Optional[Vec] = None) -> ValidationIssue:
    point = Point.at(location[0], location[1], creation_method="validation") if location is not None else None
    return ValidationIssue(issue_type=issue_type, severity=severity, message=message,
                           suggested_fix=suggested_fix, location=point)


class Validator(BaseEngine):
    """Computes QualityMetrics and validation issues for wall solids."""

    config_class = ValidatorConfig

    # ------------------------------------------------------------------
    # Curves
    # ------------------------------------------------------------------

    def validate_curve(self, curve: Curve) -> List[ValidationIssue]:
        """Issues of a baseline or offset curve."""
        issues: List[ValidationIssue] = []
        coords = [p.as_tuple() for p in curve.points]
        if any(not (math.isfinite(x) and math.isfinite(y)) for x, y in coords):
            issues.append(_issue("invalid_coordinates", IssueSeverity.CRITICAL,
                                 f"Curve {curve.id} has non-finite coordinates", "Correct the input points"))
            return issues

        minimum = 3 if curve.is_closed else 2
        if len(coords) < minimum:
            issues.append(_issue("degenerate_curve", IssueSeverity.ERROR,
                                 f"Curve {curve.id} has {len(coords)} points, needs {minimum}",
                                 "Provide at least two distinct points"))
            return issues

        zero_length = [i for i, length in enumerate(curve.segment_lengths) if length <= self.config.tolerance]
        if zero_length:
            issues.append(_issue("duplicate_vertices", IssueSeverity.WARNING,
                                 f"Curve {curve.id} has {len(zero_length)} zero-length segments",
                                 "Merge duplicate vertices", coords[zero_length[0]]))

        if not curve.is_closed and len(coords) > 3 and not LineString(coords).is_simple:
            issues.append(_issue("self_intersecting_curve", IssueSeverity.WARNING,
                                 f"Curve {curve.id} crosses itself", "Split the wall at the crossing"))
        return issues

    # ------------------------------------------------------------------
    # Solids
    # ------------------------------------------------------------------

    def _face_issues(self, solid: WallSolid) -> Tuple[List[ValidationIssue], Counter]:
        cfg = self.config
        issues: List[ValidationIssue] = []
        counts: Counter = Counter()

        if not solid.solid_geometry:
            counts["topology"] += 1
            issues.append(_issue("missing_geometry", IssueSeverity.ERROR, f"Wall {solid.id} has no solid faces",
                                 "Rebuild the solid from its offsets"))
            return issues, counts

        for poly in solid.solid_geometry:
            if poly.area <= cfg.tolerance ** 2:
                counts["degenerate"] += 1
                issues.append(_issue("zero_area_face", IssueSeverity.ERROR, f"Face {poly.id} has zero area",
                                     "Run shape healing", poly.centroid.as_tuple()))
                continue
            if poly.self_intersects:
                counts["self_intersection"] += 1
                issues.append(_issue("self_intersection", IssueSeverity.ERROR,
                                     f"Face {poly.id} is self-intersecting",
                                     "Run shape healing to repair self-intersections", poly.centroid.as_tuple()))
            if poly.isoperimetric_ratio < cfg.sliver_face_threshold or poly.area <= cfg.sliver_face_threshold ** 2:
                counts["sliver"] += 1
                issues.append(_issue("sliver_face", IssueSeverity.WARNING, f"Face {poly.id} is a sliver",
                                     "Remove sliver faces by healing", poly.centroid.as_tuple()))
            for coords in [poly.outer_coordinates] + poly.hole_coordinates:
                n = len(coords)
                for i in range(n):
                    if point_distance(coords[i], coords[(i + 1) % n]) < cfg.micro_gap_threshold:
                        counts["micro_gap"] += 1
        if counts["micro_gap"]:
            issues.append(_issue("micro_gap", IssueSeverity.WARNING,
                                 f"Wall {solid.id} has {counts['micro_gap']} segments shorter than "
                                 f"{cfg.micro_gap_threshold:g} mm", "Collapse micro segments by healing"))
        return issues, counts

    def _topology_issues(self, solid: WallSolid) -> Tuple[List[ValidationIssue], Counter]:
        cfg = self.config
        issues: List[ValidationIssue] = []
        counts: Counter = Counter()
        baseline = solid.baseline
        if not solid.solid_geometry:
            return issues, counts

        # Sample the middle of the longest baseline segment, away from junction adjustments
        coords = [p.as_tuple() for p in baseline.points]
        lengths = list(baseline.segment_lengths)
        i = max(range(len(lengths)), key=lambda k: lengths[k])
        a, b = coords[i], coords[(i + 1) % len(coords)]
        sample = ((a[0] + b[0]) / 2.0, (a[1] + b[1]) / 2.0)
        sample_point = ShapelyPoint(sample)

        shape = solid.to_shapely()
        if shape.is_empty or not shape.buffer(cfg.tolerance).covers(sample_point):
            counts["topology"] += 1
            issues.append(_issue("baseline_outside_solid", IssueSeverity.ERROR,
                                 f"Wall {solid.id} solid does not cover its baseline",
                                 "Rebuild the solid from its offsets", sample))

        h = solid.thickness / 2.0
        allowed = max(cfg.tolerance, h * cfg.thickness_deviation_ratio)
        for name, offset in (("left", solid.left_offset), ("right", solid.right_offset)):
            measured = offset.to_linestring().distance(sample_point)
            if abs(measured - h) > allowed:
                counts["dimensional"] += 1
                issues.append(_issue("offset_distance", IssueSeverity.ERROR,
                                     f"Wall {solid.id} {name} offset is {measured:.3f} mm from the baseline, "
                                     f"expected {h:.3f} mm",
                                     "Rebuild offsets at half the wall thickness", sample))
        return issues, counts

    def _compliance_issues(self, solid: WallSolid) -> List[ValidationIssue]:
        cfg = self.config
        issues: List[ValidationIssue] = []
        if not cfg.min_wall_thickness <= solid.thickness <= cfg.max_wall_thickness:
            issues.append(_issue("thickness_out_of_range", IssueSeverity.WARNING,
                                 f"Wall thickness {solid.thickness:g} mm outside "
                                 f"{cfg.min_wall_thickness:g}-{cfg.max_wall_thickness:g} mm",
                                 "Check the wall type and thickness"))
        coords = [p.as_tuple() for p in solid.baseline.points]
        n = len(coords)
        indices = range(n) if solid.baseline.is_closed else range(1, n - 1)
        if n >= 3:
            for i in indices:
                interior = 180.0 - abs(turning_angle(coords[i - 1], coords[i], coords[(i + 1) % n]))
                if interior < cfg.sharp_angle_threshold:
                    issues.append(_issue("sharp_angle", IssueSeverity.WARNING,
                                         f"Baseline angle of {interior:.1f}° at vertex {i}",
                                         "Avoid acute wall angles; they are hard to build", coords[i]))
        return issues

    def _measure(self, solid: WallSolid) -> Tuple[List[ValidationIssue], QualityMetrics, float]:
        """Issues, fresh QualityMetrics and the weighted quality score of one solid."""
        cfg = self.config

        issues = list(self.validate_curve(solid.baseline))
        counts: Counter = Counter()
        counts["degenerate"] += sum(1 for i in issues if i.issue_type in ("degenerate_curve", "invalid_coordinates"))
        counts["degenerate"] += sum(1 for i in issues if i.issue_type == "duplicate_vertices")

        if solid.thickness <= 0:
            issues.append(_issue("invalid_thickness", IssueSeverity.CRITICAL,
                                 f"Wall thickness must be positive, got {solid.thickness}",
                                 "Correct the wall thickness"))

        face_issues, face_counts = self._face_issues(solid)
        topology_issues, topology_counts = self._topology_issues(solid)
        compliance_issues = self._compliance_issues(solid)
        issues += face_issues + topology_issues + compliance_issues
        counts.update(face_counts)
        counts.update(topology_counts)

        accuracy = _clamp(1.0 - 0.5 * counts["self_intersection"] - 0.2 * counts["degenerate"]
                          - 0.05 * counts["sliver"] - 0.2 * counts["dimensional"])
        topology = _clamp(1.0 - 0.5 * counts["topology"])
        manufacturability = _clamp(1.0 - 0.1 * counts["sliver"] - 0.05 * counts["micro_gap"]
                                   - 0.2 * counts["degenerate"])
        compliance = _clamp(1.0 - 0.1 * len(compliance_issues))
        quality_score = (
            cfg.weight_geometric_accuracy * accuracy
            + cfg.weight_topological_consistency * topology
            + cfg.weight_manufacturability * manufacturability
            + cfg.weight_architectural_compliance * compliance
        )

        complexity = solid.complexity
        ring_points = sum(len(ring) for poly in solid.solid_geometry for ring in poly.rings)
        metrics = QualityMetrics(
            geometric_accuracy=accuracy,
            topological_consistency=topology,
            manufacturability=manufacturability,
            architectural_compliance=compliance,
            sliver_face_count=counts["sliver"],
            micro_gap_count=counts["micro_gap"],
            self_intersection_count=counts["self_intersection"],
            degenerate_element_count=counts["degenerate"],
            complexity=complexity,
            processing_efficiency=_clamp(1000.0 / max(1000.0, float(complexity))),
            memory_usage=(ring_points + len(solid.baseline.points)) * COORDINATE_BYTES,
            last_validated=datetime.now(timezone.utc),
        )
        return issues, metrics, quality_score

    def assess_quality(self, solid: WallSolid) -> QualityMetrics:
        """Recompute QualityMetrics after a stage that changed the geometry; no verdict, no logging."""
        return self._measure(solid)[1]

    def validate_wall_solid(self, solid: WallSolid) -> ValidationResult:
        """
        Validate one wall solid.

        Returns:
            ValidationResult with fresh QualityMetrics; is_valid is False
            exactly when a self-intersection or a blocking issue was found.
        """
        start_time = time.time()
        issues, metrics, quality_score = self._measure(solid)
        processing_time = (time.time() - start_time) * 1000

        blocking = [i for i in issues if i.is_blocking]
        is_valid = metrics.self_intersection_count == 0 and not blocking
        self.log_info(
            "Wall validated",
            wall_id=solid.id,
            is_valid=is_valid,
            quality_score=round(quality_score, 4),
            issues=len(issues),
            duration_ms=int(processing_time),
        )
        return ValidationResult(
            is_valid=is_valid,
            issues=issues,
            quality_score=quality_score,
            errors=[i.message for i in blocking],
            warnings=[i.message for i in issues if i.severity == IssueSeverity.WARNING],
            quality_metrics=metrics,
            processing_time=processing_time,
        )

    # ------------------------------------------------------------------
    # Networks
    # ------------------------------------------------------------------

    def validate_wall_network(self, walls: Sequence[WallSolid]) -> List[ValidationIssue]:
        """Duplicate ids and overlapping walls that carry no shared junction record."""
        walls = list(walls)
        issues: List[ValidationIssue] = []
        for wall_id, count in Counter(w.id for w in walls).items():
            if count > 1:
                issues.append(_issue("duplicate_wall_id", IssueSeverity.ERROR,
                                     f"Wall id {wall_id} appears {count} times", "Give every wall a unique id"))

        shapes = [w.to_shapely() for w in walls]
        indexed = [i for i, s in enumerate(shapes) if not s.is_empty]
        if len(indexed) < 2:
            return issues
        tree = STRtree([shapes[i] for i in indexed])
        min_overlap = self.config.tolerance ** 2
        for i in indexed:
            for other in tree.query(shapes[i]):
                j = indexed[int(other)]
                if j <= i:
                    continue
                overlap = shapely.intersection(shapes[i], shapes[j]).area
                if overlap <= min_overlap:
                    continue
                ids_i = {d.id for d in walls[i].intersection_data}
                ids_j = {d.id for d in walls[j].intersection_data}
                if ids_i & ids_j:
                    continue
                issues.append(_issue("unresolved_overlap", IssueSeverity.WARNING,
                                     f"Walls {walls[i].id} and {walls[j].id} overlap by {overlap:.1f} mm² "
                                     f"without a resolved junction", "Resolve the junction between the walls"))
        return issues
