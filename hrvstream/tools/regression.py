# hrvstream/tools/regression.py
"""
Regression mode: recompute metrics for recorded fixtures and compare them
with the stored expectations.

Fixture file (JSON):
    {
      "default_tolerance": 1e-6,
      "fixtures": [
        {
          "name": "rest_rr",
          "input": "rest_rr.csv",          # relative to the fixture file
          "kind": "rr",                    # "rr" (seconds) or "ecg" (samples)
          "fs": 250.0,                     # required for "ecg"
          "expected": {"avnn_s": 0.81, "rmssd_s": 0.031},
          "tolerance": {"rmssd_s": 1e-4}   # optional per-field override
        }
      ]
    }

Expectations are only rewritten when update=True.
"""

import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from hrvstream.config.settings import PipelineConfig, settings
from hrvstream.hrv_metrics.service_hrv import (
    analyze_rr,
    load_ecg_csv,
    load_rr_csv,
    metrics_to_json,
    run_pipeline,
)
from hrvstream.signals.errors import ConfigurationError, PipelineError
from hrvstream.utils.logging_utils import get_logger

logger = get_logger(module_name="regression", logfile_name="regression.log")

DEFAULT_TOLERANCE = 1e-6


@dataclass
class FixtureResult:
    name: str
    passed: bool
    mismatches: Dict[str, Tuple[Any, Any]] = field(default_factory=dict)
    error: Optional[str] = None
    actual: Dict[str, Any] = field(default_factory=dict)


def _compute(fixture: Dict[str, Any], base_dir: Path, config: PipelineConfig) -> Dict[str, Any]:
    kind = fixture.get("kind", "rr")
    input_path = base_dir / fixture["input"]
    if kind == "rr":
        return metrics_to_json(analyze_rr(load_rr_csv(input_path), config))
    if kind == "ecg":
        if "fs" not in fixture:
            raise ConfigurationError(f"fixture {fixture.get('name')!r} of kind 'ecg' needs 'fs'")
        fs = float(fixture["fs"])
        series = load_ecg_csv(input_path, fs)
        return metrics_to_json(run_pipeline(series=series, config=config.replace(fs=fs), strict=False))
    raise ConfigurationError(f"unknown fixture kind {kind!r}")


def _matches(expected: Any, actual: Any, tol: float) -> bool:
    if expected is None or actual is None:
        return expected is actual
    if isinstance(expected, (int, float)) and isinstance(actual, (int, float)):
        if math.isnan(float(expected)) or math.isnan(float(actual)):
            return False
        return abs(float(expected) - float(actual)) <= tol
    return expected == actual


def check_fixture(
    fixture: Dict[str, Any],
    base_dir: Path,
    default_tolerance: float,
    config: PipelineConfig,
) -> FixtureResult:
    name = str(fixture.get("name", fixture.get("input", "?")))
    try:
        actual = _compute(fixture, base_dir, config)
    except (PipelineError, OSError, KeyError) as exc:
        return FixtureResult(name=name, passed=False, error=str(exc))

    tolerances = fixture.get("tolerance", {})
    mismatches: Dict[str, Tuple[Any, Any]] = {}
    for key, expected in fixture.get("expected", {}).items():
        tol = float(tolerances.get(key, default_tolerance))
        got = actual.get(key)
        if not _matches(expected, got, tol):
            mismatches[key] = (expected, got)
    return FixtureResult(name=name, passed=not mismatches, mismatches=mismatches, actual=actual)


def run_fixtures(
    suite_path: Union[str, Path],
    update: bool = False,
    config: Optional[PipelineConfig] = None,
) -> List[FixtureResult]:
    """
    Check every fixture in `suite_path`.

    update=True stores the recomputed values as the new expectations (only
    the keys each fixture already lists, or every metric when it lists none)
    and rewrites the fixture file.
    """
    path = Path(suite_path)
    with path.open("r", encoding="utf-8") as fh:
        suite = json.load(fh)

    config = config or settings.pipeline
    default_tol = float(suite.get("default_tolerance", DEFAULT_TOLERANCE))
    results: List[FixtureResult] = []

    for fixture in suite.get("fixtures", []):
        result = check_fixture(fixture, path.parent, default_tol, config)
        results.append(result)
        if result.error:
            logger.error("Fixture %s failed to run: %s", result.name, result.error)
        elif not result.passed:
            logger.warning("Fixture %s mismatches: %s", result.name, result.mismatches)

        if update and result.error is None:
            keys = list(fixture.get("expected", {})) or [
                k for k, v in result.actual.items() if isinstance(v, (int, float))
            ]
            fixture["expected"] = {k: result.actual.get(k) for k in keys}

    if update:
        with path.open("w", encoding="utf-8") as fh:
            json.dump(suite, fh, indent=2)
        logger.info("Updated expectations in %s", path)

    passed = sum(r.passed for r in results)
    logger.info("Regression: %d/%d fixtures passed (%s)", passed, len(results), path)
    return results
