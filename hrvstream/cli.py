# hrvstream/cli.py
"""
Command line entry point.

    hrvstream pipeline --ecg rec.csv --fs 250 [--events events.tsv] [--out metrics.json]
    hrvstream hrv-time rr.csv
    hrvstream regress fixtures.json [--update]
    hrvstream run-simulate --design design.json --trials trials.csv --out runs/sub-01/run-01 [--seed 42]
    hrvstream serve [--host 127.0.0.1] [--port 8000]
"""

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from hrvstream.config.settings import settings
from hrvstream.hrv_metrics.metrics import compute_time_domain
from hrvstream.hrv_metrics.service_hrv import (
    load_ecg_csv,
    load_rr_csv,
    metrics_to_json,
    rr_table,
    run_pipeline,
)
from hrvstream.runs.run_loader import RunEventFilter, events_from_records, load_events
from hrvstream.runs.run_simulator import read_design, read_trials, simulate_run, with_seed, write_bundle
from hrvstream.signals.errors import PipelineError
from hrvstream.tools.regression import run_fixtures


def _print_json(data) -> None:
    print(json.dumps(data, indent=2))


def cmd_pipeline(args: argparse.Namespace) -> int:
    config = settings.pipeline.replace(
        fs=args.fs,
        interp_fs=args.interp_fs,
        exclude_artifacts=args.exclude_artifacts,
    )
    series = load_ecg_csv(args.ecg, args.fs, column=args.column) if args.ecg else None

    events = None
    if args.events:
        flt = RunEventFilter.with_allowed_types(args.allow) if args.allow else RunEventFilter.allow_all()
        events = events_from_records(load_events(args.events, flt), args.fs)

    result = run_pipeline(series=series, events=events, config=config, strict=args.strict)
    payload = metrics_to_json(result)
    if args.out:
        Path(args.out).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    else:
        _print_json(payload)
    if args.rr_out and result.rr is not None:
        rr_table(result.rr).to_csv(args.rr_out, index=False)
    return 0


def cmd_hrv_time(args: argparse.Namespace) -> int:
    rr = load_rr_csv(args.path)
    config = settings.pipeline.replace(exclude_artifacts=False)
    _print_json(compute_time_domain(rr, config).to_dict())
    return 0


def cmd_regress(args: argparse.Namespace) -> int:
    results = run_fixtures(args.suite, update=args.update)
    failed = 0
    for r in results:
        if r.passed:
            print(f"PASS {r.name}")
            continue
        failed += 1
        if r.error:
            print(f"FAIL {r.name}: {r.error}")
        for key, (expected, actual) in r.mismatches.items():
            print(f"FAIL {r.name}: {key} expected={expected} actual={actual}")
    print(f"{len(results) - failed}/{len(results)} fixtures passed")
    return 0 if failed == 0 or args.update else 1


def cmd_run_simulate(args: argparse.Namespace) -> int:
    design = read_design(args.design)
    if args.seed is not None:
        design = with_seed(design, args.seed)
    simulated = simulate_run(design, read_trials(args.trials), sub=args.sub, ses=args.ses, run=args.run)
    out = write_bundle(args.out, simulated)
    print(f"{simulated.manifest.total_events} events for {simulated.manifest.total_trials} trials -> {out}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("hrvstream.api.fastapi_app:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hrvstream", description="ECG beats, HRV and signal quality.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("pipeline", help="Waveform and/or annotations -> metrics (JSON)")
    p.add_argument("--ecg", type=Path, help="CSV with ECG samples")
    p.add_argument("--column", help="Column name in the ECG CSV (default: last column, no header)")
    p.add_argument("--events", type=Path, help="Tab-separated event file; skips beat detection")
    p.add_argument("--allow", nargs="*", help="Event types to keep (default: all)")
    p.add_argument("--fs", type=float, default=settings.pipeline.fs, help="Sampling rate (Hz)")
    p.add_argument("--interp-fs", type=float, default=settings.pipeline.interp_fs)
    p.add_argument("--exclude-artifacts", action="store_true")
    p.add_argument("--strict", action="store_true", help="Fail on the first stage error")
    p.add_argument("--out", type=Path, help="Write JSON here instead of stdout")
    p.add_argument("--rr-out", type=Path, help="Write the RR table (CSV) here")
    p.set_defaults(func=cmd_pipeline)

    p = sub.add_parser("hrv-time", help="Time-domain HRV of an RR CSV (seconds)")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_hrv_time)

    p = sub.add_parser("regress", help="Check metrics against recorded fixtures")
    p.add_argument("suite", type=Path)
    p.add_argument("--update", action="store_true", help="Rewrite expected values")
    p.set_defaults(func=cmd_regress)

    p = sub.add_parser("run-simulate", help="Generate a run bundle (run.json + events.tsv)")
    p.add_argument("--design", type=Path, required=True, help="Design JSON (name, timing, randomization)")
    p.add_argument("--trials", type=Path, required=True, help="Trials CSV")
    p.add_argument("--out", type=Path, required=True, help="Bundle directory")
    p.add_argument("--seed", type=int, help="Override the design seed")
    p.add_argument("--sub", default="01")
    p.add_argument("--ses", default="01")
    p.add_argument("--run", default="01")
    p.set_defaults(func=cmd_run_simulate)

    p = sub.add_parser("serve", help="Run the HTTP service")
    p.add_argument("--host", default=settings.api.host)
    p.add_argument("--port", type=int, default=settings.api.port)
    p.add_argument("--reload", action="store_true")
    p.set_defaults(func=cmd_serve)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "pipeline" and args.ecg is None and args.events is None:
        print("error: pipeline needs --ecg and/or --events", file=sys.stderr)
        return 2
    try:
        return args.func(args)
    except PipelineError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    except FileNotFoundError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
