"""
Command line interface.

Usage:
    python cli.py search <pattern>
    python cli.py compose <feature>... [-o Dockerfile] [-t test_spec.json]
    python cli.py build <feature>... [-n image-name] [-t test_spec.json] [--verify]
    python cli.py verify <image> [-t test_spec.json]
    python cli.py config list|get <key>|set <key> <value>
    python cli.py serve [--host 0.0.0.0] [--port 8080]
"""

from __future__ import annotations

import argparse
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import config
from activities.docker_ops import DockerRuntime
from activities.plan import write_plan
from models.errors import ForgeError, TestsFailed
from models.schemas import TestOutcome, TestReport, TestStatus
from storage import FeatureStore, get_store
from workflows.pipeline import BuildPipeline

log = logging.getLogger(__name__)

VERSION = "0.1"


@contextmanager
def open_store(settings: config.Settings) -> Iterator[FeatureStore]:
    store = get_store(settings)
    try:
        yield store
    finally:
        close = getattr(store, "close", None)
        if close:
            close()


def print_outcome(outcome: TestOutcome) -> None:
    label = {TestStatus.PASSED: "PASS", TestStatus.FAILED: "FAIL", TestStatus.SKIPPED: "SKIP"}
    print(f"[{label[outcome.status]}] {outcome.feature}: {outcome.cmd or '(no test)'}")
    if outcome.status == TestStatus.FAILED:
        print(f"\t{outcome.error}")
        for line in outcome.output.rstrip().splitlines():
            print(f"\t{line}")


def print_summary(report: TestReport) -> None:
    summary = report.summary()
    counts = ", ".join(f"{n} {status}" for status, n in sorted(summary["statuses"].items()))
    print(f"Tested {report.image}: {counts or 'nothing to run'}")


def check_report(report: TestReport) -> None:
    print_summary(report)
    if report.failure_count > 0:
        raise TestsFailed(report.failure_count)


# ── Commands ──────────────────────────────────────────────────────────

def cmd_search(args, settings: config.Settings) -> int:
    with open_store(settings) as store:
        metas = store.search_meta(args.pattern)
    for meta in metas:
        deps = f" (depends on: {', '.join(meta.dependencies)})" if meta.dependencies else ""
        print(f"{meta.name}{deps}")
        if meta.description:
            print(f"\t{meta.description}")
    if not metas:
        print(f"No features matching '{args.pattern}'")
    return 0


def cmd_compose(args, settings: config.Settings) -> int:
    with open_store(settings) as store:
        pipeline = BuildPipeline(store, None, settings)
        composition = pipeline.compose(args.features, base_image=args.base)

    if args.output == "-":
        sys.stdout.write(composition.dockerfile)
    else:
        Path(args.output).write_text(composition.dockerfile)
        print(f"Dockerfile written to {args.output} ({', '.join(composition.resolved.order)})")
    if args.test_spec:
        write_plan(args.test_spec, composition.plan)
    return 0


def cmd_build(args, settings: config.Settings) -> int:
    runtime = DockerRuntime(settings.docker.bin)
    with open_store(settings) as store:
        pipeline = BuildPipeline(store, runtime, settings)
        result = pipeline.build(
            args.features, args.image_name, args.test_spec,
            verify=args.verify, base_image=args.base, on_outcome=print_outcome,
        )
    print(f"Built image {result.image} from: {', '.join(result.composition.resolved.order)}")
    if result.report is not None:
        check_report(result.report)
    return 0


def cmd_verify(args, settings: config.Settings) -> int:
    runtime = DockerRuntime(settings.docker.bin)
    # verification only replays the test spec; no feature store is needed
    pipeline = BuildPipeline(store=None, runtime=runtime, settings=settings)
    report = pipeline.verify(args.image, args.test_spec, on_outcome=print_outcome)
    check_report(report)
    return 0


def cmd_config(args, settings: config.Settings) -> int:
    if args.action == "list":
        for key in config.OPTIONS:
            print(f"{key}: {config.get_option(settings, key)}")
            print(f"\t{config.option_help(key)}")
    elif args.action == "get":
        print(config.get_option(settings, args.key))
    elif args.action == "set":
        config.set_option(settings, args.key, args.value)
        path = config.save_settings(settings, args.config)
        print(f"{args.key} = {config.get_option(settings, args.key)} (saved to {path})")
    return 0


def cmd_serve(args, settings: config.Settings) -> int:
    import uvicorn

    from app import create_app

    uvicorn.run(create_app(settings=settings), host=args.host, port=args.port)
    return 0


# ── Parser ────────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="forge", description="Build Docker images from reusable features",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("--config", default=None,
                        help=f"Settings file (default: ~/{config.USER_CONFIG_FILENAME})")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("search", help="Search features by name (regular expression)")
    p.add_argument("pattern", nargs="?", default="")
    p.set_defaults(func=cmd_search)

    p = sub.add_parser("compose", help="Compose a Dockerfile without building it")
    p.add_argument("features", nargs="+")
    p.add_argument("-b", "--base", default=None, help="Base image (default: from settings)")
    p.add_argument("-o", "--output", default="-", help="Dockerfile path, '-' for stdout")
    p.add_argument("-t", "--test-spec", default=None, help="Also write the test spec here")
    p.set_defaults(func=cmd_compose)

    p = sub.add_parser("build", help="Build a docker image from features")
    p.add_argument("features", nargs="+")
    p.add_argument("-n", "--image-name", default=config.DEFAULT_IMAGE_NAME, help="Docker image name")
    p.add_argument("-t", "--test-spec", default=config.DEFAULT_TEST_SPEC, help="Path to test spec file")
    p.add_argument("-b", "--base", default=None, help="Base image (default: from settings)")
    p.add_argument("--verify", action="store_true", help="Run the test spec as part of the build")
    p.set_defaults(func=cmd_build)

    p = sub.add_parser("verify", help="Verify a docker image against a test spec")
    p.add_argument("image")
    p.add_argument("-t", "--test-spec", default=config.DEFAULT_TEST_SPEC, help="Path to test spec file")
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser("config", help="Show or change settings")
    config_sub = p.add_subparsers(dest="action", required=True)
    config_sub.add_parser("list", help="List all settings")
    get_p = config_sub.add_parser("get", help="Show one setting")
    get_p.add_argument("key")
    set_p = config_sub.add_parser("set", help="Change and save one setting")
    set_p.add_argument("key")
    set_p.add_argument("value")
    p.set_defaults(func=cmd_config)

    p = sub.add_parser("serve", help="Serve the configured store as a registry API")
    p.add_argument("--host", default="0.0.0.0")
    p.add_argument("--port", type=int, default=8080)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    settings = config.load_settings(args.config)
    try:
        return args.func(args, settings)
    except (ForgeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
