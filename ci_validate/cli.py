from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence

import yaml

from ci_validate.app.validate import EXIT_CONFIGURATION_ERROR, EXIT_INFRASTRUCTURE_ERROR
from validatekit.engine.model import ALLOWED_EVENT_KINDS, Event
from validatekit.errors import ConfigurationError, InfrastructureError


def _add_config_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a single config file (default: $CI_VALIDATE_CONFIG or config/config.yaml)",
    )


def _add_event_arguments(parser: argparse.ArgumentParser, *, required: bool) -> None:
    parser.add_argument(
        "--event",
        choices=ALLOWED_EVENT_KINDS,
        default="push" if required else None,
        help="Repository event kind",
    )
    parser.add_argument("--ref", default=None, help="Branch or tag ref (refs/heads/main or main)")
    parser.add_argument("--sha", default=None, help="Commit being validated")
    parser.add_argument("--base-ref", default=None, help="Pull request target branch")
    parser.add_argument(
        "--changed-path",
        action="append",
        default=[],
        dest="changed_paths",
        help="Path changed by the event (repeatable)",
    )


def _event_from_args(args: argparse.Namespace) -> Event | None:
    if args.event is None:
        return None
    return Event(
        kind=args.event,
        ref=args.ref,
        sha=args.sha,
        base_ref=args.base_ref,
        changed_paths=tuple(args.changed_paths),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ci_validate", add_help=True)
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the validation workflow for an event")
    _add_config_argument(run)
    _add_event_arguments(run, required=True)
    run.add_argument(
        "--only", action="append", default=[], help="Run only this stage (repeatable)"
    )

    plan = sub.add_parser("plan", help="Expand stages into jobs without running anything")
    _add_config_argument(plan)
    _add_event_arguments(plan, required=False)
    plan.add_argument("--only", action="append", default=[], help="Plan only this stage (repeatable)")
    plan.add_argument("--json", action="store_true", help="Print the plan as JSON")

    list_stages = sub.add_parser("list-stages", help="List the stages of the configured workflow")
    _add_config_argument(list_stages)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)

    try:
        if args.command == "run":
            from .app.validate import main as validate_main

            return int(validate_main(_event_from_args(args), config_path=args.config, only=args.only))

        if args.command == "plan":
            from .app.plan import format_plan, load_pipeline, plan

            pipeline, _cfg = load_pipeline(args.config)
            payload = plan(pipeline, event=_event_from_args(args), only=args.only)
            if args.json:
                print(json.dumps(payload, ensure_ascii=False, indent=2))
            else:
                print("\n".join(format_plan(payload)))
            return 0

        if args.command == "list-stages":
            from .app.plan import list_stages, load_pipeline

            pipeline, _cfg = load_pipeline(args.config)
            print("\n".join(list_stages(pipeline)))
            return 0
    except (ConfigurationError, yaml.YAMLError, FileNotFoundError) as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION_ERROR
    except InfrastructureError as exc:
        print(f"Infrastructure error: {exc}", file=sys.stderr)
        return EXIT_INFRASTRUCTURE_ERROR

    raise AssertionError(f"Unhandled command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main(sys.argv[1:]))
