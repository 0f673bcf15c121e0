#!/usr/bin/env python3
"""
SPOT Command-Line Interface

Usage:
    spot <command> [subcommand] [options]

Commands:
    simulate    Run a YAML scenario against a fresh in-memory system
    scenario    Scenario file tooling
    convert     Tranche/claim fixed-point conversions
    config      Configuration management

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from typing import Any, List, Optional

from spot import __version__


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    elif fmt == OutputFormat.YAML:
        import yaml
        return yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False)
    elif fmt == OutputFormat.TABLE:
        return _format_table(data)
    else:
        return str(data)


def _format_table(data: Any) -> str:
    """Format data as ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]

        lines = []
        lines.append(" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    elif isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class SpotCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="spot",
            description="Perpetual tranche and rollover vault accounting",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument(
            "--version", "-V",
            action="version",
            version=f"spot {__version__}",
        )
        self.parser.add_argument(
            "--format", "-f",
            choices=["json", "yaml", "table", "text"],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument(
            "--quiet", "-q",
            action="store_true",
            help="Suppress non-essential output",
        )
        self.parser.add_argument(
            "--config", "-c",
            help="Configuration file applied before the command runs",
        )

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        self._register_simulate_commands()
        self._register_scenario_commands()
        self._register_convert_commands()
        self._register_config_commands()

    def _register_simulate_commands(self) -> None:
        simulate = self.subparsers.add_parser("simulate", help="Run a scenario")
        simulate.add_argument("scenario", help="Scenario YAML file")
        simulate.add_argument(
            "--steps-only", action="store_true", help="Print step results without the final state",
        )

    def _register_scenario_commands(self) -> None:
        scenario = self.subparsers.add_parser("scenario", help="Scenario file tooling")
        scenario_sub = scenario.add_subparsers(dest="subcommand")

        # scenario validate
        validate = scenario_sub.add_parser("validate", help="Validate a scenario against its schema")
        validate.add_argument("scenario", help="Scenario YAML file")

    def _register_convert_commands(self) -> None:
        """Register convert subcommands."""
        convert = self.subparsers.add_parser("convert", help="Fixed-point conversions")
        convert_sub = convert.add_subparsers(dest="subcommand")

        for name, help_text in (
            ("to-claim", "Tranche units to claim units"),
            ("to-tranches", "Claim units to tranche units"),
        ):
            cmd = convert_sub.add_parser(name, help=help_text)
            cmd.add_argument("--amount", "-a", type=int, required=True, help="Amount in base units")
            cmd.add_argument("--yield", "-y", dest="yield_", type=int, help="Yield (default 1.0)")
            cmd.add_argument("--price", "-p", type=int, help="Price (default 1.0)")

    def _register_config_commands(self) -> None:
        """Register config subcommands."""
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")

        # config get
        get = config_sub.add_parser("get", help="Get configuration value")
        get.add_argument("path", help="Config path (e.g., perp.min_tranche_maturity_sec)")

        # config set
        set_cmd = config_sub.add_parser("set", help="Set configuration value")
        set_cmd.add_argument("path", help="Config path")
        set_cmd.add_argument("value", help="Value to set")

        # config show
        config_sub.add_parser("show", help="Show all configuration")

        # config validate
        config_sub.add_parser("validate", help="Validate configuration")

        # config schema
        config_sub.add_parser("schema", help="Export configuration schema")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            fmt = OutputFormat(parsed.format)
            if parsed.config:
                from spot.config import get_config_manager
                get_config_manager().load_from_file(parsed.config)
            result = self._dispatch(parsed)

            if result is not None:
                print(format_output(result, fmt))

            return 0

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

        except Exception as e:
            if not parsed.quiet:
                print(f"Error: {type(e).__name__}: {e}", file=sys.stderr)
            return 1

    def _dispatch(self, args: argparse.Namespace) -> Any:
        """Dispatch command to handler."""
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)

        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name.replace("-", "_"), None)

        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}")

        return handler(args)

    # Simulation handlers
    def _handle_simulate(self, args: argparse.Namespace) -> Any:
        from spot.scenario import ScenarioError, ScenarioRunner
        try:
            report = ScenarioRunner.from_file(args.scenario).run()
        except ScenarioError as e:
            raise CLIError(str(e), exit_code=2) from e
        if args.steps_only:
            return report["steps"]
        return report

    def _handle_scenario_validate(self, args: argparse.Namespace) -> Any:
        from spot.scenario import ScenarioError, ScenarioRunner
        try:
            runner = ScenarioRunner.from_file(args.scenario)
        except ScenarioError as e:
            raise CLIError(str(e), exit_code=2) from e
        errors = runner.validate()
        if errors and args.quiet:
            raise CLIError("Scenario is invalid", exit_code=2)
        return {"valid": not errors, "errors": errors}

    # Conversion handlers
    def _conversion_factors(self, args: argparse.Namespace) -> tuple:
        from spot.config import get_config
        from spot.fixed_point import one
        perp = get_config().perp
        yield_decimals = perp.yield_decimals.get()
        price_decimals = perp.price_decimals.get()
        yield_ = args.yield_ if args.yield_ is not None else one(yield_decimals)
        price = args.price if args.price is not None else one(price_decimals)
        return yield_, price, yield_decimals, price_decimals

    def _handle_convert_to_claim(self, args: argparse.Namespace) -> Any:
        from spot.fixed_point import tranches_to_claim
        yield_, price, yd, pd = self._conversion_factors(args)
        return {
            "tranche_amt": args.amount,
            "claim_amt": tranches_to_claim(args.amount, yield_, price, yd, pd),
        }

    def _handle_convert_to_tranches(self, args: argparse.Namespace) -> Any:
        from spot.fixed_point import claim_to_tranches
        yield_, price, yd, pd = self._conversion_factors(args)
        return {
            "claim_amt": args.amount,
            "tranche_amt": claim_to_tranches(args.amount, yield_, price, yd, pd),
        }

    # Config handlers
    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from spot.config import get_config_manager
        mgr = get_config_manager()
        return {"path": args.path, "value": mgr.get(args.path)}

    def _handle_config_set(self, args: argparse.Namespace) -> Any:
        from spot.config import get_config_manager
        mgr = get_config_manager()
        mgr.set(args.path, args.value)
        return {"path": args.path, "value": mgr.get(args.path), "status": "updated"}

    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from spot.config import get_config_manager
        mgr = get_config_manager()
        return mgr.config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from spot.config import get_config_manager
        mgr = get_config_manager()
        errors = mgr.validate()
        return {"valid": len(errors) == 0, "errors": errors}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from spot.config import get_config_manager
        mgr = get_config_manager()
        return mgr.export_schema()


def main() -> int:
    """CLI entry point."""
    cli = SpotCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
