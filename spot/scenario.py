"""
Scenario Runner

Loads YAML scenarios, validates them against the JSON schemas shipped in
``spot/schemas`` and replays their steps against a fresh ``SpotSystem``.

A step may name the error it expects with ``expect_error`` (the exception
class name); the step then fails when that error is not raised.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import json
import pathlib
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Union

import yaml
from jsonschema import Draft202012Validator
from referencing import Registry, Resource
from referencing.jsonschema import DRAFT202012

from spot.config import SpotConfig
from spot.hardening import SpotError
from spot.observability import SpotLayer, get_logger, timed_operation
from spot.system import SpotSystem

logger = get_logger("scenario", SpotLayer.CLI)

SCHEMAS_DIR = pathlib.Path(__file__).resolve().parent / "schemas"
SCENARIO_SCHEMA = SCHEMAS_DIR / "scenario.schema.json"


class ScenarioError(SpotError):
    """Scenario is malformed or a step did not behave as expected."""
    pass


def load_yaml(path: pathlib.Path) -> Any:
    return yaml.safe_load(path.read_text(encoding="utf-8"))


def load_json(path: pathlib.Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


_SCHEMA_REGISTRIES: Dict[pathlib.Path, Registry] = {}


def schema_registry(schemas_dir: pathlib.Path = SCHEMAS_DIR) -> Registry:
    """In-memory registry of the schemas in ``schemas_dir`` keyed by ``$id``."""
    key = pathlib.Path(schemas_dir).resolve()
    cached = _SCHEMA_REGISTRIES.get(key)
    if cached is not None:
        return cached

    reg = Registry()
    for sp in sorted(key.glob("*.schema.json")):
        sj = load_json(sp)
        sid = sj.get("$id")
        if not sid or not isinstance(sid, str):
            raise ScenarioError(f"{sp.name}: schema has no $id")
        reg = reg.with_resource(sid, Resource.from_contents(sj, default_specification=DRAFT202012))

    _SCHEMA_REGISTRIES[key] = reg
    return reg


def schema_validator(schema_path: pathlib.Path = SCENARIO_SCHEMA) -> Draft202012Validator:
    schema = load_json(schema_path)
    return Draft202012Validator(schema, registry=schema_registry(pathlib.Path(schema_path).parent))


def validate_with_schema(obj: Any, validator: Draft202012Validator) -> List[str]:
    errors = []
    for e in sorted(validator.iter_errors(obj), key=str):
        errors.append(f"{list(e.absolute_path)}: {e.message}")
    return errors


@dataclass
class StepResult:
    index: int
    action: str
    label: str = ""
    result: Any = None
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v not in ("", None)}


class ScenarioRunner:
    """Replays a scenario against a fresh system."""

    def __init__(self, scenario: Dict[str, Any]):
        self.scenario = scenario
        self.system: Optional[SpotSystem] = None
        self._handlers: Dict[str, Callable[[SpotSystem, Dict[str, Any]], Any]] = {
            "issue": self._issue,
            "advance": lambda s, step: s.advance(step["seconds"]),
            "fund": lambda s, step: s.fund(step["account"], step["amount"]),
            "tranche": lambda s, step: s.tranche(step["account"], step["amount"]),
            "mature": lambda s, step: s.mature(),
            "perp_deposit": self._perp_deposit,
            "perp_redeem": self._perp_redeem,
            "perp_redeem_icebox": self._perp_redeem_icebox,
            "perp_rollover": self._perp_rollover,
            "perp_recover_matured": lambda s, step: s.perp.recover_matured(),
            "vault_deposit": lambda s, step: s.vault.deposit(step["account"], step["amount"]),
            "vault_redeem": lambda s, step: s.vault.redeem(step["account"], step["amount"]),
            "deploy": lambda s, step: s.vault.deploy(),
            "recover": lambda s, step: s.vault.recover(),
            "recover_asset": lambda s, step: s.vault.recover_asset(step["asset"]),
            "recover_and_redeploy": lambda s, step: s.vault.recover_and_redeploy(),
            "swap_underlying_for_perps": lambda s, step: s.vault.swap_underlying_for_perps(
                step["account"], step["amount"],
            ),
            "swap_perps_for_underlying": lambda s, step: s.vault.swap_perps_for_underlying(
                step["account"], step["amount"],
            ),
            "transfer": lambda s, step: s.ledger.transfer(
                step["token"], step["account"], step["to"], step["amount"],
            ),
            "set_fee": lambda s, step: s.fee_policy.update_fee(step["fee"], step["value"]),
        }

    @classmethod
    def from_file(cls, path: Union[str, pathlib.Path]) -> "ScenarioRunner":
        path = pathlib.Path(path)
        if not path.exists():
            raise ScenarioError(f"Scenario file not found: {path}")
        data = load_yaml(path)
        if not isinstance(data, dict):
            raise ScenarioError(f"Scenario must be a mapping: {path}")
        return cls(data)

    def validate(self) -> List[str]:
        return validate_with_schema(self.scenario, schema_validator())

    def build_system(self) -> SpotSystem:
        config = SpotConfig()
        config.apply(self.scenario.get("config", {}))
        system = SpotSystem.from_config(
            config,
            start_time=self.scenario.get("start_time", 0),
            pricing=self.scenario.get("pricing", "unit"),
            yields=self.scenario.get("yields"),
        )
        for account, amount in self.scenario.get("accounts", {}).items():
            system.fund(account, amount)
        return system

    @timed_operation(logger, "scenario.run")
    def run(self) -> Dict[str, Any]:
        """Validate, then run every step; returns step results and the final state."""
        errors = self.validate()
        if errors:
            raise ScenarioError("Scenario failed validation: " + "; ".join(errors))

        self.system = self.build_system()
        results = [self._run_step(i, step).to_dict() for i, step in enumerate(self.scenario["steps"])]
        logger.info("Scenario completed", scenario=self.scenario["name"], steps=len(results))
        return {
            "name": self.scenario["name"],
            "steps": results,
            "state": self.system.describe(),
        }

    def _run_step(self, index: int, step: Dict[str, Any]) -> StepResult:
        assert self.system is not None
        action = step["action"]
        outcome = StepResult(index=index, action=action, label=step.get("label", ""))
        expected = step.get("expect_error")
        try:
            outcome.result = self._handlers[action](self.system, step)
        except SpotError as e:
            if expected != type(e).__name__:
                raise ScenarioError(f"Step {index} ({action}) failed: {type(e).__name__}: {e}") from e
            outcome.error = type(e).__name__
            return outcome
        if expected:
            raise ScenarioError(f"Step {index} ({action}) expected {expected}, but succeeded")
        return outcome

    # -- step handlers --------------------------------------------------------

    def _issue(self, system: SpotSystem, step: Dict[str, Any]) -> Optional[str]:
        bond = system.issue()
        return bond.bond_id if bond else None

    def _tranche_id(self, system: SpotSystem, ref: Union[int, str]) -> str:
        if isinstance(ref, str):
            return ref
        bond = system.perp.get_minting_bond()
        if not 0 <= ref < len(bond.tranches):
            raise ScenarioError(f"Bond {bond.bond_id} has no seniority {ref}")
        return bond.tranches[ref].token_id

    def _perp_deposit(self, system: SpotSystem, step: Dict[str, Any]) -> Dict[str, int]:
        tranche = self._tranche_id(system, step["tranche"])
        minted, fee = system.perp.deposit(step["account"], tranche, step["amount"])
        return {"minted": minted, "fee": fee}

    def _perp_redeem(self, system: SpotSystem, step: Dict[str, Any]) -> Dict[str, Any]:
        burned, fee, payouts, remainder = system.perp.redeem(step["account"], step["amount"])
        return {"burned": burned, "fee": fee, "payouts": payouts, "remainder": remainder}

    def _perp_redeem_icebox(self, system: SpotSystem, step: Dict[str, Any]) -> Dict[str, Any]:
        burned, fee, payouts, remainder = system.perp.redeem_icebox(
            step["account"], step["asset"], step["amount"],
        )
        return {"burned": burned, "fee": fee, "payouts": payouts, "remainder": remainder}

    def _perp_rollover(self, system: SpotSystem, step: Dict[str, Any]) -> Dict[str, int]:
        tranche = self._tranche_id(system, step["tranche"])
        out, fee = system.perp.rollover(step["account"], tranche, step["token_out"], step["amount"])
        return {"token_out_amt": out, "fee": fee}
