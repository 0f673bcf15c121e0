import os
import pathlib
import sys
from typing import Any, Callable, Dict, List, Optional

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import spot`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))

from spot.config import SpotConfig, get_config_manager  # noqa: E402
from spot.system import SpotSystem  # noqa: E402

# 1_700_000_000 % 1200 == 800: the first bond matures at T0 + 4000, inside
# the default [1200, 4800) window.
T0 = 1_700_000_000
ISSUE_INTERVAL = 1200


def _env_flag(name: str) -> bool:
    v = (os.environ.get(name) or '').strip().lower()
    return v in {'1', 'true', 'yes', 'y', 'on'}


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: slow correctness tests (skipped unless SPOT_RUN_SLOW=1)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    run_slow = _env_flag('SPOT_RUN_SLOW')

    for item in items:
        if 'slow' in item.keywords and not run_slow:
            item.add_marker(pytest.mark.skip(reason='slow tests skipped; set SPOT_RUN_SLOW=1 to enable'))


@pytest.fixture(autouse=True)
def _reset_config():
    """Every test starts from default configuration."""
    get_config_manager().reset()
    yield
    get_config_manager().reset()


@pytest.fixture
def make_system() -> Callable[..., SpotSystem]:
    """Factory for systems built from configuration overrides."""
    def _make(
        overrides: Optional[Dict[str, Any]] = None,
        pricing: str = "unit",
        yields: Optional[List[int]] = None,
        start_time: int = T0,
    ) -> SpotSystem:
        config = SpotConfig()
        config.apply(overrides or {})
        system = SpotSystem.from_config(config, start_time=start_time, pricing=pricing, yields=yields)
        system.issue()
        return system
    return _make


@pytest.fixture
def system(make_system) -> SpotSystem:
    return make_system()


def step(system: SpotSystem, seconds: int = ISSUE_INTERVAL) -> None:
    """Advance the clock one issue window and issue the next bond."""
    system.advance(seconds)
    system.issue()


def mint_perps(system: SpotSystem, account: str, amount: int) -> str:
    """Fund ``account``, tranche enough collateral and deposit ``amount`` seniors.

    Returns the senior tranche id deposited.
    """
    bond = system.perp.get_minting_bond()
    senior = bond.tranches[0]
    collateral = amount * 1000 // senior.ratio
    system.fund(account, collateral)
    system.factory.deposit(bond.bond_id, account, collateral)
    system.perp.deposit(account, senior.token_id, amount)
    return senior.token_id
