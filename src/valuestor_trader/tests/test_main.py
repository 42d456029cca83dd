from __future__ import annotations

import json
import signal
from pathlib import Path
from types import SimpleNamespace
from typing import List

import pytest

from valuestor_trader import main as entrypoint
from valuestor_trader.config import settings
from valuestor_trader.datalake.storage import SQLiteStateStore
from valuestor_trader.errors import StorageError


@pytest.fixture
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    for name in ("BOT_MODE", "DRY_RUN", "PRIVATE_KEY", "OPENAI_API_KEY", "REASONING__API_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("APP_CONFIG_FILE", str(tmp_path / "missing.toml"))
    database = tmp_path / "state.sqlite3"
    monkeypatch.setenv("STORAGE__DATABASE_PATH", str(database))
    monkeypatch.setattr(entrypoint, "bootstrap_observability", lambda config=None: None)
    settings.get_app_config.cache_clear()
    yield database
    settings.get_app_config.cache_clear()


def test_run_refuses_to_start_without_reasoning_key(cli_env: Path) -> None:
    assert entrypoint.main(["run"]) == 1


def test_live_run_refuses_to_start_without_private_key(
    monkeypatch: pytest.MonkeyPatch, cli_env: Path
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("DRY_RUN", "false")
    assert entrypoint.main(["run"]) == 1


def test_portfolio_advice_for_unknown_holder_fails(monkeypatch: pytest.MonkeyPatch, cli_env: Path) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert entrypoint.main(["portfolio-advice", "0xnobody"]) == 1


def test_portfolio_advice_without_positions(
    monkeypatch: pytest.MonkeyPatch, cli_env: Path, make_holder, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    SQLiteStateStore(cli_env).upsert_profile(make_holder("0xholder"))

    assert entrypoint.main(["portfolio-advice", "0xholder"]) == 0

    advice = json.loads(capsys.readouterr().out)
    assert advice == {"recommendations": [], "overallPortfolioHealth": "no open positions"}


def test_malformed_slippage_is_refused_instead_of_crashing(
    monkeypatch: pytest.MonkeyPatch, cli_env: Path
) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("MAX_SLIPPAGE", "lots")
    assert entrypoint.main(["run"]) == 1
    assert entrypoint.main(["portfolio-advice", "0xholder"]) == 1


class SignallingGateway:
    """Subscribes like the chain gateway, then delivers SIGTERM to the process."""

    def __init__(self) -> None:
        self.unsubscribed: List[str] = []
        self.closed = False

    def _unsubscriber(self, name: str):
        return lambda: self.unsubscribed.append(name)

    def subscribe_issuance_created(self, callback):
        return self._unsubscriber("issuances")

    def subscribe_trade_executed(self, callback):
        signal.raise_signal(signal.SIGTERM)
        return self._unsubscriber("trades")

    async def wait_closed(self) -> None:
        self.closed = True


class ClosingReasoning:
    def __init__(self) -> None:
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


def test_run_shuts_down_cleanly_on_sigterm(monkeypatch: pytest.MonkeyPatch, cli_env: Path) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    gateway = SignallingGateway()
    reasoning = ClosingReasoning()
    opened: List[SQLiteStateStore] = []

    def build_services(config, store):
        opened.append(store)
        return SimpleNamespace(
            store=store,
            gateway=gateway,
            reasoning=reasoning,
            orchestrator=SimpleNamespace(on_issuance=_ignore, on_trade=_ignore),
        )

    monkeypatch.setattr(entrypoint, "build_services", build_services)

    assert entrypoint.main(["run", "--dry-run"]) == 0

    assert sorted(gateway.unsubscribed) == ["issuances", "trades"]
    assert gateway.closed is True
    assert reasoning.closed is True
    with pytest.raises(StorageError):
        opened[0].ping()


async def _ignore(event) -> None:
    return None
