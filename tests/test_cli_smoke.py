from click.testing import CliRunner

from oracle_trader import __version__
from oracle_trader.app import StartupError
from oracle_trader.main import cli


class _FakeApp:
    fail = False

    def __init__(self, settings: object) -> None:
        self.settings = settings

    async def run_forever(self) -> None:
        if self.fail:
            raise StartupError("insufficient_balance")


def test_cli_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_run_smoke(monkeypatch: object) -> None:
    monkeypatch.setattr("oracle_trader.main.TradingApp", _FakeApp)
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["run"])
    assert result.exit_code == 0


def test_cli_run_startup_failure_exits_nonzero(monkeypatch: object) -> None:
    monkeypatch.setattr(_FakeApp, "fail", True)
    monkeypatch.setattr("oracle_trader.main.TradingApp", _FakeApp)
    runner = CliRunner()
    with runner.isolated_filesystem():
        result = runner.invoke(cli, ["run"])
    assert result.exit_code == 1


def test_cli_status() -> None:
    result = CliRunner().invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "Edge threshold" in result.output
