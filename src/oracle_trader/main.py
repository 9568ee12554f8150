"""CLI 入口模块 - Oracle Trader 命令行接口。"""

import asyncio
import signal
import sys
from pathlib import Path

import click
import httpx

from oracle_trader import __version__
from oracle_trader.app import StartupError, TradingApp
from oracle_trader.config import Settings, get_settings
from oracle_trader.oracle.price_oracle import PriceOracle
from oracle_trader.oracle.server import OracleFeedServer
from oracle_trader.oracle.sources import default_sources
from oracle_trader.runtime.clock import SystemClock
from oracle_trader.runtime.scheduler import Scheduler
from oracle_trader.utils.logging import get_logger, setup_logging


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="显示版本号")
@click.pass_context
def cli(ctx: click.Context, version: bool) -> None:
    """Oracle Trader - 多源价格预言机与盘口边际交易系统。

    以多个现货价格源估计短周期涨跌概率，与盘口价格比较，
    出现足够边际时入场并挂出止盈/止损 OCO 订单。
    """
    if version:
        click.echo(f"oracle-trader version {__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def run() -> None:
    """启动交易引擎。

    余额检查 → 标的发现 → 连接行情/预言机 → 扫描机会 → 执行/监控
    使用 Ctrl+C 停止。
    """
    setup_logging()
    logger = get_logger("oracle_trader.main")
    settings = get_settings()

    # 确保目录存在
    settings.ensure_directories()

    logger.info("starting_engine", mode=settings.mode.value, oracle=settings.oracle_source.value)

    try:
        asyncio.run(TradingApp(settings).run_forever())
    except StartupError as e:
        logger.error("startup_failed", error=str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("engine_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("engine_failed", error=str(e))
        sys.exit(1)


@cli.command()
@click.option("--port", "-p", type=int, default=None, help="监听端口（默认读取配置）")
def oracle(port: int | None) -> None:
    """启动价格预言机广播服务。"""
    setup_logging()
    logger = get_logger("oracle_trader.main")
    settings = get_settings()
    if port is not None:
        settings = settings.model_copy(update={"oracle_port": port})

    try:
        asyncio.run(_serve_oracle(settings))
    except KeyboardInterrupt:
        logger.info("oracle_interrupted", message="User interrupted")
        sys.exit(0)
    except Exception as e:
        logger.exception("oracle_failed", error=str(e))
        sys.exit(1)


async def _serve_oracle(settings: Settings) -> None:
    clock = SystemClock()
    scheduler = Scheduler(clock)
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_requested.set)

    async with httpx.AsyncClient(timeout=settings.venue_timeout) as client:
        price_oracle = PriceOracle.from_settings(
            settings, default_sources(client), scheduler=scheduler, clock=clock
        )
        server = OracleFeedServer.from_settings(settings, price_oracle, scheduler=scheduler, clock=clock)
        # 预热阶段需要调度器已在运行
        scheduler.start()
        try:
            await server.start()
            await stop_requested.wait()
        finally:
            await server.stop()
            await scheduler.shutdown()


@cli.command()
def status() -> None:
    """显示系统状态和配置摘要。"""
    setup_logging()
    settings = get_settings()

    click.echo("=" * 50)
    click.echo("Oracle Trader - Status")
    click.echo("=" * 50)
    click.echo()

    # 运行模式
    mode_marker = "[PAPER]" if settings.is_paper_mode else "[LIVE]"
    mode_text = "Paper Trading" if settings.is_paper_mode else "Live Trading"
    click.echo(f"{mode_marker} Mode: {mode_text}")
    click.echo(f"   Oracle source: {settings.oracle_source.value}")
    click.echo()

    # 接入配置
    click.echo("[Connectivity]")
    venue_status = "[OK] Configured" if settings.venue_api_key else "[--] Not configured"
    click.echo(f"   Venue API: {venue_status}")
    click.echo(f"   Oracle feed: {settings.oracle_ws_url}")
    click.echo(f"   Market feed: {settings.market_ws_url}")
    click.echo(f"   Discovery: {settings.discovery_url} ({settings.discovery_slug_prefix})")
    click.echo()

    # 交易参数
    click.echo("[Trading Parameters]")
    click.echo(f"   Edge threshold: {settings.price_difference_threshold}")
    click.echo(f"   Trade amount: {settings.default_trade_amount}")
    click.echo(f"   Take profit / stop loss: +{settings.take_profit_amount} / -{settings.stop_loss_amount}")
    click.echo(f"   Cooldown: {settings.trade_cooldown_s}s")
    click.echo(f"   Dynamic sizing: {'Yes' if settings.enable_dynamic_sizing else 'No'}")
    click.echo(f"   Min balance / gas: {settings.minimum_balance} / {settings.minimum_gas}")
    click.echo()

    # 盘口与限流
    click.echo("[Market Guards]")
    click.echo(f"   Stale after: {settings.price_stale_s}s")
    click.echo(f"   Max spread: {settings.max_spread_percent}%")
    click.echo(f"   Max slippage: {settings.max_slippage * 100:.2f}%")
    click.echo(f"   Liquidity multiplier: {settings.min_liquidity_multiplier}x")
    click.echo(f"   Retries: {settings.api_max_retries} (base {settings.api_base_delay_s}s, cap {settings.api_max_delay_s}s)")
    click.echo()

    # 日志配置
    click.echo("[Logging]")
    click.echo(f"   Log level: {settings.log_level}")
    click.echo(f"   Log format: {settings.log_format.value}")
    click.echo(f"   Journal dir: {settings.journal_dir}")
    click.echo()

    # 验证状态
    if settings.is_live_mode:
        missing = settings.validate_for_live()
        if missing:
            click.echo("[ERROR] Live mode configuration incomplete, missing:")
            for key in missing:
                click.echo(f"   - {key}")
        else:
            click.echo("[OK] Live mode configuration complete")
    else:
        click.echo("[INFO] Paper mode does not require venue credentials")

    click.echo()
    click.echo("=" * 50)


@cli.command()
def check() -> None:
    """检查系统依赖和配置。"""
    setup_logging()
    logger = get_logger("oracle_trader.main")

    click.echo("Checking system dependencies...")
    click.echo()

    all_ok = True

    # 检查必要的包
    packages = [
        ("pydantic", "Configuration validation"),
        ("pydantic_settings", "Settings loading"),
        ("httpx", "HTTP client"),
        ("websockets", "Streaming feeds"),
        ("numpy", "Numerical computing"),
        ("structlog", "Structured logging"),
        ("click", "CLI framework"),
        ("tenacity", "Retry mechanism"),
    ]

    for pkg_name, desc in packages:
        try:
            __import__(pkg_name)
            click.echo(f"  [OK] {pkg_name} - {desc}")
        except ImportError:
            click.echo(f"  [MISSING] {pkg_name} - {desc}")
            all_ok = False

    click.echo()

    # 检查配置文件
    env_file = Path(".env")
    if env_file.exists():
        click.echo("  [OK] .env configuration file exists")
    else:
        click.echo("  [WARN] .env file not found (using defaults)")

    click.echo()

    if all_ok:
        click.echo("[OK] All dependency checks passed")
    else:
        click.echo("[ERROR] Some dependencies missing. Run: pip install -e .")

    logger.info("dependency_check_completed", all_ok=all_ok)


# 支持 python -m oracle_trader.main 调用
if __name__ == "__main__":
    cli()
