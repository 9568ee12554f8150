"""配置加载模块 - 从环境变量和 .env 文件加载配置。"""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class RunMode(str, Enum):
    """运行模式枚举。"""

    PAPER = "paper"  # 纸交易
    LIVE = "live"  # 实盘


class LogFormat(str, Enum):
    """日志格式枚举。"""

    JSON = "json"
    CONSOLE = "console"


class OracleSource(str, Enum):
    """概率来源枚举。"""

    FEED = "feed"  # 远程 oracle websocket 推送
    LOCAL = "local"  # 进程内 PriceOracle


class Settings(BaseSettings):
    """系统配置设置。

    从环境变量和 .env 文件加载配置。
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==================== 运行模式 ====================
    mode: RunMode = Field(default=RunMode.PAPER, description="运行模式: paper 或 live")
    oracle_source: OracleSource = Field(
        default=OracleSource.FEED,
        description="概率来源: feed (websocket) 或 local (进程内计算)",
    )

    # ==================== 交易场所网关 ====================
    venue_api_url: str = Field(default="", description="交易网关 REST 地址")
    venue_api_key: str = Field(default="", description="交易网关 API Key")
    venue_api_secret: str = Field(default="", description="交易网关 API Secret")
    venue_account: str = Field(default="", description="资金账户标识")
    venue_timeout: float = Field(default=10.0, gt=0, description="网关调用超时（秒）")

    # ==================== 数据流 ====================
    oracle_ws_url: str = Field(
        default="ws://localhost:5001",
        description="Oracle 概率推送 websocket 地址",
    )
    market_ws_url: str = Field(
        default="wss://ws-subscriptions-clob.polymarket.com/ws/market",
        description="盘口行情 websocket 地址",
    )
    reconnect_delay_s: float = Field(default=5.0, gt=0, le=120, description="断线重连间隔（秒）")

    # ==================== 标的发现 ====================
    discovery_url: str = Field(
        default="https://gamma-api.polymarket.com/markets",
        description="标的发现接口地址",
    )
    discovery_slug_prefix: str = Field(
        default="bitcoin-up-or-down",
        description="按小时生成的市场 slug 前缀",
    )
    discovery_keywords: list[str] = Field(
        default_factory=lambda: ["bitcoin", "btc"],
        description="回退搜索时匹配的关键词",
    )

    # ==================== 限流与重试 ====================
    api_min_interval_s: float = Field(default=0.1, ge=0, le=10, description="同类调用最小间隔（秒）")
    api_max_retries: int = Field(default=4, ge=0, le=10, description="最大重试次数")
    api_base_delay_s: float = Field(default=1.0, gt=0, le=60, description="退避基础延迟（秒）")
    api_max_delay_s: float = Field(default=16.0, gt=0, le=300, description="退避延迟上限（秒）")

    # ==================== 价格 Oracle ====================
    momentum_window_s: float = Field(default=60.0, gt=0, description="动量窗口（秒）")
    volatility_window_s: float = Field(default=300.0, gt=0, description="波动率窗口（秒）")
    oracle_update_interval_s: float = Field(default=1.0, gt=0, description="价格拉取间隔（秒）")
    oracle_history_size: int = Field(default=1000, ge=10, description="价格历史容量")
    momentum_scale: float = Field(
        default=100_000.0,
        gt=0,
        description="动量缩放系数（每秒相对斜率 → [-1, 1]）",
    )
    price_offset_tolerance_s: float = Field(
        default=30.0,
        gt=0,
        description="历史价格回看容差（秒）",
    )

    # ==================== Oracle 服务 ====================
    oracle_host: str = Field(default="0.0.0.0", description="Oracle 服务监听地址")
    oracle_port: int = Field(default=5001, ge=1, le=65535, description="Oracle 服务端口")
    oracle_broadcast_interval_s: float = Field(default=1.0, gt=0, description="广播间隔（秒）")

    # ==================== 盘口 ====================
    price_stale_s: float = Field(default=10.0, gt=0, description="行情过期阈值（秒）")
    min_liquidity_multiplier: float = Field(default=2.0, ge=1.0, le=20.0, description="最小流动性倍数")
    max_spread_percent: float = Field(default=3.0, gt=0, le=100, description="最大价差（百分比）")
    max_slippage: float = Field(default=0.01, gt=0, le=1.0, description="最大滑点（比例）")

    # ==================== 交易参数 ====================
    price_difference_threshold: float = Field(default=0.015, gt=0, le=1.0, description="最小边际")
    take_profit_amount: float = Field(default=0.01, gt=0, le=1.0, description="止盈偏移")
    stop_loss_amount: float = Field(default=0.005, gt=0, le=1.0, description="止损偏移")
    trade_cooldown_s: float = Field(default=30.0, ge=0, description="交易冷却时间（秒）")
    default_trade_amount: float = Field(default=5.0, gt=0, description="基础下单金额")
    minimum_balance: float = Field(default=500.0, ge=0, description="最低交易币余额")
    minimum_gas: float = Field(default=0.05, ge=0, description="最低 gas 余额")
    enable_dynamic_sizing: bool = Field(default=False, description="是否按信心动态调整仓位")
    entry_buffer_pct: float = Field(default=1.0, ge=0, le=10, description="入场价格缓冲（百分比）")
    settle_delay_s: float = Field(default=3.0, ge=0, le=60, description="入场后确认等待（秒）")
    min_price: float = Field(default=0.01, gt=0, lt=1, description="价格下限")
    max_price: float = Field(default=0.99, gt=0, lt=1, description="价格上限")

    # ==================== 信心权重 ====================
    weight_edge: float = Field(default=0.4, ge=0, le=1, description="边际强度权重")
    weight_spread: float = Field(default=0.2, ge=0, le=1, description="价差质量权重")
    weight_liquidity: float = Field(default=0.2, ge=0, le=1, description="流动性深度权重")
    weight_freshness: float = Field(default=0.2, ge=0, le=1, description="数据新鲜度权重")

    # ==================== 循环间隔 ====================
    evaluation_interval_s: float = Field(default=1.0, gt=0, description="机会扫描间隔（秒）")
    order_monitor_interval_s: float = Field(default=5.0, gt=0, description="OCO 监控间隔（秒）")
    trade_cleanup_interval_s: float = Field(default=300.0, gt=0, description="过期交易清理间隔（秒）")
    max_trade_age_s: float = Field(default=3600.0, gt=0, description="交易最长保留时间（秒）")
    balance_check_interval_s: float = Field(default=60.0, gt=0, description="余额巡检间隔（秒）")
    status_log_interval_s: float = Field(default=30.0, gt=0, description="状态日志间隔（秒）")

    # ==================== 纸交易 ====================
    paper_initial_balance: float = Field(default=1_000.0, ge=0, description="纸交易初始余额")
    paper_initial_gas: float = Field(default=1.0, ge=0, description="纸交易初始 gas")

    # ==================== 日志配置 ====================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="日志级别",
    )
    log_format: LogFormat = Field(
        default=LogFormat.CONSOLE,
        description="日志输出格式",
    )

    # ==================== 数据存储 ====================
    journal_dir: Path = Field(
        default=Path("data/journal"),
        description="交易日志存储目录",
    )

    @field_validator("journal_dir", mode="before")
    @classmethod
    def parse_journal_dir(cls, v: str | Path) -> Path:
        """将字符串转换为 Path 对象。"""
        return Path(v) if isinstance(v, str) else v

    def ensure_directories(self) -> None:
        """确保必要的目录存在。"""
        self.journal_dir.mkdir(parents=True, exist_ok=True)

    @property
    def is_paper_mode(self) -> bool:
        """是否为纸交易模式。"""
        return self.mode == RunMode.PAPER

    @property
    def is_live_mode(self) -> bool:
        """是否为实盘模式。"""
        return self.mode == RunMode.LIVE

    def validate_for_live(self) -> list[str]:
        """验证实盘模式的必要配置，返回缺失项列表。"""
        missing = []
        if not self.venue_api_url:
            missing.append("VENUE_API_URL")
        if not self.venue_api_key:
            missing.append("VENUE_API_KEY")
        if not self.venue_account:
            missing.append("VENUE_ACCOUNT")
        return missing


# 全局配置实例（延迟初始化）
_settings: Settings | None = None


def get_settings() -> Settings:
    """获取全局配置实例。"""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """重新加载配置。"""
    global _settings
    _settings = Settings()
    return _settings
