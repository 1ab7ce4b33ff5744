import asyncio

import click

from . import __version__
from .config import AppConfig, ConfigManager, SourceConfig


def _config_dir_option(func):
    return click.option(
        "--config-dir",
        type=click.Path(),
        default=None,
        help="配置文件目录"
    )(func)


def _load_config(config_manager: ConfigManager):
    if not config_manager.exists():
        click.echo("❌ 配置文件不存在，请先运行 'outage-monitor init'")
        return None
    return config_manager.load()


@click.group(name="outage-monitor", help="停电通知机器人")
def cli():
    pass


@cli.command(help="显示版本信息")
def version():
    click.echo(f"outage-monitor {__version__}")


@cli.command(help="交互式初始化配置")
@_config_dir_option
def init(config_dir):
    config_manager = ConfigManager(config_dir)

    click.echo("🚀 停电通知机器人 - 初始化配置\n")

    if config_manager.exists():
        existing = config_manager.load()
        click.echo("检测到已有配置：")
        click.echo(f"  Bot Token: {existing.bot_token[:10]}...{existing.bot_token[-5:]}")
        click.echo(f"  监控地点: {existing.source.my_place}")
        if not click.confirm("\n是否覆盖现有配置？", default=False):
            click.echo("已取消")
            return

    click.echo("\n1. Telegram Bot Token")
    click.echo("   从 @BotFather 获取你的 Bot Token")
    bot_token = click.prompt("   请输入 Bot Token", type=str)

    click.echo("\n2. 管理员 Chat ID（多个用逗号分隔）")
    admin_str = click.prompt("   请输入管理员 Chat ID", type=str, default="")
    try:
        admin_chat_ids = [int(x) for x in admin_str.replace(" ", "").split(",") if x]
    except ValueError:
        click.echo("❌ Chat ID 必须是数字")
        return

    defaults = SourceConfig()
    click.echo("\n3. 数据源")
    district = click.prompt("   区 (district)", type=str, default=defaults.district)
    places = click.prompt("   居民点 (places)", type=str, default=defaults.places)
    my_place = click.prompt("   匹配关键字", type=str, default=defaults.my_place)

    click.echo("\n4. 检查间隔")
    interval = click.prompt("   请输入检查间隔（小时，1-24）", type=click.IntRange(1, 24), default=6)

    config = AppConfig(
        bot_token=bot_token,
        admin_chat_ids=admin_chat_ids,
        default_interval_hours=interval,
        source=SourceConfig(district=district, places=places, my_place=my_place),
    )
    config_manager.save(config)

    click.echo(f"\n✅ 配置已保存到: {config_manager.config_path}")
    click.echo("\n使用 'outage-monitor run' 启动服务")


@cli.command(help="显示当前配置")
@_config_dir_option
def config(config_dir):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)
    if cfg is None:
        return

    click.echo("📋 当前配置：\n")
    click.echo(f"  Bot Token: {cfg.bot_token[:10]}...{cfg.bot_token[-5:]}")
    click.echo(f"  管理员: {', '.join(str(x) for x in cfg.admin_chat_ids) or '未配置'}")
    click.echo(f"  默认检查间隔: {cfg.default_interval_hours} 小时")
    click.echo(f"  只关注未来停电: {'是' if cfg.only_upcoming else '否'}")
    click.echo(f"  数据源: {cfg.source.base_url}")
    click.echo(f"  区 / 居民点: {cfg.source.district} / {cfg.source.places}")
    click.echo(f"  匹配关键字: {cfg.source.my_place}")
    click.echo(f"  查询范围: 最近 {cfg.source.lookback_days} 天")
    click.echo()
    click.echo(f"  配置文件: {config_manager.config_path}")
    click.echo(f"  数据库: {config_manager.db_path}")
    click.echo(f"  报告目录: {config_manager.reports_dir}")


@cli.command(name="db-version", help="查看数据库版本")
@_config_dir_option
def db_version(config_dir):
    """查看数据库版本"""
    config_manager = ConfigManager(config_dir)
    db_path = config_manager.get_db_path()

    if not db_path.exists():
        click.echo("❌ 数据库文件不存在")
        return

    from .migrations import get_schema_version, CURRENT_VERSION

    current = get_schema_version(db_path)
    click.echo("📊 数据库版本信息:")
    click.echo(f"   当前版本: v{current}")
    click.echo(f"   最新版本: v{CURRENT_VERSION}")
    click.echo(f"   数据库路径: {db_path}")

    if current < CURRENT_VERSION:
        click.echo("\n⚠️  需要迁移！请运行: outage-monitor db-migrate")
    else:
        click.echo("\n✅ 数据库已是最新版本")


@cli.command(name="db-migrate", help="执行数据库迁移")
@_config_dir_option
@click.option(
    "--yes", "-y",
    is_flag=True,
    help="跳过确认提示"
)
def db_migrate(config_dir, yes):
    """执行数据库迁移"""
    config_manager = ConfigManager(config_dir)
    db_path = config_manager.get_db_path()

    if not db_path.exists():
        click.echo("❌ 数据库文件不存在，无需迁移")
        return

    from .migrations import get_schema_version, migrate, CURRENT_VERSION

    current = get_schema_version(db_path)

    if current >= CURRENT_VERSION:
        click.echo(f"✅ 数据库已是最新版本 (v{current})")
        return

    click.echo("📊 数据库迁移:")
    click.echo(f"   当前版本: v{current}")
    click.echo(f"   目标版本: v{CURRENT_VERSION}")
    click.echo(f"   数据库路径: {db_path}")

    if not yes:
        click.echo("\n⚠️  建议先备份数据库:")
        click.echo("   outage-monitor backup")
        if not click.confirm("\n是否继续迁移？"):
            click.echo("已取消")
            return

    click.echo("\n开始迁移...")
    try:
        old_ver, new_ver = migrate(db_path)
        click.echo(f"\n✅ 迁移完成: v{old_ver} → v{new_ver}")
    except Exception as e:
        click.echo(f"\n❌ 迁移失败: {e}")
        raise


@cli.command(help="立即备份数据库")
@_config_dir_option
def backup(config_dir):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)
    if cfg is None:
        return
    if not config_manager.db_path.exists():
        click.echo("❌ 数据库文件不存在")
        return

    from .backup import BackupManager

    manager = BackupManager(config_manager.db_path, config_manager.backups_dir, keep=cfg.backup_keep)
    path = manager.create()
    click.echo(f"✅ 备份完成: {path}")


@cli.command(help="执行一次检查")
@_config_dir_option
@click.option(
    "--dry-run",
    is_flag=True,
    help="只拉取并打印数据，不写库、不通知"
)
def check(config_dir, dry_run):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)
    if cfg is None:
        return

    from .app import Application, observe_once, setup_logging
    setup_logging()

    if dry_run:
        records = observe_once(cfg)
        click.echo(f"📋 当前停电记录 {len(records)} 条:\n")
        for r in records:
            click.echo(f"  • {r.place} | {r.date_from} → {r.date_to} | {r.addresses}")
        return

    from .database import Database

    app = Application(config=cfg, db=Database(config_manager.get_db_path()), config_manager=config_manager)
    result = asyncio.run(app.check_once())
    if result.error:
        click.echo(f"❌ 检查失败: {result.error}")
        return
    click.echo(f"✅ 拉取 {result.fetched} 条, 当前 {result.current} 条, 有变化: {'是' if result.changed else '否'}")
    if result.tally:
        click.echo(f"   通知: 成功 {result.tally.success_count}/{result.tally.total}")


@cli.command(help="启动监控服务")
@_config_dir_option
def run(config_dir):
    config_manager = ConfigManager(config_dir)
    cfg = _load_config(config_manager)
    if cfg is None:
        return

    # 检查数据库版本
    db_path = config_manager.get_db_path()
    if db_path.exists():
        from .migrations import check_migration_needed
        needs_migration, current_ver, latest_ver = check_migration_needed(db_path)
        if needs_migration:
            click.echo(f"❌ 数据库版本过旧 (v{current_ver})，需要迁移到 v{latest_ver}")
            click.echo(f"   请先运行: outage-monitor db-migrate --config-dir {config_dir or '.'}")
            return

    # 配置日志（输出到 stdout + 文件）
    from .app import Application, setup_logging
    setup_logging(config_manager.log_dir)

    if not cfg.admin_chat_ids:
        click.echo("⚠️ 未配置管理员，管理命令将不可用")

    click.echo("🚀 启动停电监控服务...")
    click.echo(f"   监控地点: {cfg.source.my_place}")
    click.echo(f"   日志目录: {config_manager.log_dir}\n")

    from .database import Database

    app = Application(config=cfg, db=Database(db_path), config_manager=config_manager)
    app.run()
