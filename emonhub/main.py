import os
import sys
import json
import time
import argparse
import logging
from pathlib import Path
from typing import Optional

from emonhub.config import HubConfig, LoggingConfig
from emonhub.config_manager import ConfigurationManager
from emonhub.document_store import create_store
from emonhub.errors import ConfigError, EmonHubError
from emonhub.models import TimePeriod
from emonhub.mqtt import Mqtt, ReadingsFeed
from emonhub.pipeline import HistoricalPipeline
from emonhub.user_directory import StoreUserDirectory

log = logging.getLogger(__name__)


def _resolve_config_path(cli_path: Optional[str]) -> Path:
    """
    Resolve config path with the following precedence:
    1) CLI: --config /path/to/config.yaml
    2) ENV: EMONHUB_CONFIG=/path/to/config.yaml
    3) Default: <project_root>/config.yaml  (parent of the 'emonhub' package dir)
    """
    if cli_path:
        return Path(cli_path).expanduser().resolve()

    env = os.getenv("EMONHUB_CONFIG")
    if env:
        return Path(env).expanduser().resolve()

    return Path(__file__).resolve().parents[1] / "config.yaml"


def configure_logging(log_config: LoggingConfig) -> None:
    """Configure logging based on config settings."""
    root_logger = logging.getLogger()
    log_level = getattr(logging, log_config.level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if not root_logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(log_config.format))
        root_logger.addHandler(console_handler)

    logging.getLogger("emonhub").setLevel(log_level)
    # paho logs every packet at DEBUG
    logging.getLogger("paho").setLevel(logging.DEBUG if log_config.mqtt_debug else logging.WARNING)


def load_config(path) -> HubConfig:
    return ConfigurationManager(str(path)).load_config()


def build_pipeline(cfg: HubConfig, run_backfill: bool = True) -> HistoricalPipeline:
    store = create_store(cfg.store.backend, cfg.store.path)
    return HistoricalPipeline(
        store,
        StoreUserDirectory(store),
        aggregation=cfg.aggregation,
        default_timezone=cfg.timezone,
        run_backfill=run_backfill,
    )


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_run(cfg: HubConfig, args) -> int:
    if cfg.mqtt is None:
        raise ConfigError("The run command needs an 'mqtt' section in the configuration")
    if not cfg.users:
        raise ConfigError("The run command needs at least one user id under 'users'")

    pipeline = build_pipeline(cfg)
    client = Mqtt(cfg.mqtt)

    def on_snapshot(snapshot):
        for uid in cfg.users:
            tick = pipeline.on_readings(uid, snapshot)
            if tick is None or not cfg.mqtt.summary_topic:
                continue
            card = pipeline.summary(uid, TimePeriod.REALTIME)
            client.pub(cfg.mqtt.summary_topic.format(uid=uid), card.to_dict())

    feed = ReadingsFeed(client, cfg.mqtt.readings_topic, on_snapshot, debug=cfg.logging.mqtt_debug)
    feed.start()
    log.info(f"Processing live readings for {len(cfg.users)} user(s)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log.info("Interrupted by user")
    finally:
        client.stop()
    return 0


def cmd_backfill(cfg: HubConfig, args) -> int:
    pipeline = build_pipeline(cfg, run_backfill=False)
    tz = pipeline.timezone_for(args.user)
    reports = [pipeline.backfill.backfill_missing_daily(args.user, tz)]
    if args.total is not None:
        reports.append(pipeline.backfill.backfill_today_hourly_provisional(args.user, tz, args.total))
    _print_json([
        {
            "period": r.period_type.value,
            "created": r.created,
            "skipped": r.skipped,
            "missing_hourlies": r.missing_hourlies,
        }
        for r in reports
    ])
    return 0


def cmd_summary(cfg: HubConfig, args) -> int:
    pipeline = build_pipeline(cfg, run_backfill=False)
    _print_json(pipeline.summary(args.user, TimePeriod(args.period), args.date).to_dict())
    return 0


def cmd_chart(cfg: HubConfig, args) -> int:
    pipeline = build_pipeline(cfg, run_backfill=False)
    _print_json(pipeline.chart(args.user, TimePeriod(args.period), args.date).to_dict())
    return 0


def cmd_analytics(cfg: HubConfig, args) -> int:
    pipeline = build_pipeline(cfg, run_backfill=False)
    _print_json(pipeline.analytics(args.user, TimePeriod(args.period), args.date))
    return 0


def cmd_init_config(cfg: HubConfig, args) -> int:
    target = ConfigurationManager(args.output).save_config(cfg)
    print(f"Wrote {target}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="emonhub historical energy aggregation")
    parser.add_argument(
        "--config",
        help="Path to config.yaml (overrides EMONHUB_CONFIG and default).",
        required=False,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Subscribe to live readings and aggregate them")
    run.set_defaults(func=cmd_run)

    backfill = sub.add_parser("backfill", help="Rebuild missing daily records for a user")
    backfill.add_argument("--user", required=True)
    backfill.add_argument("--total", type=float, default=None,
                          help="Current total (kWh); also writes provisional records for today's hours")
    backfill.set_defaults(func=cmd_backfill)

    periods = [p.value for p in TimePeriod]
    for name, func, text in (("summary", cmd_summary, "Print the summary card"),
                             ("chart", cmd_chart, "Print the chart series"),
                             ("analytics", cmd_analytics, "Print rating, cost and recommendations")):
        p = sub.add_parser(name, help=text)
        p.add_argument("--user", required=True)
        p.add_argument("--period", choices=periods, default=TimePeriod.DAILY.value)
        p.add_argument("--date", default=None, help="Reference date YYYY-MM-DD")
        p.set_defaults(func=func)

    init = sub.add_parser("init-config", help="Write the effective configuration to a YAML file")
    init.add_argument("--output", default="config.yaml")
    init.set_defaults(func=cmd_init_config)
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(_resolve_config_path(args.config))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    configure_logging(cfg.logging)

    try:
        return args.func(cfg, args)
    except EmonHubError as e:
        log.error(f"{args.command} failed: {e}")
        return 1
    except Exception as e:
        log.error(f"Fatal error in {args.command}: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
