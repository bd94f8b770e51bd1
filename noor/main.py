import argparse
import logging
import sys

from noor.core.app import NoorApp

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'


def setup_basic_logging(level: str = "DEBUG") -> None:
    """Stdout logging until the config's logging section takes over"""
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.DEBUG))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='noor', description='Offline-first prayer times and adhan notifications')
    parser.add_argument('--config', help='Path to config file (default: ~/.noor/config.yaml)')
    parser.add_argument('--no-watch', action='store_true', help='Do not reload the config file when it changes')
    parser.add_argument('--log-level', default='DEBUG', help='Log level before the config is loaded')
    parser.add_argument('command', nargs='?', default='run', choices=['run', 'sync'],
                        help="'run' starts the dispatcher and API (default); 'sync' fetches today and tomorrow, then exits")
    return parser


def print_tables(tables) -> None:
    for day in sorted(tables):
        table = tables[day]
        flag = " (stale)" if table.stale else ""
        print(f"{day}  {table.hijri_date}{flag}")
        for name, hhmm in table.times.items():
            print(f"  {name:<8} {hhmm}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_basic_logging(args.log_level)

    if args.command == 'sync':
        app = NoorApp(config_path=args.config, watch_config=False)
        try:
            tables = app.sync_now()
        finally:
            app.shutdown()
        if not tables:
            logging.error("No prayer times could be synced")
            return 1
        print_tables(tables)
        return 0

    app = NoorApp(config_path=args.config, watch_config=not args.no_watch)
    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
