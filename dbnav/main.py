import argparse
import logging

from dbnav.config import (
    add_connection,
    ConnectionConfig,
    load_config,
    log_path,
    save_config,
)
from dbnav.tui import DatabaseNavigatorApp


def _configure_logging(debug: bool) -> None:
    path = log_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=path,
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main() -> None:
    parser = argparse.ArgumentParser(prog="dbnav")
    subparsers = parser.add_subparsers(dest="command")

    add_parser = subparsers.add_parser("add-connection")
    add_parser.add_argument("--name", required=True)
    add_parser.add_argument("--url", required=True)

    parser.add_argument("--conn")
    parser.add_argument("--debug", action="store_true")

    args = parser.parse_args()
    _configure_logging(args.debug)

    if args.command == "add-connection":
        config = load_config()
        try:
            updated = add_connection(
                config,
                ConnectionConfig(name=args.name, url=args.url),
            )
        except ValueError as error:
            parser.exit(1, f"{error}\n")
        save_config(updated)
        print(f"Saved connection: {args.name}")
        return

    config = load_config()
    app = DatabaseNavigatorApp(config, initial_connection_name=args.conn)
    app.run()


if __name__ == "__main__":
    main()
