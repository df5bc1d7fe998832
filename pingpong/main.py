"""Main entry point for the pingpong metrics relay."""
import argparse
import logging
import sys

from pingpong.api import MetricsAPI
from pingpong.config import Config, load_config
from pingpong.registry import MetricRegistry


def setup_logging(log_level: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # Reduce noise from some libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="pingpong - create, update and expose counters over HTTP"
    )
    parser.add_argument("--config", "-c", help="Path to configuration YAML file")
    parser.add_argument("--port", type=int, help="HTTP port to listen on")
    parser.add_argument("--port-tls", type=int, help="HTTPS port to listen on")
    parser.add_argument("--key", help="TLS key file")
    parser.add_argument("--cert", help="TLS certificate file")
    parser.add_argument("--disable-tls", action="store_true", default=None, help="Disable HTTPS server")
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    return parser


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags win over the configuration file."""
    server = {
        "port": args.port,
        "port_tls": args.port_tls,
        "server_key": args.key,
        "server_cert": args.cert,
        "disable_tls": args.disable_tls,
    }
    server = {k: v for k, v in server.items() if v is not None}

    data = config.model_dump(by_alias=True)
    data["server"].update(server)
    if args.log_level:
        data["global"]["log_level"] = args.log_level
    return Config(**data)


def main(argv=None):
    """Main function."""
    args = build_parser().parse_args(argv)

    # Load configuration
    try:
        config = apply_overrides(load_config(args.config), args)
    except Exception as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config.global_.log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("pingpong metrics relay")
    logger.info("=" * 60)
    if args.config:
        logger.info(f"Configuration loaded from: {args.config}")
    logger.info(f"Starting metrics server with configuration: {config.server}")

    registry = MetricRegistry()
    api = MetricsAPI(registry)

    try:
        api.run(config.server)
    except Exception as e:
        logger.error(f"Server failed to start: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
