"""CardDAV bridge command-line tool."""

import argparse
import sys


def main() -> None:
    """Main entry point for the CardDAV bridge."""
    parser = argparse.ArgumentParser(
        description="CardDAV bridge for ProtonMail contacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start the bridge with the session from the environment
  PROTON_UID=... PROTON_ACCESS_TOKEN=... PROTON_PRIVATE_KEY=key.asc pm-carddav

  # Listen on another port and poll events every minute
  pm-carddav --port 8081 --poll-interval 60

Environment:
  PROTON_UID, PROTON_ACCESS_TOKEN  session of an already logged-in user
  PROTON_PRIVATE_KEY               path to the armored private key
  PROTON_KEY_PASSPHRASE            passphrase of the private key
  PROTON_API_URL                   API base URL
  PROTON_APP_VERSION               value of the x-pm-appversion header

Endpoints:
  - CardDAV: http://localhost:PORT/.well-known/carddav
        """,
    )
    parser.add_argument(
        "--addr",
        default="127.0.0.1",
        help="listening address (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8080,
        help="listening port (default: 8080)",
    )
    parser.add_argument(
        "--no-events",
        action="store_true",
        help="do not poll upstream events (the cache is then only filled by requests)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="seconds between event polls (default: 30)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="log level (default: INFO)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="enable debug logging (logs request/response bodies with formatted XML)",
    )

    args = parser.parse_args()

    from pm_carddav.debug import setup_debug_logging, setup_logging

    if args.debug:
        setup_debug_logging()
    else:
        setup_logging(args.log_level)

    from pm_carddav.carddav import ProtonCardDAVBackend
    from pm_carddav.config import BridgeConfig
    from pm_carddav.errors import CryptoError
    from pm_carddav.protonmail import EventPoller, Keyring, ProtonClient
    from pm_carddav.server import create_app

    config = BridgeConfig()
    if args.poll_interval is not None:
        config.poll_interval = args.poll_interval

    if not config.uid or not config.access_token:
        print("Error: PROTON_UID and PROTON_ACCESS_TOKEN must be set", file=sys.stderr)
        sys.exit(1)
    if not config.private_key_file:
        print("Error: PROTON_PRIVATE_KEY must be set", file=sys.stderr)
        sys.exit(1)

    try:
        keyring = Keyring.from_file(config.private_key_file, config.key_passphrase)
    except (OSError, CryptoError) as e:
        print(f"Error: cannot load private key: {e}", file=sys.stderr)
        sys.exit(1)

    client = ProtonClient(config, debug=args.debug)

    poller = None
    events = None
    if not args.no_events:
        poller = EventPoller(client, interval=config.poll_interval)
        events = poller.subscribe()

    backend = ProtonCardDAVBackend(client, keyring, events=events)
    app = create_app(backend, poller=poller, debug=args.debug)

    # Run with uvicorn
    import uvicorn

    print(f"CardDAV bridge listening on {args.addr}:{args.port}")
    print(f"CardDAV: http://{args.addr}:{args.port}/.well-known/carddav")
    if poller is None:
        print("Event polling disabled")

    uvicorn.run(
        app,
        host=args.addr,
        port=args.port,
        log_level=args.log_level.lower(),
    )


if __name__ == "__main__":
    main()
