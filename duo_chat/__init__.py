import argparse
import logging

from duo_chat.server.logger import setup_logging
from duo_chat.server.server import run_server
from duo_chat.client.client import Client


def main():
    parser = argparse.ArgumentParser(description="Two-party real-time chat")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_p = subparsers.add_parser("serve", help="Run server")
    serve_p.add_argument("ip_address", nargs="?")
    serve_p.add_argument("port", nargs="?", type=int)
    serve_p.add_argument("--data-dir", "-d", help="Directory for users.json and messages.json")
    serve_p.add_argument("--verbose", "-v", action="store_true")

    connect_p = subparsers.add_parser("connect", help="Connect to server")
    connect_p.add_argument("ip_address")
    connect_p.add_argument("port")
    connect_p.add_argument("username")
    connect_p.add_argument("password")

    args = parser.parse_args()

    if args.command == "serve":
        setup_logging(logging.DEBUG if args.verbose else logging.INFO)
        run_server(host=args.ip_address, port=args.port, data_dir=args.data_dir)
    elif args.command == "connect":
        Client(
            server=args.ip_address,
            port=int(args.port),
            username=args.username,
            password=args.password,
        ).run()


if __name__ == "__main__":
    main()
