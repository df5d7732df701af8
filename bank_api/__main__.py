#!/usr/bin/env python3
"""
Bank API entry point

Run with: python -m bank_api [--seed]
"""

import argparse
import logging
import sys

import uvicorn

from .accounts import Account, open_account
from .api import create_app
from .auth import BankSystem
from .config import get_config
from .errors import BankAPIError
from .logging_config import setup_logging
from .storage import AccountStore

logger = logging.getLogger("bank_api.main")


def seed_account(store: AccountStore, first_name: str, last_name: str, password: str) -> Account:
    """Create one demo account and log its number"""
    account = open_account(store, first_name, last_name, password)
    logger.info("Seeded account id=%s number=%s", account.id, account.number)
    return account


def seed_accounts(store: AccountStore) -> None:
    seed_account(store, "Demo", "Holder", "hello123")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="bank_api", description="Run the Bank API server")
    parser.add_argument("--seed", action="store_true", help="seed the database")
    parser.add_argument("--host", help="bind address (overrides BANK_API_HOST)")
    parser.add_argument("--port", type=int, help="listen port (overrides BANK_API_PORT)")
    args = parser.parse_args(argv)

    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    try:
        system = BankSystem(config)
    except BankAPIError as e:
        logger.error("Cannot initialize storage: %s", e)
        return 1

    try:
        if args.seed:
            logger.info("Seeding the database")
            seed_accounts(system.store)

        host = args.host or config.api_host
        port = args.port or config.api_port
        logger.info("JSON API server running on %s:%s", host, port)
        uvicorn.run(create_app(system), host=host, port=port, log_level=config.log_level.lower())
    finally:
        system.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
