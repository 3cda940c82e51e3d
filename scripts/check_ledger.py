import argparse
import logging
import pathlib
import sys
from dataclasses import replace

ROOT = pathlib.Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from src.app.config import settings
from src.app.infra.ledger.web3_client import Web3LedgerClient
from src.app.services.recipe_hash import generate_recipe_hash

SAMPLE_RECIPE = {
    "title": "Test Recipe",
    "summary": "A recipe used to check the ledger connection",
    "ingredients": [{"name": "flour", "amount": "200", "unit": "g"}],
    "steps": [{"order": 1, "description": "Mix everything"}],
    "tags": ["test"],
    "servings": 1,
}


def main() -> int:
    parser = argparse.ArgumentParser(description="Ledger connection smoke test")
    parser.add_argument("--node-url", default=None, help="Override LEDGER_NODE_URL")
    parser.add_argument(
        "--register",
        metavar="WALLET",
        default=None,
        help="Also register the sample hash for this author wallet",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s [%(name)s] %(message)s")

    config = settings.ledger()
    if args.node_url:
        config = replace(config, node_url=args.node_url)

    print("config:", config)
    check = config.validate()
    for error in check.errors:
        print("config error:", error)
    for warning in check.warnings:
        print("config warning:", warning)

    client = Web3LedgerClient(config)
    try:
        status = client.check_connection()
        print("connected:", status.connected)
        if not status.success:
            print("error:", status.error)
            return 1
        print("network_id:", status.network_id, "chain_id:", status.chain_id)

        init = client.initialize()
        print("initialized:", init.success)
        if not init.success:
            print("error:", init.error)
            return 1
        print("account:", init.account)
        print("contract:", init.contract_address or "-")

        recipe_hash = generate_recipe_hash(SAMPLE_RECIPE)
        print("sample hash:", recipe_hash)

        if args.register:
            result = client.register_recipe_hash(recipe_hash, args.register)
            print("register success:", result.success)
            if result.success:
                print("tx:", result.transaction_hash, "block:", result.block_number, "gas:", result.gas_used)
            else:
                print("error:", result.error, "kind:", result.failure.kind.value if result.failure else None)

        lookup = client.get_recipe_info(recipe_hash)
        if not lookup.success:
            print("lookup error:", lookup.error)
        else:
            print("exists:", lookup.exists)
            if lookup.exists:
                print("author:", lookup.author, "timestamp:", lookup.timestamp)
                print("tx:", lookup.transaction_hash, "block:", lookup.block_number)
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
