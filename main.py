from __future__ import annotations

import asyncio
import json
import os
import sys

from dashlink.client import create_client
from dashlink.env import Settings, load_env, setup_logging
from dashlink.errors import ClassifiedError, describe


async def run_query(document: str, variables: dict | None = None) -> dict | None:
    settings = Settings.from_env()
    async with create_client(settings) as client:
        if client.store.get().is_empty:
            username = os.getenv("DASHLINK_USERNAME", "").strip()
            password = os.getenv("DASHLINK_PASSWORD", "")
            if not username:
                raise RuntimeError(
                    "No stored session; set DASHLINK_USERNAME and DASHLINK_PASSWORD to sign in."
                )
            await client.sign_in(username, password)
        return await client.query(document, variables)


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        print("usage: dashlink QUERY [VARIABLES_JSON]", file=sys.stderr)
        return 2

    load_env()
    setup_logging()

    variables = json.loads(args[1]) if len(args) > 1 else None
    try:
        result = asyncio.run(run_query(args[0], variables))
    except ClassifiedError as error:
        print(describe(error), file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
