"""Run the document search tool against the hosted index from the command line."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import asdict

from docchat.document_search import create_document_search
from docchat.settings import load_settings


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("user_id")
    parser.add_argument("query")
    parser.add_argument("--message", help="Latest raw user message, searched alongside the query.")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    tool = create_document_search(load_settings())
    output = asyncio.run(tool.execute(args.user_id, args.query, user_message=args.message))
    print(json.dumps(asdict(output), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
