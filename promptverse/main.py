"""Main entry point for the PromptVerse MCP server."""
import asyncio

from promptverse.server import main


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
