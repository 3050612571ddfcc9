"""CLI entry point for the Pitchside booking agent.

A terminal chat for trying the agent without WhatsApp.  Bookings go to
PostgreSQL when ``DATABASE_URL`` is set, otherwise to an in-memory store.
For production, use the FastAPI server (src/server.py).

Usage:
    python -m src.main                      # normal mode (quiet)
    python -m src.main --debug              # debug mode (shows API calls)
    python -m src.main --provider gemini    # override LLM_PROVIDER
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from dotenv import load_dotenv

from src.agent import create_booking_agent
from src.providers import create_provider

logger = logging.getLogger(__name__)

CLI_ACCOUNT_ID = "cli"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


async def _chat(provider_name: str | None, user_id: str) -> None:
    agent = await create_booking_agent(create_provider(provider_name))
    tenant_id = await agent.bookings.store.get_or_create_tenant(CLI_ACCOUNT_ID)
    logger.info("Started session for %s (tenant %d)", user_id, tenant_id)

    try:
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "Sen: ")).strip()
            except (KeyboardInterrupt, EOFError):
                print("\n\nGörüşmek üzere!")
                break

            if not user_input:
                continue

            if user_input.lower() in ("exit", "quit", "q", "çıkış"):
                print("\nGörüşmek üzere!")
                break

            if user_input.lower() in ("new", "yeni"):
                await agent.reset_session(tenant_id, user_id)
                print("\n>> Yeni oturum başlatıldı.\n")
                continue

            reply = await agent.handle_message(tenant_id, user_id, user_input)
            print(f"\nAsistan: {reply.text}\n")
            if reply.images:
                print(f"   ({len(reply.images)} görsel eklendi)\n")
    finally:
        await agent.aclose()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Pitchside booking agent CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--provider", choices=("openai", "gemini", "anthropic"), default=None,
        help="LLM backend (defaults to LLM_PROVIDER)",
    )
    parser.add_argument(
        "--user", default="905000000000",
        help="Sender id to chat as",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Pitchside - Halı Saha Rezervasyon Asistanı")
    print("=" * 60)
    print("  Mesajınızı yazıp Enter'a basın.")
    print("  Komutlar: 'quit' çıkış, 'new' yeni oturum.")
    print("=" * 60 + "\n")

    try:
        asyncio.run(_chat(args.provider, args.user))
    except KeyboardInterrupt:
        print("\n\nGörüşmek üzere!")


if __name__ == "__main__":
    main()
