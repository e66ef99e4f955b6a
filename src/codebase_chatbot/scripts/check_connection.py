"""CLI helper that sends one request to the configured model server."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence, TextIO

from ..ai.client import ChatClient, ClientSettings
from ..ai.errors import ChatbotError
from ..services.settings import SettingsStore


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check that the language model server answers chat requests.")
    parser.add_argument("--endpoint", help="Endpoint URL; defaults to the configured endpoint.")
    parser.add_argument("--model", help="Model identifier; defaults to the configured model.")
    parser.add_argument("--prompt", default="Hello", help="Prompt text to send.")
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds.")
    parser.add_argument("--settings-path", type=Path, help="Settings file to read defaults from.")
    args = parser.parse_args(argv)

    settings = SettingsStore(args.settings_path).load()
    client_settings = ClientSettings(
        endpoint=args.endpoint or settings.endpoint,
        model=args.model or settings.model,
        request_timeout=args.timeout or settings.request_timeout,
    )
    print("Testing connection to LLM server...")
    return asyncio.run(check(client_settings, args.prompt))


async def check(
    settings: ClientSettings,
    prompt: str,
    *,
    client: ChatClient | None = None,
    out: TextIO | None = None,
    err: TextIO | None = None,
) -> int:
    """Send ``prompt`` and report the reply or the failure details."""

    stdout = out or sys.stdout
    stderr = err or sys.stderr
    active = client or ChatClient(settings)
    try:
        reply = await active.check_connection(prompt)
    except ChatbotError as exc:
        details = exc.to_dict()
        details["endpoint"] = settings.endpoint
        details["model"] = settings.model
        print("Error details:", json.dumps(details, indent=2), file=stderr)
        return 1
    finally:
        if client is None:
            await active.aclose()
    print(f"Response: {reply}", file=stdout)
    return 0


if __name__ == "__main__":  # pragma: no cover - manual invocation
    raise SystemExit(main())
