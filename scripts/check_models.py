#!/usr/bin/env python3
"""
Model Connectivity Check - probes every configured key/model pair

Sends a tiny prompt to each provider the dispatcher would try, in the same
order, and reports which ones answer. Useful when a key has hit its quota
or a model name has been retired.

Usage:
    python scripts/check_models.py
    python scripts/check_models.py --models gemini-2.0-flash,gemini-2.5-flash
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from career_coach_api.config import get_settings  # noqa: E402
from career_coach_api.dispatcher import build_providers  # noqa: E402
from career_coach_api.gemini_client import (  # noqa: E402
    GeminiClient,
    GeminiError,
    GeminiModelNotFoundError,
    GeminiRateLimitError,
)

PROBE_PROMPT = "Hello, strictly return just the word 'OK'."


async def check_models(models: list[str]) -> int:
    """Probe each provider; returns the number of providers that answered."""
    settings = get_settings()
    keys = settings.api_keys
    if not keys:
        print("❌ No API key found. Set GEMINI_API_KEY or GEMINI_API_KEYS.")
        return 0

    providers = build_providers(keys, models)
    print(f"\n🔍 Testing {len(providers)} provider(s) ({len(keys)} key(s) x {len(models)} model(s))\n")

    working = 0
    async with GeminiClient(mock=False) as client:
        for provider in providers:
            label = f"{provider.label} (...{provider.api_key[-4:]})"
            try:
                response = await client.generate(provider.api_key, provider.model, PROBE_PROMPT)
            except GeminiRateLimitError:
                print(f"⏳ {label:<50} 429 Too Many Requests (rate limit)")
                continue
            except GeminiModelNotFoundError:
                print(f"❌ {label:<50} 404 Not Found (model missing or not accessible)")
                continue
            except GeminiError as e:
                print(f"❌ {label:<50} {str(e).splitlines()[0][:100]}")
                continue

            working += 1
            print(f"✅ {label:<50} \"{response.content.strip()[:40]}\"")

    print(f"\n{working}/{len(providers)} provider(s) answered")
    return working


def main() -> None:
    parser = argparse.ArgumentParser(description="Check which Gemini key/model pairs respond")
    parser.add_argument(
        "--models",
        default="",
        help="Comma-separated model names (defaults to LLM_MODELS)",
    )
    args = parser.parse_args()

    models = [m.strip() for m in args.models.split(",") if m.strip()]
    models = models or get_settings().model_names

    working = asyncio.run(check_models(models))
    sys.exit(0 if working else 1)


if __name__ == "__main__":
    main()
