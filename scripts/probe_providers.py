# scripts/probe_providers.py
import asyncio
from pathlib import Path

from dotenv import load_dotenv

# Resolve .env relative to the repo root so this script works from any cwd.
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

from llmgateway.config import Settings  # noqa: E402
from llmgateway.providers import ConnectionTester, LLMConfig, LLMGateway  # noqa: E402

PROVIDERS_TO_PROBE = [
    {"provider": "openai", "model": "gpt-4o-mini", "api_url": "https://api.openai.com/v1"},
    {
        "provider": "anthropic",
        "model": "claude-haiku-4-5-20251001",
        "api_url": "https://api.anthropic.com/v1",
    },
    {
        "provider": "google",
        "model": "gemini-1.5-flash",
        "api_url": "https://generativelanguage.googleapis.com/v1beta",
    },
    {"provider": "cohere", "model": "command-r", "api_url": "https://api.cohere.ai/v1"},
    {"provider": "mistral", "model": "mistral-small-latest", "api_url": "https://api.mistral.ai/v1"},
    {
        "provider": "together",
        "model": "meta-llama/Llama-3-70b-chat-hf",
        "api_url": "https://api.together.xyz/v1",
    },
    {"provider": "groq", "model": "llama-3.1-8b-instant", "api_url": "https://api.groq.com/openai/v1"},
    {"provider": "perplexity", "model": "sonar", "api_url": "https://api.perplexity.ai"},
]


async def probe_provider(tester: ConnectionTester, settings: Settings, provider_info: dict) -> None:
    """Probe a single provider"""
    name = f"{provider_info['provider']} ({provider_info['model']})"

    # Check if API key is available
    api_key = settings.provider_api_key(provider_info["provider"])
    if not api_key:
        print(f"⏭️  Skipping {name} (no API key)")
        return

    print(f"\n🧪 Probing {name}...")
    result = await tester.test(LLMConfig(api_key=api_key, **provider_info))

    if result.success:
        print(f"   Response: {result.response!r}")
        print(f"   ✅ {name} working! ({result.response_time_ms} ms)")
    else:
        print(f"   ❌ {result.error_kind} error: {result.error}")


async def main():
    print("=" * 60)
    print("Multi-Provider Connection Probe")
    print("=" * 60)

    settings = Settings()
    gateway = LLMGateway.from_settings(settings)
    tester = ConnectionTester(gateway)
    try:
        for provider_info in PROVIDERS_TO_PROBE:
            await probe_provider(tester, settings, provider_info)
    finally:
        await gateway.aclose()

    print("\n" + "=" * 60)
    print("Probing complete!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
