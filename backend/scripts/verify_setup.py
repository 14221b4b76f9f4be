"""
Verify the backend configuration.

Checks required environment variables, the OpenAI key and, when set,
the Supabase credentials. Pass --test-api to also make one (billed)
OpenAI request.

Usage:
    python verify_setup.py [--test-api]
"""

import asyncio
import os
import sys

from openai import AsyncOpenAI, OpenAIError

from script_common import report_openai_error

REQUIRED_ENV_VARS = [
    "OPENAI_API_KEY",
    "SESSION_SECRET",
    "DASHBOARD_PASSWORD",
]
OPTIONAL_ENV_VARS = [
    "SUPABASE_URL",
    "SUPABASE_SERVICE_KEY",
    "SUPABASE_IMAGE_BUCKET",
    "FRONTEND_URL",
]


def check_env_vars() -> bool:
    print("📋 Checking environment variables...")
    missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
    if missing:
        print("❌ Missing environment variables:")
        for name in missing:
            print(f"   - {name}")
        print("💡 Copy .env.example to .env and fill in the values\n")
        return False

    print("✅ All required environment variables are set")
    unset = [name for name in OPTIONAL_ENV_VARS if not os.getenv(name)]
    if unset:
        print(f"ℹ️  Optional variables not set: {', '.join(unset)}")
    print()
    return True


def check_supabase() -> bool:
    print("🗄️  Checking Supabase configuration...")
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_SERVICE_KEY")
    if not url and not key:
        print("⚠️  Supabase not configured: sessions will be kept in memory\n")
        return True
    if not url or not key:
        print("❌ Set both SUPABASE_URL and SUPABASE_SERVICE_KEY\n")
        return False
    if not url.startswith("https://"):
        print(f"❌ SUPABASE_URL should start with https:// (got {url})\n")
        return False
    print("✅ Supabase credentials are configured\n")
    return True


async def check_openai(test_api: bool) -> bool:
    print("🤖 Testing OpenAI configuration...")
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        print("❌ OPENAI_API_KEY is required\n")
        return False
    print("✅ OpenAI API key is configured")

    if not test_api:
        print("   (Skipping API connection test. Use --test-api to test)\n")
        return True

    print("   Testing API connection...")
    client = AsyncOpenAI(api_key=api_key)
    try:
        response = await client.chat.completions.create(
            model=os.getenv("OPENAI_MODEL", "gpt-4"),
            messages=[{"role": "user", "content": "Test"}],
            max_tokens=5,
        )
    except OpenAIError as e:
        report_openai_error("connecting to OpenAI", e)
        print()
        return False

    print(f"✅ OpenAI API connection successful (model: {response.model})\n")
    return True


async def run(argv) -> int:
    print("🔍 Verifying setup...\n")

    results = [
        check_env_vars(),
        await check_openai("--test-api" in argv),
        check_supabase(),
    ]

    print("━" * 40)
    if all(results):
        print("✅ Setup verification complete!")
        print("🚀 Start the backend with: cd backend && python main.py")
        code = 0
    else:
        print("⚠️  Some checks failed. Please fix the issues above.")
        code = 1
    print("━" * 40)
    return code


if __name__ == "__main__":
    sys.exit(asyncio.run(run(sys.argv[1:])))
