"""Helpers shared by the OpenAI developer scripts."""

import os
import sys

from dotenv import load_dotenv
from openai import APIStatusError

load_dotenv()
load_dotenv('../.env')


def require_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        print("❌ OPENAI_API_KEY not found in environment variables")
        print("💡 Make sure you have a .env file with OPENAI_API_KEY set")
        sys.exit(1)
    return api_key


def report_openai_error(context: str, error: Exception):
    print(f"❌ Error {context}:")
    status = error.status_code if isinstance(error, APIStatusError) else None
    if status == 401:
        print("   Authentication failed. Check your API key.")
    elif status == 429:
        print("   Rate limit exceeded. Try again later.")
    else:
        print(f"   {error}")


def print_usage(usage):
    if usage is None:
        return
    print("📊 Usage:")
    print(f"   Prompt tokens: {usage.prompt_tokens}")
    print(f"   Completion tokens: {usage.completion_tokens}")
    print(f"   Total tokens: {usage.total_tokens}")
