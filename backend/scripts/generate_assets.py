"""
Generate the tutor's avatar and logo with OpenAI image generation.

Images are downloaded into frontend/public/assets at the repository root.
The script pauses between generations to stay clear of rate limits.

Usage:
    python generate_assets.py
"""

import asyncio
import sys
from pathlib import Path

import requests
from openai import AsyncOpenAI, OpenAIError

from script_common import report_openai_error, require_api_key

ASSETS_DIR = Path(__file__).resolve().parents[2] / "frontend" / "public" / "assets"
IMAGE_MODEL = "dall-e-3"
PAUSE_BETWEEN_CALLS_SECONDS = 5

ASSETS = [
    {
        "name": "tutor avatar",
        "filename": "tutor-avatar.png",
        "prompt": (
            "A friendly, approachable owl character designed as a math tutor avatar. "
            "Stylized and cartoon-like, with warm colors and a kind, encouraging expression suitable "
            "for teaching students. Facing forward. Subtle mathematical elements such as geometric "
            "patterns in the feathers or a small equation symbol. Clean, simple design that works "
            "as a profile picture at small sizes. White background. "
            "Style: modern digital illustration, clean lines, vibrant colors."
        ),
    },
    {
        "name": "logo",
        "filename": "tutor-logo.png",
        "prompt": (
            "A professional logo for a Socratic math tutoring app. Combine a question mark with "
            "mathematical symbols (pi, an integral sign, geometric shapes) in a clean, modern design "
            "that stays readable at small sizes and works as a favicon. "
            "Style: modern, educational, clean vector-style illustration. White background."
        ),
    },
]


def download_image(url: str, target: Path) -> Path:
    response = requests.get(url, timeout=60)
    response.raise_for_status()
    target.write_bytes(response.content)
    return target


async def generate_asset(client: AsyncOpenAI, asset: dict) -> Path:
    print(f"\n🎨 Generating {asset['name']}...")
    print("📤 Requesting image generation...")

    response = await client.images.generate(
        model=IMAGE_MODEL,
        prompt=asset["prompt"],
        n=1,
        size="1024x1024",
        quality="standard",
        style="vivid",
    )
    image_url = response.data[0].url
    print("✅ Image generated successfully!")
    print(f"📥 Download URL: {image_url}")

    ASSETS_DIR.mkdir(parents=True, exist_ok=True)
    path = download_image(image_url, ASSETS_DIR / asset["filename"])
    print(f"💾 Saved to: {path}")
    return path


async def run() -> int:
    print("🎨 Tutor Asset Generator")
    print("========================")

    client = AsyncOpenAI(api_key=require_api_key())

    saved = []
    for index, asset in enumerate(ASSETS):
        if index > 0:
            print(f"\n⏳ Waiting {PAUSE_BETWEEN_CALLS_SECONDS}s to avoid rate limits...")
            await asyncio.sleep(PAUSE_BETWEEN_CALLS_SECONDS)
        try:
            saved.append(await generate_asset(client, asset))
        except OpenAIError as e:
            report_openai_error(f"generating {asset['name']}", e)
            return 1
        except requests.exceptions.RequestException as e:
            print(f"❌ Failed to download {asset['name']}: {e}")
            return 1

    print("\n✅ All assets generated:")
    for path in saved:
        print(f"   {path}")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(run()))
