#!/usr/bin/env python3
"""
Example: Render the images of one conversation and report what was found

Opens a conversation in a persistent browser profile (log in once, the
profile keeps the session), lets the renderer work for a while, then prints
every rendered key.
"""

import asyncio
import sys
from pathlib import Path

from playwright.async_api import async_playwright

# Add parent directory to path to import log_image_renderer
sys.path.insert(0, str(Path(__file__).parent.parent))

from log_image_renderer import RendererConfig, attach
from log_image_renderer.cli import print_summary, setup_logging


async def main():
    """Render one conversation and summarize the outcome."""

    example_url = "https://platform.openai.com/logs/conv_EXAMPLE"

    print("Log Image Renderer - Single Conversation Example")
    print("=" * 60)

    if len(sys.argv) > 1:
        url = sys.argv[1]
    else:
        url = input("Enter conversation URL (or press Enter for example): ").strip()
        if not url:
            print(f"\nUsing example URL: {example_url}")
            print("Note: Replace with a real conversation URL\n")
            url = example_url

    profile = Path.home() / ".log_image_renderer_profile"
    setup_logging(debug=False, log_file=None)
    config = RendererConfig()

    async with async_playwright() as p:
        context = await p.chromium.launch_persistent_context(str(profile), headless=False)
        page = context.pages[0] if context.pages else await context.new_page()
        engine = await attach(page, config)

        print(f"\nOpening: {url}\n")
        await page.goto(url, wait_until="domcontentloaded")
        await asyncio.sleep(20)
        await engine.idle()

        print_summary(engine)
        engine.close()
        await context.close()


if __name__ == '__main__':
    asyncio.run(main())
