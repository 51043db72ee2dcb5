# --- Standard Library Imports ---
import argparse
import asyncio
import logging
import logging.handlers
import shutil
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

# --- Third-Party Imports ---
missing_dependencies: List[str] = []

try:
    from playwright.async_api import async_playwright
except ImportError:
    missing_dependencies.append(
        "playwright (pip install playwright && python -m playwright install chromium)"
    )

try:
    from tabulate import tabulate
except ImportError:
    missing_dependencies.append("tabulate (pip install tabulate)")

from .config import TARGET_URL, RendererConfig, load_config
from .engine import RenderEngine, attach
from .render import RenderSurface

# --- Configuration Constants ---
TEMP_DIR_PREFIX = "log_image_renderer_"
LOG_FILE = "log_image_renderer.log"
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'
NAVIGATION_TIMEOUT_MS = 60000

logger = logging.getLogger("log_image_renderer")


def setup_logging(debug: bool = False, log_file: Optional[str] = LOG_FILE) -> None:
    """Sends package logs to stdout and, when given, a rotating log file."""
    level = logging.DEBUG if debug else logging.INFO
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT)

    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(formatter)
    logger.addHandler(ch)

    if log_file:
        fh = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=10*1024*1024, backupCount=5
        )
        fh.setLevel(level)
        fh.setFormatter(formatter)
        logger.addHandler(fh)


def summarize(surface: RenderSurface) -> List[Dict[str, str]]:
    rows = []
    for key, (candidate, status, detail) in surface.outcomes.items():
        rows.append({
            "Message ID": candidate.message.message_id,
            "Source Type": candidate.source_type,
            "Source": candidate.source_value,
            "Status": status,
            "Detail": detail or "N/A",
        })
    return rows


def print_summary(engine: RenderEngine) -> None:
    rows = summarize(engine.surface)
    print("\n--- Conversation Image Render Summary ---")
    if not rows:
        print("No images were rendered in this session.")
        return
    headers = ["Message ID", "Source Type", "Source", "Status", "Detail"]
    table_data = [[row[h] for h in headers] for row in rows]
    print(tabulate(table_data, headers=headers, tablefmt="grid"))


async def run_renderer(target_url: str, config: RendererConfig, user_data_dir: Path,
                       headless: bool = False) -> Optional[RenderEngine]:
    """
    Opens the log viewer in a persistent Chromium profile and renders images
    until the user closes the page.
    """
    engine = None
    async with async_playwright() as p:
        browser_context = await p.chromium.launch_persistent_context(
            user_data_dir=str(user_data_dir),
            headless=headless,
            args=["--start-maximized"],
            no_viewport=True,
        )
        try:
            page = browser_context.pages[0] if browser_context.pages else await browser_context.new_page()
            page.on("console", lambda msg: logger.debug(f"Browser Console [{msg.type.upper()}]: {msg.text}"))

            engine = await attach(page, config)

            logger.info(f"Navigating to URL: {target_url}")
            await page.goto(target_url, wait_until="domcontentloaded", timeout=NAVIGATION_TIMEOUT_MS)
            logger.info(f"Page loaded: {target_url} (DOM content loaded)")

            await page.wait_for_event("close", timeout=0)
            logger.info("Page closed by user.")
        finally:
            if engine is not None:
                engine.close()
            await browser_context.close()
    return engine


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Render conversation images inline in a conversation log viewer."
    )
    parser.add_argument("url", nargs="?", default=TARGET_URL, help="log viewer URL to open")
    parser.add_argument("--config", type=Path, help="JSON file with configuration overrides")
    parser.add_argument("--user-data-dir", type=Path,
                        help="persistent browser profile (keeps the login between runs)")
    parser.add_argument("--headless", action="store_true", help="run the browser without a window")
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--log-file", default=LOG_FILE, help="rotating log file path")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    if missing_dependencies:
        sys.stderr.write("The following dependencies are missing:\n")
        for package in missing_dependencies:
            sys.stderr.write(f"  - {package}\n")
        sys.stderr.write(
            "\nInstall the packages listed above and rerun this script.\n"
        )
        return 1

    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        sys.stderr.write(f"Could not load configuration: {e}\n")
        return 2
    config.debug = config.debug or args.debug
    setup_logging(config.debug, args.log_file)

    temp_profile = None
    user_data_dir = args.user_data_dir
    if user_data_dir is None:
        temp_profile = Path(tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX))
        user_data_dir = temp_profile
        logger.info(f"Created temporary browser profile: {temp_profile.absolute()}")

    try:
        engine = asyncio.run(run_renderer(args.url, config, user_data_dir, args.headless))
        if engine is not None:
            print_summary(engine)
    except KeyboardInterrupt:
        logger.info("Interrupted.")
    except Exception as exc:
        logger.critical(f"Unrecoverable error in main execution: {exc}", exc_info=True)
        return 1
    finally:
        if temp_profile is not None and temp_profile.exists():
            shutil.rmtree(temp_profile, ignore_errors=True)
            logger.info(f"Cleaned up temporary browser profile: {temp_profile.absolute()}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
