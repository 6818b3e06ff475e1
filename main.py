# RJ Auto Metadata
# Copyright (C) 2025 Riiicil
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

# main.py
import os
import sys
import signal
import asyncio
import argparse
import traceback

DEFAULT_SETTINGS_FILE = "settings.json"


def build_parser():
    parser = argparse.ArgumentParser(
        prog="autometa",
        description="Generate titles, descriptions and keywords for a folder of media files.",
    )
    parser.add_argument("folder", help="folder containing the media files")
    parser.add_argument("--platform", choices=["openai", "gemini"], help="vision provider")
    parser.add_argument("--model", help="model name (defaults to the recommended model of the platform)")
    parser.add_argument("--api-key", action="append", dest="api_keys", default=[],
                        help="API key, repeat for several keys")
    parser.add_argument("--key-mode", choices=["rotation", "simultaneous"], help="how several keys are used")
    parser.add_argument("--settings", default=DEFAULT_SETTINGS_FILE, help="JSON settings file")
    parser.add_argument("--max-concurrent", type=int, help="files processed at the same time")
    parser.add_argument("--rebuild-csv", action="store_true",
                        help="only rebuild success/CSV/metadata.csv from the files in success/")
    parser.add_argument("--verbose", action="store_true", help="debug logging")
    return parser


def load_cli_settings(args):
    from src.utils.settings import load_settings

    settings = load_settings(args.settings)
    if args.platform:
        settings.platform = args.platform
    if args.model:
        settings.model = args.model
    if args.api_keys:
        settings.api_keys = args.api_keys
    elif not settings.api_keys:
        env_name = "OPENAI_API_KEY" if settings.platform == "openai" else "GEMINI_API_KEY"
        if os.environ.get(env_name):
            settings.api_keys = [os.environ[env_name]]
    if args.key_mode:
        settings.key_usage_method = args.key_mode
    if args.max_concurrent is not None:
        settings.max_concurrent = args.max_concurrent
    return settings


def _install_signal_handlers(loop, scheduler):
    try:
        loop.add_signal_handler(signal.SIGINT, scheduler.stop, "Interrupted by user")
        loop.add_signal_handler(signal.SIGTERM, scheduler.stop, "Terminated")
        if hasattr(signal, "SIGUSR1"):
            loop.add_signal_handler(signal.SIGUSR1, scheduler.pause)
    except (NotImplementedError, RuntimeError):
        # Windows event loops have no add_signal_handler; Ctrl+C raises KeyboardInterrupt instead
        pass


async def run(args):
    from src.utils.file_utils import scan_folder
    from src.utils.logging import log_message
    from src.processing.batch_processing import BatchScheduler, BatchState

    settings = load_cli_settings(args)
    scheduler = BatchScheduler(settings)
    folder = os.path.abspath(args.folder)

    if args.rebuild_csv:
        rows = await scheduler.rebuild_csv(folder)
        log_message(f"CSV rebuilt with {rows} row(s)", "success")
        return 0

    files = scan_folder(folder)
    _install_signal_handlers(asyncio.get_running_loop(), scheduler)
    summary = await scheduler.start(files)
    if summary.state == BatchState.STOPPED or summary.failed_count:
        return 1
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
        from src.utils.logging import configure_logging
        from src.api.errors import MetadataToolError

        configure_logging(verbose=args.verbose)
        try:
            return asyncio.run(run(args))
        except MetadataToolError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"FATAL ERROR: {e}")
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
