from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__
from .apk import pack, unpack
from .assets import AssetProvisioner
from .errors import ApkextError
from .tools import ToolConfiguration, load_configuration

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


def _add_unpack_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        "unpack",
        help="Unpack APK file to source code",
        description="Unpack APK file by extracting resources, converting DEX to JAR, "
        "and decompiling Java classes to source code.",
    )
    parser.add_argument("apk_file", type=Path, metavar="APK_FILE")
    parser.set_defaults(handler=_handle_unpack)


def _add_pack_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser(
        "pack",
        help="Pack source code back to APK",
        description="Pack the unpacked source code directory back into an APK file.",
    )
    parser.add_argument("unpacked_dir", type=Path, metavar="UNPACKED_DIR")
    parser.add_argument("output_apk", type=Path, metavar="OUTPUT_APK")
    parser.set_defaults(handler=_handle_pack)


def _add_mcp_parser(subparsers: argparse._SubParsersAction) -> None:
    parser = subparsers.add_parser("mcp", help="Start MCP (Model Context Protocol) server")
    parser.set_defaults(handler=_handle_mcp)


def _handle_unpack(args: argparse.Namespace, config: ToolConfiguration) -> int:
    result = unpack(args.apk_file, config)
    for warning in result.warnings:
        print(f"Warning: {warning}", file=sys.stderr)
    if not result.ok:
        print(f"Error: failed to extract resources: {result.error}", file=sys.stderr)
        return 1
    return 0


def _handle_pack(args: argparse.Namespace, config: ToolConfiguration) -> int:
    result = pack(args.unpacked_dir, args.output_apk, config)
    print(f"[+] Built '{result.output_apk}'")
    return 0


def _handle_mcp(args: argparse.Namespace, config: ToolConfiguration) -> int:
    from .mcp import Server

    return Server(config).run()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apkext",
        description="APK extraction and building tool with embedded JAR utilities.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--cache-dir", type=Path, help="tool cache directory (default: user config dir or $APKEXT_HOME)")
    parser.add_argument("--ephemeral-cache", action="store_true", help="extract tools into a temporary directory removed on exit")
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", required=True)

    _add_unpack_parser(subparsers)
    _add_pack_parser(subparsers)
    _add_mcp_parser(subparsers)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    provisioner = None
    try:
        provisioner = AssetProvisioner(args.cache_dir, ephemeral=args.ephemeral_cache)
        cache_root = provisioner.materialize()
        config = load_configuration(cache_root)
        return args.handler(args, config)
    except (ApkextError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        if provisioner is not None:
            provisioner.cleanup()


if __name__ == "__main__":
    raise SystemExit(main())
