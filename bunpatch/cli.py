#!/usr/bin/env python3
"""
bunpatch: inspect, unpack, patch and repack Bun standalone executables.

Usage:
  bunpatch info ./claude
  bunpatch unpack ./claude -o out_modules
  bunpatch repack ./claude ./claude.patched --modules out_modules
  bunpatch patch-js cli.js cli.patched.js --settings tweaks.json
  bunpatch patch ./claude ./claude.patched --settings tweaks.json [--only thinker_speed]
  bunpatch list-patches

Exit status: 0 ok, 1 bad arguments or missing files, 2 binary/settings error,
3 one or more patches could not be applied.
"""
import argparse, json, logging, os, sys
from pathlib import Path

import lief

from . import __version__
from .errors import BunPatchError
from .extract import extract_payload, find_module
from .modules_dir import load_replacements, unpack_modules
from .records import ENCODINGS, MODULE_FORMATS, SIDES, enum_name
from .repack import CapacityPolicy, repack_binary, write_output
from .settings import load_settings
from .textpatch import PATCHES, PatchStatus, run_patches

LOG = logging.getLogger("bunpatch")

ENTRY_MODULE_NAMES = ("claude", "claude.exe")
STATUS_MARK = {
    PatchStatus.APPLIED: "[+]",
    PatchStatus.ALREADY_APPLIED: "[=]",
    PatchStatus.SKIPPED: "[-]",
    PatchStatus.NOT_FOUND: "[!]",
    PatchStatus.FAILED: "[!]",
}


def setup_logging(verbose: bool):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO,
                        format="%(asctime)s %(levelname)s %(message)s")
    logging.getLogger("pefile").setLevel(logging.ERROR)
    lief.logging.disable()


def decode_js(data: bytes) -> str:
    return data.decode("utf-8", "surrogateescape")


def encode_js(text: str) -> bytes:
    return text.encode("utf-8", "surrogateescape")


def print_outcomes(run):
    for o in run.outcomes:
        extra = f" ({o.detail})" if o.detail and o.status is not PatchStatus.SKIPPED else ""
        print(f"  {STATUS_MARK[o.status]} {o.patch_id}: {o.status.value}{extra}")


def cmd_info(args):
    ex = extract_payload(args.binary)
    if args.json:
        print(json.dumps({
            "format": ex.format.value,
            "payload_size": len(ex.payload),
            "container": {"name": ex.container.name, "offset": ex.container.offset,
                          "size": ex.container.size},
            "entry_point_id": ex.offsets.entry_point_id,
            "flags": ex.offsets.flags,
            "exec_argv": ex.exec_argv.decode("utf-8", "replace"),
            "modules": [{
                "name": ex.module_name(m),
                "size": m.contents.length,
                "sourcemap_size": m.sourcemap.length,
                "bytecode_size": m.bytecode.length,
                "loader": m.loader_name,
                "encoding": m.encoding_name,
                "format": enum_name(MODULE_FORMATS, m.module_format),
                "side": enum_name(SIDES, m.side),
            } for m in ex.modules],
        }, indent=2))
        return 0
    print(f"[*] {args.binary}: {ex.format.value}, payload {len(ex.payload):,} bytes "
          f"in {ex.container.name} at 0x{ex.container.offset:x}")
    print(f"[*] entry point #{ex.offsets.entry_point_id}, {ex.offsets.module_count} modules")
    for idx, m in enumerate(ex.modules):
        star = "*" if idx == ex.offsets.entry_point_id else " "
        print(f"  {star} {idx:3d} {ex.module_name(m):60s} {m.contents.length:>12,} "
              f"{m.loader_name:6s} {enum_name(ENCODINGS, m.encoding)}")
    return 0


def cmd_unpack(args):
    ex = extract_payload(args.binary)
    written = unpack_modules(ex, args.output)
    print(f"[+] wrote {len(written)} module(s) to {args.output}")
    return 0


def cmd_repack(args):
    ex = extract_payload(args.binary)
    replacements = load_replacements(ex, args.modules)
    if not replacements:
        print("[*] no modified modules found; rebuilding unchanged payload")
    result = repack_binary(args.binary, ex, replacements, args.output, CapacityPolicy(args.macho_capacity))
    for w in result.warnings:
        print(f"[!] {w}")
    print(f"[+] wrote {result.output_path} ({result.size:,} bytes)")
    return 0


def _run_and_report(text, args):
    settings = load_settings(args.settings)
    run = run_patches(text, settings, args.only)
    print_outcomes(run)
    return run


def cmd_patch_js(args):
    run = _run_and_report(decode_js(Path(args.input).read_bytes()), args)
    write_output(args.output, encode_js(run.text))
    print(f"[+] wrote {args.output}")
    return 3 if run.failed else 0


def cmd_patch(args):
    ex = extract_payload(args.binary)
    module = find_module(ex, [args.module] if args.module else ENTRY_MODULE_NAMES)
    name = ex.module_name(module)
    print(f"[*] patching {name} ({module.contents.length:,} bytes)")
    run = _run_and_report(decode_js(ex.module_contents(module)), args)
    if not run.changed:
        print("[*] nothing changed; output not written")
        return 3 if run.failed else 0
    result = repack_binary(args.binary, ex, {name: encode_js(run.text)}, args.output,
                           CapacityPolicy(args.macho_capacity))
    for w in result.warnings:
        print(f"[!] {w}")
    print(f"[+] wrote {result.output_path} ({result.size:,} bytes)")
    return 3 if run.failed else 0


def cmd_list_patches(args):
    for p in PATCHES:
        print(f"  {p.patch_id:28s} {p.setting:28s} {p.description}")
    return 0


def build_parser():
    ap = argparse.ArgumentParser(prog="bunpatch", description="Patch Bun standalone executables")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging, including diffs")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = ap.add_subparsers(dest="command", required=True)

    p = sub.add_parser("info", help="list embedded modules")
    p.add_argument("binary")
    p.add_argument("--json", action="store_true")
    p.set_defaults(func=cmd_info)

    p = sub.add_parser("unpack", help="write embedded modules to a directory")
    p.add_argument("binary")
    p.add_argument("-o", "--output", default="out_modules")
    p.set_defaults(func=cmd_unpack)

    capacity = dict(choices=[c.value for c in CapacityPolicy], default=CapacityPolicy.FAIL.value,
                    help="what to do when a Mach-O payload outgrows __bun (default: fail)")

    p = sub.add_parser("repack", help="rebuild a binary from an unpacked module directory")
    p.add_argument("binary")
    p.add_argument("output")
    p.add_argument("--modules", default="out_modules")
    p.add_argument("--macho-capacity", **capacity)
    p.set_defaults(func=cmd_repack)

    p = sub.add_parser("patch-js", help="patch a JavaScript file")
    p.add_argument("input")
    p.add_argument("output")
    p.add_argument("--settings", required=True)
    p.add_argument("--only", nargs="+", metavar="PATCH_ID")
    p.set_defaults(func=cmd_patch_js)

    p = sub.add_parser("patch", help="patch the entry module of a binary and repack it")
    p.add_argument("binary")
    p.add_argument("output")
    p.add_argument("--settings", required=True)
    p.add_argument("--module", help="module name or suffix (default: entry point)")
    p.add_argument("--only", nargs="+", metavar="PATCH_ID")
    p.add_argument("--macho-capacity", **capacity)
    p.set_defaults(func=cmd_patch)

    p = sub.add_parser("list-patches", help="show available patches")
    p.set_defaults(func=cmd_list_patches)
    return ap


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    for attr in ("binary", "input", "settings", "modules"):
        path = getattr(args, attr, None)
        if path and not os.path.exists(path):
            print(f"[!] not found: {path}")
            return 1
    try:
        return args.func(args)
    except BunPatchError as e:
        print(f"[!] {type(e).__name__}: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
