#!/usr/bin/env python3
"""
Command line front-end for TXRC text containers.

The script can:
1) convert .txrc -> .txrc.txt and .txt -> .txt.txrc next to the inputs,
2) print container details (profile, offsets, table stats),
3) scan a directory for .txrc files,
4) validate decode -> encode roundtrip by byte-to-byte comparison.
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from pathlib import Path
from typing import Any

import txrc_codec as codec

CONTAINER_SUFFIX = ".txrc"
DOCUMENT_SUFFIX = ".txt"


class UnsupportedExtensionError(RuntimeError):
    pass


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def first_diff(a: bytes, b: bytes) -> tuple[int | None, str | None]:
    if a == b:
        return None, None
    limit = min(len(a), len(b))
    for idx in range(limit):
        if a[idx] != b[idx]:
            return idx, f"{a[idx]:02x}!={b[idx]:02x}"
    return limit, f"len {len(a)}!={len(b)}"


def dump_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)
        handle.write("\n")


def output_path_for(path: Path) -> Path:
    suffix = path.suffix.lower()
    if suffix == CONTAINER_SUFFIX:
        return path.with_name(path.name + DOCUMENT_SUFFIX)
    if suffix == DOCUMENT_SUFFIX:
        return path.with_name(path.name + CONTAINER_SUFFIX)
    raise UnsupportedExtensionError("not a .txrc or .txt file")


def convert_file(path: Path, dry_run: bool = False) -> Path:
    out_path = output_path_for(path)
    if path.suffix.lower() == CONTAINER_SUFFIX:
        text = codec.decode(path.read_bytes(), source=str(path))
        if not dry_run:
            out_path.write_text(text, encoding="utf-8")
    else:
        document = path.read_text(encoding="utf-8-sig")
        blob = codec.encode(codec.split_document_lines(document))
        if not dry_run:
            out_path.write_bytes(blob)
    return out_path


def scan_containers(root: Path) -> list[dict[str, Any]]:
    found: list[dict[str, Any]] = []
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() != CONTAINER_SUFFIX:
            continue
        try:
            with path.open("rb") as handle:
                head = handle.read(codec.MIN_HEADER_SIZE)
            profile = codec.detect_profile(head)
        except (OSError, codec.TxrcFormatError) as exc:
            print(f"[warn] cannot read {path}: {exc}", file=sys.stderr)
            continue
        found.append(
            {
                "path": str(path),
                "relative_path": str(path.relative_to(root)),
                "profile": profile,
                "size": path.stat().st_size,
            }
        )
    return found


def roundtrip_container(data: bytes, source: str = "<memory>") -> bytes:
    return codec.encode(codec.decode(data, source=source))


def cmd_convert(args: argparse.Namespace) -> int:
    failures = 0
    for item in args.files:
        path = Path(item)
        if not path.is_file():
            print(f"[error] {item}: file not found", file=sys.stderr)
            failures += 1
            continue
        try:
            out_path = convert_file(path, dry_run=args.dry_run)
        except Exception as exc:  # pylint: disable=broad-except
            print(f"[error] {path.name}: {exc}", file=sys.stderr)
            failures += 1
            continue
        print(f"Done: {path.name} -> {out_path.name}")

    return 1 if failures else 0


def cmd_info(args: argparse.Namespace) -> int:
    path = Path(args.input).resolve()
    info = codec.parse_txrc(path.read_bytes(), source=str(path))
    if args.json:
        print(json.dumps(info, indent=2, ensure_ascii=False))
        return 0

    print(f"File        : {path}")
    print(f"Profile     : {info['profile']} ({'big' if info['big_endian'] else 'little'}-endian)")
    print(f"Magic / key : {info['magic_hex']} / {info['key_hex']}")
    print(f"Table       : 0x{info['table_offset']:X}..0x{info['text_offset']:X} ({info['slot_count']} slots)")
    print(f"Strings     : {info['unique_count']} unique, {info['index_count']} indexed")
    if info["issues"]:
        print("Issues:")
        for issue in info["issues"]:
            print(f"- {issue}")
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    root = Path(args.input).resolve()
    rows = scan_containers(root)
    if args.json:
        print(json.dumps(rows, indent=2, ensure_ascii=False))
        return 0

    counts = {codec.PROFILE_SCRAMBLED: 0, codec.PROFILE_PLAIN_HEADER: 0}
    for row in rows:
        counts[row["profile"]] += 1
        print(f"{row['profile']}  {row['size']:>10}  {row['relative_path']}")
    print(
        f"Found containers: total={len(rows)}, "
        f"profile A={counts[codec.PROFILE_SCRAMBLED]}, profile B={counts[codec.PROFILE_PLAIN_HEADER]}"
    )
    return 0


def cmd_validate(args: argparse.Namespace) -> int:
    input_root = Path(args.input).resolve()
    containers = scan_containers(input_root)

    report: dict[str, Any] = {
        "input_root": str(input_root),
        "containers_total": len(containers),
        "results": [],
        "summary": {},
    }

    for item in containers:
        rel = item["relative_path"]
        path = input_root / rel
        try:
            original = path.read_bytes()
            info = codec.parse_txrc(original, source=rel)
            repacked = roundtrip_container(original, source=rel)
            diff_offset, diff_desc = first_diff(original, repacked)
            result = {
                "relative_path": rel,
                "profile": info["profile"],
                "size_original": len(original),
                "size_repacked": len(repacked),
                "sha256_original": sha256_hex(original),
                "sha256_repacked": sha256_hex(repacked),
                "match": original == repacked,
                "first_diff_offset": diff_offset,
                "first_diff": diff_desc,
                "issues": info["issues"],
                "error": None,
            }
        except Exception as exc:  # pylint: disable=broad-except
            result = {
                "relative_path": rel,
                "profile": item["profile"],
                "size_original": item["size"],
                "size_repacked": None,
                "sha256_original": None,
                "sha256_repacked": None,
                "match": False,
                "first_diff_offset": None,
                "first_diff": None,
                "issues": [f"processing error: {exc}"],
                "error": str(exc),
            }
        report["results"].append(result)

    matches = sum(1 for row in report["results"] if row["match"])
    errors = sum(1 for row in report["results"] if row["error"])
    report["summary"] = {
        "matches": matches,
        "mismatches": len(report["results"]) - matches,
        "errors": errors,
        "issues_total": sum(len(row["issues"]) for row in report["results"]),
    }

    if args.report:
        dump_json(Path(args.report).resolve(), report)

    print(f"Input root     : {input_root}")
    print(f"Containers     : {len(report['results'])}")
    print(f"Roundtrip match: {matches}/{len(report['results'])}")
    print(f"Errors         : {errors}")

    mismatches = [row for row in report["results"] if not row["match"]]
    if mismatches:
        print("\nMismatches:")
        for row in mismatches:
            if row["error"]:
                print(f"- {row['relative_path']} [{row['profile']}] error: {row['error']}")
            else:
                print(
                    f"- {row['relative_path']} [{row['profile']}] "
                    f"diff@{row['first_diff_offset']}: {row['first_diff']}"
                )

    if errors:
        return 1
    if mismatches and args.fail_on_diff:
        return 1
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="TXRC tools: convert containers to editable text and back, inspect, validate."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    convert = sub.add_parser(
        "convert",
        help="Convert .txrc files to .txt and .txt files back to .txrc (next to the inputs).",
    )
    convert.add_argument("files", nargs="+", help="Input .txrc / .txt files.")
    convert.add_argument(
        "--dry-run",
        action="store_true",
        help="Run the conversion without writing output files.",
    )
    convert.set_defaults(func=cmd_convert)

    info = sub.add_parser("info", help="Show container details.")
    info.add_argument("--input", required=True, help="Path to .txrc file.")
    info.add_argument("--json", action="store_true", help="Print JSON output.")
    info.set_defaults(func=cmd_info)

    scan = sub.add_parser("scan", help="Find .txrc containers under a directory.")
    scan.add_argument("--input", required=True, help="Root directory to scan.")
    scan.add_argument("--json", action="store_true", help="Print JSON output.")
    scan.set_defaults(func=cmd_scan)

    validate = sub.add_parser(
        "validate",
        help="Run decode->encode->byte-compare on every container under a directory.",
    )
    validate.add_argument("--input", required=True, help="Root with game data files.")
    validate.add_argument("--report", help="Optional JSON report output path.")
    validate.add_argument(
        "--fail-on-diff",
        action="store_true",
        help="Return non-zero exit code if any byte mismatch exists.",
    )
    validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
