#!/usr/bin/env python3
"""
Codec for TXRC text resource containers.

Container layout (offsets in bytes):
  0x00  magic (4, opaque)
  0x04  cipher key (4, never scrambled)
  0x0C  profile flag: 0 -> header stored plain, big-endian fields
  0x14  pointer table offset (u32)
  0x18  text section offset (u32), rewritten as table end on encode
  ...   header block, pointer table (u32 slots), text section (UTF-8)

Everything in this module is a pure bytes/str transformation:
  decode(container bytes) -> text document
  encode(text document lines) -> container bytes
"""

from __future__ import annotations

import re
import struct
from dataclasses import dataclass, field
from typing import Any, Iterable

HEADER_START = "----------HEADER START----------"
HEADER_END = "-----------HEADER END-----------"
INDEXES_START = "---------INDEXES START----------"
INDEXES_END = "----------INDEXES END-----------"
TEXT_START = "-----------TEXT START-----------"
TEXT_END = "------------TEXT END------------"

SECTION_MARKERS = {
    HEADER_START: ("header", HEADER_END),
    INDEXES_START: ("indexes", INDEXES_END),
    TEXT_START: ("text", TEXT_END),
}
END_MARKERS = {end for _, end in SECTION_MARKERS.values()}
ALL_MARKERS = set(SECTION_MARKERS) | END_MARKERS

KEY_OFFSET = 0x04
PROFILE_FLAG_OFFSET = 0x0C
TABLE_OFFSET_FIELD = 0x14
TEXT_OFFSET_FIELD = 0x18
MIN_HEADER_SIZE = 0x1C

PROFILE_SCRAMBLED = "A"
PROFILE_PLAIN_HEADER = "B"

ROW_SIZE = 0x10
INDEXES_PER_LINE = 8
LENGTH_SHIFT = 22
LOCAL_OFFSET_MASK = 0xFFFF
EXTEND_STEP = 0x10000

_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


class TxrcFormatError(RuntimeError):
    pass


class DocumentFormatError(RuntimeError):
    pass


@dataclass
class PointerTable:
    words: list[int] = field(default_factory=list)
    strings: list[str] = field(default_factory=list)
    indexes: list[int] = field(default_factory=list)
    skipped_slots: list[int] = field(default_factory=list)
    extend_steps: int = 0
    invalid_utf8: list[int] = field(default_factory=list)


@dataclass
class TxrcDocument:
    header: bytes
    strings: list[str]
    indexes: list[int]


def scramble(data: bytes) -> bytes:
    """
    XOR stream keyed by data[4:8]; applying it twice returns the input.
    The first 8 bytes (magic + key) pass through untouched.
    """
    if len(data) < 8:
        raise TxrcFormatError(f"buffer too short for cipher key ({len(data)} bytes)")
    k0, k1, k2, k3 = data[KEY_OFFSET : KEY_OFFSET + 4]
    key = (k0, k1, k2)
    out = bytearray(data)
    for i in range(8, len(data)):
        out[i] = data[i] ^ ((key[i % 3] + (i // 3) * k3) & 0xFF)
    return bytes(out)


def read_u32(data: bytes, pos: int, big_endian: bool = False) -> int:
    return struct.unpack_from(">I" if big_endian else "<I", data, pos)[0]


def write_u32(buf: bytearray, pos: int, value: int, big_endian: bool = False) -> None:
    struct.pack_into(">I" if big_endian else "<I", buf, pos, value & 0xFFFFFFFF)


def detect_profile(data: bytes) -> str:
    if len(data) < MIN_HEADER_SIZE:
        raise TxrcFormatError(f"container too short ({len(data)} bytes)")
    if data[PROFILE_FLAG_OFFSET] == 0:
        return PROFILE_PLAIN_HEADER
    return PROFILE_SCRAMBLED


def unscramble_container(data: bytes, source: str = "<memory>") -> tuple[bytes, str]:
    profile = detect_profile(data)
    plain = bytearray(scramble(data))
    if profile == PROFILE_PLAIN_HEADER:
        # header and pointer table are stored unscrambled
        header_size = read_u32(data, TEXT_OFFSET_FIELD, big_endian=True)
        if header_size > len(data):
            raise TxrcFormatError(
                f"{source}: plain header size {header_size} exceeds file size {len(data)}"
            )
        plain[:header_size] = data[:header_size]
    return bytes(plain), profile


def read_offsets(plain: bytes, big_endian: bool, source: str = "<memory>") -> tuple[int, int]:
    if len(plain) < MIN_HEADER_SIZE:
        raise TxrcFormatError(f"{source}: container too short ({len(plain)} bytes)")
    table_offset = read_u32(plain, TABLE_OFFSET_FIELD, big_endian)
    text_offset = read_u32(plain, TEXT_OFFSET_FIELD, big_endian)
    if table_offset < MIN_HEADER_SIZE:
        raise TxrcFormatError(
            f"{source}: table offset 0x{table_offset:X} overlaps header fields"
        )
    if table_offset > text_offset:
        raise TxrcFormatError(
            f"{source}: table offset 0x{table_offset:X} > text offset 0x{text_offset:X}"
        )
    if text_offset > len(plain):
        raise TxrcFormatError(
            f"{source}: text offset 0x{text_offset:X} outside file ({len(plain)} bytes)"
        )
    if (text_offset - table_offset) % 4 != 0:
        raise TxrcFormatError(
            f"{source}: pointer table size {text_offset - table_offset} is not a multiple of 4"
        )
    return table_offset, text_offset


def escape_line_breaks(text: str) -> str:
    return text.replace("\r", "\\r").replace("\n", "\\n")


def unescape_line_breaks(text: str) -> str:
    return text.replace("\\r", "\r").replace("\\n", "\n")


def decode_pointer_table(
    plain: bytes, table_offset: int, text_offset: int, big_endian: bool
) -> PointerTable:
    table = PointerTable()
    seen: dict[int, int] = {}
    extend = 0
    size = len(plain)

    for pos in range(table_offset, text_offset, 4):
        word = read_u32(plain, pos, big_endian)
        slot = seen.get(word)
        if slot is None:
            length = word >> LENGTH_SHIFT
            local_offset = word & LOCAL_OFFSET_MASK
            string_pos = local_offset + text_offset + extend

            # out of range -> padding at the end of the table
            if string_pos > size or length > size - string_pos:
                table.skipped_slots.append(pos)
                continue

            if local_offset + length > LOCAL_OFFSET_MASK:
                extend += EXTEND_STEP
                table.extend_steps += 1

            raw = plain[string_pos : string_pos + length]
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError:
                text = raw.decode("utf-8", errors="replace")
                table.invalid_utf8.append(len(table.words))

            slot = len(table.words)
            seen[word] = slot
            table.words.append(word)
            table.strings.append(escape_line_breaks(text))

        table.indexes.append(slot)

    return table


def pack_entry_word(length: int, text_pos: int) -> int:
    if length == 0:
        return 0
    return ((length << LENGTH_SHIFT) | text_pos) & 0xFFFFFFFF


def encode_pointer_table(
    strings: list[str], indexes: list[int], big_endian: bool
) -> tuple[bytes, bytes]:
    """
    Build the pointer table and the text section.

    Every string gets its own copy in the text section, in list order;
    table slots reference them through `indexes`. Both blocks come back
    unpadded.
    """
    text = bytearray()
    words: list[int] = []
    for value in strings:
        raw = unescape_line_breaks(value).encode("utf-8")
        words.append(pack_entry_word(len(raw), len(text)))
        text.extend(raw)

    table = bytearray()
    for slot, index in enumerate(indexes):
        if index < 0 or index >= len(words):
            raise DocumentFormatError(
                f"index #{slot} = 0x{index:04X} has no string (strings: {len(words)})"
            )
        table.extend(struct.pack(">I" if big_endian else "<I", words[index]))

    return bytes(table), bytes(text)


def pad16(data: bytearray) -> None:
    padding = (-len(data)) % ROW_SIZE
    if padding:
        data.extend(b"\x00" * padding)


def render_document(header: bytes, strings: list[str], indexes: list[int]) -> str:
    lines: list[str] = [TEXT_START]
    lines.extend(strings)
    lines.append(TEXT_END)

    lines.append(HEADER_START)
    for row in range(0, len(header), ROW_SIZE):
        lines.append(header[row : row + ROW_SIZE].hex().upper())
    lines.append(HEADER_END)

    lines.append(INDEXES_START)
    for start in range(0, len(indexes), INDEXES_PER_LINE):
        chunk = indexes[start : start + INDEXES_PER_LINE]
        line = "".join(f"{value:04X}" for value in chunk)
        lines.append(line.ljust(16, "0"))
    lines.append(INDEXES_END)

    return "\n".join(lines).rstrip()


def _hex_bytes(line: str, section: str, line_no: int) -> bytes:
    try:
        return bytes.fromhex(line.strip())
    except ValueError as exc:
        raise DocumentFormatError(
            f"line {line_no}: invalid hex in {section} section: {line!r}"
        ) from exc


def split_document_lines(text: str) -> list[str]:
    return _LINE_SPLIT.split(text)


def parse_document(lines: Iterable[str] | str) -> TxrcDocument:
    if isinstance(lines, str):
        lines = split_document_lines(lines)
    rows = list(lines)

    header = bytearray()
    index_bytes = bytearray()
    strings: list[str] = []
    found: set[str] = set()

    line_idx = 0
    while line_idx < len(rows):
        marker = SECTION_MARKERS.get(rows[line_idx])
        line_idx += 1
        if marker is None:
            if rows[line_idx - 1] in END_MARKERS:
                raise DocumentFormatError(
                    f"line {line_idx}: end marker {rows[line_idx - 1]!r} without a start marker"
                )
            continue

        section, end_marker = marker
        if section in found:
            raise DocumentFormatError(f"line {line_idx}: repeated {section.upper()} section")
        found.add(section)
        while True:
            if line_idx >= len(rows):
                raise DocumentFormatError(f"missing end marker {end_marker!r}")
            line = rows[line_idx]
            if line == end_marker:
                line_idx += 1
                break
            if line in ALL_MARKERS:
                raise DocumentFormatError(
                    f"line {line_idx + 1}: unexpected marker {line!r} inside {section.upper()} section"
                )
            if section == "header":
                header.extend(_hex_bytes(line, section, line_idx + 1))
            elif section == "indexes":
                index_bytes.extend(_hex_bytes(line, section, line_idx + 1))
            else:
                strings.append(line)
            line_idx += 1

    if "header" not in found:
        raise DocumentFormatError("missing HEADER section")
    if len(index_bytes) % 2:
        index_bytes.append(0)

    indexes = [value for (value,) in struct.iter_unpack(">H", bytes(index_bytes))]
    return TxrcDocument(header=bytes(header), strings=strings, indexes=indexes)


def decode(data: bytes, source: str = "<memory>") -> str:
    plain, profile = unscramble_container(data, source)
    big_endian = profile == PROFILE_PLAIN_HEADER
    table_offset, text_offset = read_offsets(plain, big_endian, source)
    table = decode_pointer_table(plain, table_offset, text_offset, big_endian)
    # rows are always full width, an unaligned last row runs into the table
    header = plain[0 : table_offset + (-table_offset) % ROW_SIZE]
    return render_document(header, table.strings, table.indexes)


def encode(lines: Iterable[str] | str) -> bytes:
    doc = parse_document(lines)
    if len(doc.header) < MIN_HEADER_SIZE:
        raise DocumentFormatError(
            f"header block too short ({len(doc.header)} bytes, need {MIN_HEADER_SIZE})"
        )

    big_endian = doc.header[PROFILE_FLAG_OFFSET] == 0
    table, text = encode_pointer_table(doc.strings, doc.indexes, big_endian)

    head = bytearray(doc.header)
    head.extend(table)
    pad16(head)
    write_u32(head, TEXT_OFFSET_FIELD, len(head), big_endian)
    header_block_size = len(head)

    body = bytearray(text)
    pad16(body)

    plain = bytes(head) + bytes(body)
    out = bytearray(scramble(plain))
    if big_endian:
        out[:header_block_size] = plain[:header_block_size]
    return bytes(out)


def parse_txrc(data: bytes, source: str = "<memory>") -> dict[str, Any]:
    plain, profile = unscramble_container(data, source)
    big_endian = profile == PROFILE_PLAIN_HEADER
    table_offset, text_offset = read_offsets(plain, big_endian, source)
    table = decode_pointer_table(plain, table_offset, text_offset, big_endian)

    issues: list[str] = []
    if table_offset % ROW_SIZE:
        issues.append(f"table offset 0x{table_offset:X} not aligned to 16")
    if text_offset % ROW_SIZE:
        issues.append(f"text offset 0x{text_offset:X} not aligned to 16")
    if len(data) % ROW_SIZE:
        issues.append(f"file size {len(data)} not aligned to 16")
    if table.skipped_slots:
        issues.append(
            f"{len(table.skipped_slots)} table slot(s) point outside the text section"
        )
    for slot in table.invalid_utf8:
        issues.append(f"string #{slot} is not valid UTF-8")
    if len(table.words) > 0xFFFF:
        issues.append(f"{len(table.words)} unique strings exceed 4-digit index width")
    if table.extend_steps:
        issues.append(f"text section crosses 64K boundary {table.extend_steps} time(s)")

    return {
        "format": "TXRC",
        "source": source,
        "profile": profile,
        "big_endian": big_endian,
        "size": len(data),
        "magic_hex": plain[0:4].hex(),
        "key_hex": plain[KEY_OFFSET : KEY_OFFSET + 4].hex(),
        "table_offset": table_offset,
        "text_offset": text_offset,
        "slot_count": (text_offset - table_offset) // 4,
        "index_count": len(table.indexes),
        "unique_count": len(table.words),
        "skipped_slots": table.skipped_slots,
        "extend_steps": table.extend_steps,
        "issues": issues,
    }
