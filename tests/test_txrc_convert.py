from __future__ import annotations

import json

import txrc_codec as codec
import txrc_convert
from txrc_samples import build_container, word

TABLE = [word(5, 0), 0, word(5, 5), word(5, 0)]
TEXT = b"HelloWorld" + b"\x00" * 6


def test_convert_both_directions(tmp_path, capsys):
    original = build_container(TABLE, TEXT)
    source = tmp_path / "menu.txrc"
    source.write_bytes(original)

    assert txrc_convert.main(["convert", str(source)]) == 0
    document = tmp_path / "menu.txrc.txt"
    assert document.read_text(encoding="utf-8") == codec.decode(original)
    assert "Done: menu.txrc -> menu.txrc.txt" in capsys.readouterr().out

    assert txrc_convert.main(["convert", str(document)]) == 0
    assert (tmp_path / "menu.txrc.txt.txrc").read_bytes() == original


def test_convert_extension_is_case_insensitive(tmp_path):
    source = tmp_path / "MENU.TXRC"
    source.write_bytes(build_container(TABLE, TEXT, profile="B"))
    assert txrc_convert.main(["convert", str(source)]) == 0
    assert (tmp_path / "MENU.TXRC.txt").is_file()


def test_convert_batch_continues_after_failures(tmp_path, capsys):
    good = tmp_path / "good.txrc"
    good.write_bytes(build_container(TABLE, TEXT))
    broken = tmp_path / "broken.txrc"
    broken.write_bytes(b"\x01" * 12)
    other = tmp_path / "notes.bin"
    other.write_bytes(b"data")
    bad_doc = tmp_path / "bad.txt"
    bad_doc.write_text(codec.TEXT_START + "\nno end marker\n", encoding="utf-8")

    code = txrc_convert.main(
        ["convert", str(broken), str(other), str(tmp_path / "missing.txrc"), str(bad_doc), str(good)]
    )

    assert code == 1
    assert (tmp_path / "good.txrc.txt").is_file()
    assert not (tmp_path / "broken.txrc.txt").exists()
    assert not (tmp_path / "bad.txt.txrc").exists()
    captured = capsys.readouterr()
    assert "[error] notes.bin: not a .txrc or .txt file" in captured.err
    assert "[error] broken.txrc:" in captured.err
    assert "missing.txrc: file not found" in captured.err
    assert "[error] bad.txt: missing end marker" in captured.err
    assert "Done: good.txrc -> good.txrc.txt" in captured.out


def test_convert_dry_run_writes_nothing(tmp_path):
    source = tmp_path / "menu.txrc"
    source.write_bytes(build_container(TABLE, TEXT))
    assert txrc_convert.main(["convert", "--dry-run", str(source)]) == 0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["menu.txrc"]


def test_info_json(tmp_path, capsys):
    source = tmp_path / "menu.txrc"
    source.write_bytes(build_container(TABLE, TEXT, profile="B"))
    assert txrc_convert.main(["info", "--input", str(source), "--json"]) == 0
    info = json.loads(capsys.readouterr().out)
    assert info["profile"] == "B"
    assert info["big_endian"] is True
    assert info["table_offset"] == 0x20
    assert info["text_offset"] == 0x30
    assert info["unique_count"] == 3
    assert info["index_count"] == 4
    assert info["issues"] == []


def test_scan_lists_profiles(tmp_path, capsys):
    (tmp_path / "sub").mkdir()
    (tmp_path / "a.txrc").write_bytes(build_container(TABLE, TEXT))
    (tmp_path / "sub" / "b.txrc").write_bytes(build_container(TABLE, TEXT, profile="B"))
    (tmp_path / "c.txt").write_text("ignored", encoding="utf-8")
    (tmp_path / "short.txrc").write_bytes(b"\x00" * 4)

    assert txrc_convert.main(["scan", "--input", str(tmp_path), "--json"]) == 0
    captured = capsys.readouterr()
    rows = json.loads(captured.out)
    assert [(row["relative_path"], row["profile"]) for row in rows] == [
        ("a.txrc", "A"),
        ("sub/b.txrc", "B"),
    ]
    assert "[warn] cannot read" in captured.err


def test_validate_report(tmp_path, capsys):
    data_root = tmp_path / "data"
    data_root.mkdir()
    (data_root / "a.txrc").write_bytes(build_container(TABLE, TEXT))
    (data_root / "b.txrc").write_bytes(build_container(TABLE, TEXT, profile="B"))
    # a 4-byte table does not survive the 16-byte realignment
    (data_root / "c.txrc").write_bytes(build_container([word(4, 0)], b"test"))
    report_path = tmp_path / "report.json"

    code = txrc_convert.main(["validate", "--input", str(data_root), "--report", str(report_path)])
    assert code == 0
    report = json.loads(report_path.read_text(encoding="utf-8"))
    assert report["containers_total"] == 3
    assert report["summary"]["matches"] == 2
    assert report["summary"]["mismatches"] == 1
    assert report["summary"]["errors"] == 0
    unaligned = [row for row in report["results"] if row["relative_path"] == "c.txrc"][0]
    assert unaligned["match"] is False
    assert unaligned["first_diff_offset"] is not None
    assert "Roundtrip match: 2/3" in capsys.readouterr().out

    code = txrc_convert.main(["validate", "--input", str(data_root), "--fail-on-diff"])
    assert code == 1


def test_first_diff():
    assert txrc_convert.first_diff(b"abc", b"abc") == (None, None)
    assert txrc_convert.first_diff(b"abc", b"abd") == (2, "63!=64")
    assert txrc_convert.first_diff(b"ab", b"abc") == (2, "len 2!=3")
