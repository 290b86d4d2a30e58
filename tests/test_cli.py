import json

from bunpatch.cli import main
from bunpatch.extract import extract_payload
from conftest import make_elf, make_payload

JS = b'keys:["Ctrl+K"];function cl(A){return 200000}'


def _binary(tmp_path, entry=JS):
    path = tmp_path / "claude"
    payload = make_payload([("/$bunfs/root/lib.js", b"lib()"), ("/$bunfs/root/claude", entry)],
                           entry_point_id=1)
    path.write_bytes(make_elf(payload.payload))
    return path


def _settings(tmp_path, **values):
    path = tmp_path / "tweaks.json"
    path.write_text(json.dumps(values))
    return path


def test_list_patches(capsys):
    assert main(["list-patches"]) == 0
    out = capsys.readouterr().out
    assert "thinker_speed" in out
    assert "context_limit_env" in out


def test_info_json(tmp_path, capsys):
    binary = _binary(tmp_path)
    assert main(["info", str(binary), "--json"]) == 0
    info = json.loads(capsys.readouterr().out)
    assert info["format"] == "elf"
    assert info["entry_point_id"] == 1
    assert [m["name"] for m in info["modules"]] == ["/$bunfs/root/lib.js", "/$bunfs/root/claude"]


def test_info_text(tmp_path, capsys):
    binary = _binary(tmp_path)
    assert main(["info", str(binary)]) == 0
    out = capsys.readouterr().out
    assert "entry point #1, 2 modules" in out
    assert "/$bunfs/root/claude" in out


def test_missing_input(tmp_path):
    assert main(["info", str(tmp_path / "nope")]) == 1


def test_not_a_bun_binary(tmp_path):
    path = tmp_path / "plain"
    path.write_bytes(b"#!/bin/sh\necho hi\n")
    assert main(["info", str(path)]) == 2


def test_unpack_edit_repack(tmp_path):
    binary = _binary(tmp_path)
    modules = tmp_path / "mods"
    assert main(["unpack", str(binary), "-o", str(modules)]) == 0
    assert (modules / "claude.js").read_bytes() == JS
    assert (modules / "lib.js").read_bytes() == b"lib()"
    (modules / "lib.js").write_bytes(b"lib(2)")

    out = tmp_path / "claude.new"
    assert main(["repack", str(binary), str(out), "--modules", str(modules)]) == 0
    ex = extract_payload(out)
    assert ex.module_contents(ex.modules[0]) == b"lib(2)"
    assert ex.module_contents(ex.entry_module) == JS


def test_patch_js(tmp_path):
    src = tmp_path / "cli.js"
    src.write_bytes(JS)
    dst = tmp_path / "cli.patched.js"
    settings = _settings(tmp_path, remove_new_session_shortcut=True)
    assert main(["patch-js", str(src), str(dst), "--settings", str(settings)]) == 0
    assert b'"Cmd+Shift+T"' in dst.read_bytes()


def test_patch_js_reports_missing_target(tmp_path):
    src = tmp_path / "cli.js"
    src.write_bytes(JS)
    dst = tmp_path / "out.js"
    settings = _settings(tmp_path, remove_new_session_shortcut=True, allow_bypass_perms_in_sudo=True)
    assert main(["patch-js", str(src), str(dst), "--settings", str(settings)]) == 3
    assert b'"Cmd+Shift+T"' in dst.read_bytes()


def test_patch_js_bad_settings(tmp_path):
    src = tmp_path / "cli.js"
    src.write_bytes(JS)
    settings = _settings(tmp_path, no_such_patch=True)
    assert main(["patch-js", str(src), str(tmp_path / "o.js"), "--settings", str(settings)]) == 2


def test_patch_binary(tmp_path):
    binary = _binary(tmp_path)
    out = tmp_path / "claude.patched"
    settings = _settings(tmp_path, context_limit_env=True)
    assert main(["patch", str(binary), str(out), "--settings", str(settings)]) == 0
    ex = extract_payload(out)
    assert b"CLAUDE_CODE_CONTEXT_LIMIT" in ex.module_contents(ex.entry_module)
    assert ex.module_contents(ex.modules[0]) == b"lib()"


def test_patch_binary_unchanged_is_not_written(tmp_path):
    binary = _binary(tmp_path, entry=b"nothing to see")
    out = tmp_path / "claude.patched"
    settings = _settings(tmp_path, context_limit_env=True)
    assert main(["patch", str(binary), str(out), "--settings", str(settings)]) == 3
    assert not out.exists()


def test_patch_binary_targets_the_claude_module(tmp_path):
    path = tmp_path / "claude"
    payload = make_payload([("/$bunfs/root/node_modules/foo/cli.js", JS),
                            ("/$bunfs/root/notclaude", JS),
                            ("/$bunfs/root/claude", JS)], entry_point_id=0)
    path.write_bytes(make_elf(payload.payload))
    out = tmp_path / "claude.patched"
    settings = _settings(tmp_path, context_limit_env=True)
    assert main(["patch", str(path), str(out), "--settings", str(settings)]) == 0
    ex = extract_payload(out)
    contents = [ex.module_contents(m) for m in ex.modules]
    assert contents[0] == JS
    assert contents[1] == JS
    assert b"CLAUDE_CODE_CONTEXT_LIMIT" in contents[2]
