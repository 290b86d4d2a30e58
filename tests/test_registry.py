import pytest

from bunpatch.errors import AlreadyPatched, PatchError, PatternNotFound
from bunpatch.settings import PatchSettings
from bunpatch.textpatch import PatchStatus, patch_or_raise, run_patches
from bunpatch.textpatch.registry import PATCHES, PATCHES_BY_ID

TEXT = ('keys:["Ctrl+K"];'
        'function cl(A){return 200000}'
        'z(()=>{if(!k){s(4);return}t((n)=>n+1)},120);')


def _statuses(run):
    return {o.patch_id: o.status for o in run.outcomes}


def test_every_patch_has_a_setting():
    fields = PatchSettings.__dataclass_fields__
    for patch in PATCHES:
        assert patch.setting in fields
        assert patch.candidates
    assert len(PATCHES_BY_ID) == len(PATCHES)


def test_driver_continues_after_missing_target():
    settings = PatchSettings(remove_new_session_shortcut=True, context_limit_env=True,
                             thinker_speed=50, allow_bypass_perms_in_sudo=True)
    run = run_patches(TEXT, settings)
    statuses = _statuses(run)
    assert statuses["remove_new_session_shortcut"] is PatchStatus.APPLIED
    assert statuses["context_limit"] is PatchStatus.APPLIED
    assert statuses["thinker_speed"] is PatchStatus.APPLIED
    assert statuses["allow_bypass_perms_in_sudo"] is PatchStatus.NOT_FOUND
    assert statuses["themes"] is PatchStatus.SKIPPED
    assert [o.patch_id for o in run.failed] == ["allow_bypass_perms_in_sudo"]
    assert run.changed
    assert '"Cmd+Shift+T"' in run.text
    assert "},50);" in run.text
    assert "CLAUDE_CODE_CONTEXT_LIMIT" in run.text


def test_second_run_reports_already_applied():
    settings = PatchSettings(context_limit_env=True)
    first = run_patches(TEXT, settings)
    second = run_patches(first.text, settings)
    assert _statuses(second)["context_limit"] is PatchStatus.ALREADY_APPLIED
    assert second.text == first.text
    assert not second.changed


def test_only_limits_the_batch():
    settings = PatchSettings(remove_new_session_shortcut=True, thinker_speed=50)
    run = run_patches(TEXT, settings, only=["thinker_speed"])
    assert [o.patch_id for o in run.outcomes] == ["thinker_speed"]
    assert '"Ctrl+K"' in run.text


def test_unknown_patch_id():
    with pytest.raises(PatchError):
        run_patches(TEXT, PatchSettings(), only=["nope"])


def test_nothing_enabled_leaves_text_alone():
    run = run_patches(TEXT, PatchSettings())
    assert run.text == TEXT
    assert all(o.status is PatchStatus.SKIPPED for o in run.outcomes)
    assert not run.failed


def test_patch_or_raise():
    patched = patch_or_raise(TEXT, "context_limit", True)
    assert "CLAUDE_CODE_CONTEXT_LIMIT" in patched
    with pytest.raises(AlreadyPatched):
        patch_or_raise(patched, "context_limit", True)
    with pytest.raises(PatternNotFound) as info:
        patch_or_raise(TEXT, "allow_bypass_perms_in_sudo", True)
    assert info.value.patch_id == "allow_bypass_perms_in_sudo"
    with pytest.raises(PatchError):
        patch_or_raise(TEXT, "nope", True)
