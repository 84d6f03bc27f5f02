"""Unit tests for the pydantic models in git_engine.models."""

import pytest
from pydantic import ValidationError

from git_engine.models import (
    OPTIONS_BY_OPERATION,
    BranchOptions,
    CheckoutOptions,
    CommitOptions,
    DiffOptions,
    FileStat,
    GitOperation,
    MergeOptions,
    OperationContext,
    OperationRequest,
    ProcessResult,
    PushRefResult,
    RequestContext,
    ResetOptions,
    StashOptions,
    StatusOptions,
    StatusResult,
)


class TestOptionsModels:
    """Per-operation option models."""

    def test_every_operation_has_options(self):
        assert set(OPTIONS_BY_OPERATION) == set(GitOperation)

    @pytest.mark.parametrize("operation", list(GitOperation))
    def test_unknown_fields_rejected(self, operation):
        model = OPTIONS_BY_OPERATION[operation]
        with pytest.raises(ValidationError):
            model.model_validate({"definitely_not_an_option": True})

    def test_defaults_are_explicit(self):
        opts = StatusOptions()
        assert opts.include_untracked is True
        assert opts.include_ignored is False

    def test_options_are_frozen(self):
        opts = StatusOptions()
        with pytest.raises(ValidationError):
            opts.include_ignored = True

    def test_commit_requires_message(self):
        with pytest.raises(ValidationError):
            CommitOptions()
        with pytest.raises(ValidationError):
            CommitOptions(message="")

    def test_diff_target_requires_ref(self):
        with pytest.raises(ValidationError, match="target requires ref"):
            DiffOptions(target="HEAD~1")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"action": "create"},
            {"action": "delete"},
            {"action": "rename", "name": "old"},
        ],
    )
    def test_branch_required_fields(self, kwargs):
        with pytest.raises(ValidationError):
            BranchOptions(**kwargs)

    def test_checkout_requires_ref_or_paths(self):
        with pytest.raises(ValidationError):
            CheckoutOptions()
        assert CheckoutOptions(paths=["a.txt"]).paths == ["a.txt"]

    def test_merge_exclusive_modes(self):
        with pytest.raises(ValidationError):
            MergeOptions(branch="feature", no_ff=True, ff_only=True)
        with pytest.raises(ValidationError):
            MergeOptions()
        assert MergeOptions(abort=True).abort is True

    @pytest.mark.parametrize(
        "kwargs,expected",
        [
            ({"branch": "f"}, True),
            ({"branch": "f", "no_ff": True}, True),
            ({"branch": "f", "squash": True}, False),
            ({"branch": "f", "ff_only": True}, False),
            ({"abort": True}, False),
        ],
    )
    def test_merge_creates_merge_commit(self, kwargs, expected):
        assert MergeOptions(**kwargs).creates_merge_commit is expected

    def test_reset_paths_only_with_mixed(self):
        with pytest.raises(ValidationError):
            ResetOptions(mode="hard", paths=["a.txt"])
        assert ResetOptions(paths=["a.txt"]).mode == "mixed"

    def test_stash_drop_requires_index(self):
        with pytest.raises(ValidationError):
            StashOptions(action="drop")
        assert StashOptions(action="drop", index=0).index == 0


class TestContextModels:
    """Request and operation contexts."""

    def test_trace_id_generated(self):
        assert RequestContext().trace_id != RequestContext().trace_id

    def test_effective_tenant_override(self):
        ctx = OperationContext(
            request_context=RequestContext(tenant_id="from-request"),
            tenant_id="override",
        )
        assert ctx.effective_tenant == "override"
        assert OperationContext().effective_tenant == "default"

    @pytest.mark.parametrize("path", ["relative/dir", "/repo/../etc"])
    def test_request_rejects_bad_working_directory(self, path):
        with pytest.raises(ValidationError):
            OperationRequest(
                operation=GitOperation.STATUS,
                options=StatusOptions(),
                working_directory=path,
                context=OperationContext(),
            )


class TestResultModels:
    """Derived properties on results."""

    @pytest.mark.parametrize(
        "kwargs,ok",
        [
            ({"exit_code": 0}, True),
            ({"exit_code": 1}, False),
            ({"exit_code": None, "timed_out": True}, False),
            ({"exit_code": 0, "truncated": True}, False),
        ],
    )
    def test_process_result_ok(self, kwargs, ok):
        assert ProcessResult(**kwargs).ok is ok

    def test_status_is_clean(self):
        assert StatusResult(branch="main").is_clean
        assert not StatusResult(untracked=["new.txt"]).is_clean
        assert not StatusResult(staged=["a.txt"], added=["a.txt"]).is_clean

    def test_file_stat_binary(self):
        assert FileStat(path="img.png", additions=None, deletions=None).binary
        assert not FileStat(path="a.txt", additions=1, deletions=0).binary

    def test_push_ref_rejected(self):
        ref = PushRefResult(flag="!", local_ref="refs/heads/main",
                            remote_ref="refs/heads/main", summary="[rejected] (fetch first)")
        assert ref.rejected
