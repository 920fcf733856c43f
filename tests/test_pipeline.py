import os
import signal

import pytest
from conftest import FakeHost, ScriptedPrompter

from arch_installer.errors import (
    ConfigurationCorrupt,
    ExternalCommandFailed,
    InvalidInput,
    PreconditionFailed,
    UserCancelled,
)
from arch_installer.lib.chroot import CHROOT, INSTALLED, LIVECD, UNKNOWN
from arch_installer.pipeline import (
    HOST_SIDE,
    IN_CHROOT,
    INSTALLED_SYSTEM,
    ROOT,
    USER,
    Gate,
    Stage,
    deferred_interrupts,
    run_stage,
)
from arch_installer.state_store import KeyValueStore
from arch_installer.validators import validate_hostname


class HostnameStage(Stage):
    stage_id = "hostname"
    marker = "90-hostname-set"
    title = "Set hostname"
    privilege = ROOT

    def interact(self, ctx):
        ctx.ask("HOSTNAME", "Hostname", validate_hostname)

    def execute(self, ctx):
        ctx.run(["hostnamectl", "set-hostname", ctx.get("HOSTNAME")], operation="service-enable")


def test_success_persists_decisions_then_marks_done(make_ctx, session, fake_run):
    ctx = make_ctx(answers={"HOSTNAME": "arch-desktop"})
    result = run_stage(HostnameStage(), ctx)

    assert result.ran
    assert result.decisions == {"HOSTNAME": "arch-desktop"}
    assert session.progress.is_done("90-hostname-set")
    assert KeyValueStore.load(session.info_path).get("HOSTNAME") == "arch-desktop"
    assert fake_run.calls == [["hostnamectl", "set-hostname", "arch-desktop"]]


def test_invalid_hostname_is_reprompted_without_touching_the_store(make_ctx, session, fake_run):
    prompter = ScriptedPrompter(texts=["-bad-", "arch-desktop"])
    ctx = make_ctx(prompter=prompter)

    run_stage(HostnameStage(), ctx)

    assert prompter.messages == ["Hostname", "Hostname"]
    assert len(prompter.errors) == 1
    assert isinstance(prompter.errors[0], InvalidInput)
    assert session.store.get("HOSTNAME") == "arch-desktop"


def test_invalid_answer_in_non_interactive_mode_fails(make_ctx, session, fake_run):
    ctx = make_ctx(answers={"HOSTNAME": "-bad-"})
    with pytest.raises(InvalidInput):
        run_stage(HostnameStage(), ctx)
    assert not session.info_path.exists()
    assert fake_run.calls == []


def test_missing_answer_in_non_interactive_mode_names_the_flag(make_ctx):
    with pytest.raises(InvalidInput) as exc:
        run_stage(HostnameStage(), make_ctx())
    assert "--set HOSTNAME=" in exc.value.fix


def test_failed_execution_persists_nothing(make_ctx, session, fake_run):
    fake_run.failures["hostnamectl"] = 1
    ctx = make_ctx(answers={"HOSTNAME": "arch-desktop"})

    with pytest.raises(ExternalCommandFailed):
        run_stage(HostnameStage(), ctx)

    assert not session.info_path.exists()
    assert not session.progress.is_done("90-hostname-set")


def test_interrupt_during_execution_leaves_state_unchanged(make_ctx, session, fake_run):
    session.store.set("TIMEZONE", "Europe/Berlin")
    session.save()
    before = session.info_path.read_text()

    fake_run.interrupt_on = "hostnamectl"
    ctx = make_ctx(answers={"HOSTNAME": "arch-desktop"})
    with pytest.raises(KeyboardInterrupt):
        run_stage(HostnameStage(), ctx)

    assert session.info_path.read_text() == before
    assert not session.progress.is_done("90-hostname-set")


def test_deferred_interrupts_hold_sigint_until_block_ends():
    before = signal.getsignal(signal.SIGINT)
    reached = []
    with pytest.raises(KeyboardInterrupt):
        with deferred_interrupts():
            os.kill(os.getpid(), signal.SIGINT)
            reached.append(True)
    assert reached == [True]
    assert signal.getsignal(signal.SIGINT) is before


def test_completed_stage_is_skipped_without_prompter(make_ctx, session, fake_run):
    session.progress.mark_done("90-hostname-set")
    result = run_stage(HostnameStage(), make_ctx(answers={"HOSTNAME": "x"}, assume_yes=True))
    assert not result.ran
    assert fake_run.calls == []


def test_completed_stage_rerun_when_confirmed(make_ctx, session, fake_run):
    session.progress.mark_done("90-hostname-set")
    prompter = ScriptedPrompter(confirms=[True], texts=["box"])
    result = run_stage(HostnameStage(), make_ctx(prompter=prompter))
    assert result.ran
    assert session.store.get("HOSTNAME") == "box"


def test_force_reruns_completed_stage(make_ctx, session, fake_run):
    session.progress.mark_done("90-hostname-set")
    result = run_stage(HostnameStage(), make_ctx(answers={"HOSTNAME": "box"}), force=True)
    assert result.ran
    assert len(fake_run.calls) == 1


class GatedStage(HostnameStage):
    stage_id = "gated"
    marker = "91-gated"
    gates = (
        Gate("01-partitions-ready", hard=True),
        Gate("02-base-installed", hard=False, reason="base expected"),
    )


def test_hard_gate_blocks_before_any_mutation(make_ctx, session, fake_run):
    session.progress.mark_done("02-base-installed")
    ctx = make_ctx(answers={"HOSTNAME": "box"}, assume_yes=True)
    with pytest.raises(PreconditionFailed) as exc:
        run_stage(GatedStage(), ctx)
    assert "01-partitions-ready" in exc.value.what
    assert not session.info_path.exists()
    assert fake_run.calls == []


def test_soft_gate_non_interactive_needs_yes(make_ctx, session, fake_run):
    session.progress.mark_done("01-partitions-ready")
    with pytest.raises(PreconditionFailed):
        run_stage(GatedStage(), make_ctx(answers={"HOSTNAME": "box"}))

    result = run_stage(GatedStage(), make_ctx(answers={"HOSTNAME": "box"}, assume_yes=True))
    assert result.ran


def test_soft_gate_declined_interactively(make_ctx, session, fake_run):
    session.progress.mark_done("01-partitions-ready")
    prompter = ScriptedPrompter(confirms=[False])
    with pytest.raises(UserCancelled) as exc:
        run_stage(GatedStage(), make_ctx(prompter=prompter))
    assert exc.value.exit_code == 6
    assert fake_run.calls == []


class UserStage(HostnameStage):
    stage_id = "user-stage"
    marker = "92-user"
    privilege = USER


@pytest.fixture
def ctx_for(make_ctx):
    def _make(host, **kwargs):
        return make_ctx(host=host, answers={"HOSTNAME": "box"}, **kwargs)

    return _make


def test_privilege_checks(ctx_for):
    with pytest.raises(PreconditionFailed) as exc:
        run_stage(UserStage(), ctx_for(FakeHost(root=True)))
    assert "root" in exc.value.what

    with pytest.raises(PreconditionFailed) as exc:
        run_stage(HostnameStage(), ctx_for(FakeHost(root=False)))
    assert "must be run as root" in exc.value.what


def _staged(context, needs_network=False):
    class ContextStage(HostnameStage):
        stage_id = "ctx"
        marker = "93-ctx"

    ContextStage.context = context
    ContextStage.needs_network = needs_network
    return ContextStage()


@pytest.mark.parametrize(
    "context,environment",
    [
        (IN_CHROOT, LIVECD),
        (IN_CHROOT, INSTALLED),
        (HOST_SIDE, CHROOT),
        (INSTALLED_SYSTEM, CHROOT),
        (INSTALLED_SYSTEM, LIVECD),
        (INSTALLED_SYSTEM, UNKNOWN),
    ],
)
def test_wrong_context_fails(context, environment, ctx_for, fake_run):
    with pytest.raises(PreconditionFailed):
        run_stage(_staged(context), ctx_for(FakeHost(environment=environment)))
    assert fake_run.calls == []


def test_unverifiable_chroot_asks(ctx_for, fake_run):
    with pytest.raises(UserCancelled):
        run_stage(_staged(IN_CHROOT), ctx_for(FakeHost(environment=UNKNOWN)))
    result = run_stage(_staged(IN_CHROOT), ctx_for(FakeHost(environment=UNKNOWN), assume_yes=True))
    assert result.ran


def test_network_required(ctx_for, fake_run):
    host = FakeHost(environment=INSTALLED, online=False)
    with pytest.raises(PreconditionFailed) as exc:
        run_stage(_staged(INSTALLED_SYSTEM, needs_network=True), ctx_for(host))
    assert "internet" in exc.value.what


def test_network_check_skipped_in_dry_run(ctx_for, fake_run):
    host = FakeHost(environment=INSTALLED, online=False)
    result = run_stage(_staged(INSTALLED_SYSTEM, needs_network=True), ctx_for(host, dry_run=True))
    assert result.ran
    assert host.online_checks == []
    assert fake_run.calls == []


class RecallStage(HostnameStage):
    stage_id = "recall"
    marker = "94-recall"

    def interact(self, ctx):
        ctx.recall("HOSTNAME", "Hostname", validate_hostname)


def test_recall_reuses_valid_stored_value(make_ctx, session, fake_run):
    session.store.set("HOSTNAME", "stored-box")
    run_stage(RecallStage(), make_ctx())
    assert fake_run.calls == [["hostnamectl", "set-hostname", "stored-box"]]


def test_recall_corrupt_value_non_interactive(make_ctx, session, fake_run):
    session.store.set("HOSTNAME", "-bad-")
    with pytest.raises(ConfigurationCorrupt) as exc:
        run_stage(RecallStage(), make_ctx())
    assert exc.value.exit_code == 5
    assert fake_run.calls == []


def test_recall_corrupt_value_is_reentered(make_ctx, session, fake_run):
    session.store.set("HOSTNAME", "-bad-")
    prompter = ScriptedPrompter(texts=["good-box"])
    run_stage(RecallStage(), make_ctx(prompter=prompter))
    assert isinstance(prompter.errors[0], ConfigurationCorrupt)
    assert session.store.get("HOSTNAME") == "good-box"
