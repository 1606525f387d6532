"""Tests for the stage sequencer."""

import pytest

from provisioner.jobs.models import WorkItem
from provisioner.jobs.stages import (
    ItemContext,
    SequenceStatus,
    SkipRemaining,
    Stage,
    StageError,
    StageSequencer,
)


def _context(logs=None, options=None):
    def emit(level, message, data):
        if logs is not None:
            logs.append((level.value, message, data))

    return ItemContext(
        item=WorkItem(key="example.com"),
        attempt=1,
        collaborators=None,
        options=options or {},
        emit=emit,
    )


class TestStageSequencer:
    @pytest.mark.asyncio
    async def test_runs_stages_in_order_and_merges_payload(self):
        calls = []

        async def first(ctx):
            calls.append("first")
            return {"username": "abc"}

        async def second(ctx):
            calls.append("second")
            # Earlier contributions are visible
            return {"greeting": f"hello {ctx.state['username']}"}

        sequencer = StageSequencer(
            [Stage("first", first), Stage("second", second)], lambda: False
        )
        result = await sequencer.run(_context())

        assert result.ok
        assert calls == ["first", "second"]
        assert result.payload == {"username": "abc", "greeting": "hello abc"}
        assert result.completed_stages == ["first", "second"]

    @pytest.mark.asyncio
    async def test_first_failure_aborts_remaining(self):
        calls = []

        async def ok(ctx):
            calls.append("ok")
            return {"created": True}

        async def broken(ctx):
            raise StageError("Account creation failed", code="WHM_API_ERROR")

        async def never(ctx):
            calls.append("never")

        sequencer = StageSequencer(
            [Stage("ok", ok), Stage("broken", broken), Stage("never", never)],
            lambda: False,
        )
        result = await sequencer.run(_context())

        assert result.status == SequenceStatus.FAILED
        assert result.stage == "broken"
        assert result.error.code == "WHM_API_ERROR"
        assert result.error.message == "Account creation failed"
        # No rollback: effects of earlier stages are kept in the payload
        assert result.payload == {"created": True}
        assert calls == ["ok"]

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_a_stage_error(self):
        async def broken(ctx):
            raise KeyError("cpanel_user")

        sequencer = StageSequencer([Stage("broken", broken)], lambda: False)
        result = await sequencer.run(_context())

        assert result.status == SequenceStatus.FAILED
        assert result.error.code == "STAGE_ERROR"
        assert "cpanel_user" in result.error.message

    @pytest.mark.asyncio
    async def test_skip_remaining(self):
        logs = []

        async def exists(ctx):
            raise SkipRemaining("Domain example.com already exists")

        async def never(ctx):
            raise AssertionError("not reached")

        sequencer = StageSequencer(
            [Stage("check", exists), Stage("create", never)], lambda: False
        )
        result = await sequencer.run(_context(logs))

        assert result.status == SequenceStatus.SKIPPED
        assert result.error.code == "ALREADY_EXISTS"
        assert logs[-1][0] == "warn"
        assert logs[-1][1] == "Domain example.com already exists. Skipping."

    @pytest.mark.asyncio
    async def test_stop_checked_before_each_stage(self):
        stopped = False

        async def first(ctx):
            nonlocal stopped
            stopped = True
            return {"step": 1}

        async def second(ctx):
            raise AssertionError("not reached")

        sequencer = StageSequencer(
            [Stage("first", first), Stage("second", second)], lambda: stopped
        )
        result = await sequencer.run(_context())

        assert result.status == SequenceStatus.FORCE_STOPPED
        assert result.stage == "second"
        assert result.error.code == "FORCE_STOPPED"
        assert result.completed_stages == ["first"]

    @pytest.mark.asyncio
    async def test_stage_description_is_logged(self):
        logs = []

        async def noop(ctx):
            return None

        sequencer = StageSequencer(
            [Stage("dns", noop, "Configuring DNS record")], lambda: False
        )
        await sequencer.run(_context(logs))

        assert logs[0][1] == "Stage: Configuring DNS record"
        assert logs[0][2] == {"stage": "dns"}
