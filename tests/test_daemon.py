"""
qntp Synchronization Controller Tests
"""

import errno
import pytest
from dataclasses import replace
from unittest.mock import AsyncMock, Mock, patch

from qntp.api.stats import NTPStat
from qntp.constants import MIN_POLL, POLL_TABLE, NO_QUORUM_RETRY_SEC
from qntp.errors import (
    ErrorCode,
    ClockWriteError,
    NoPeersError,
    StartupFailure,
    FirstSyncNoQuorumError,
)
from qntp.network.server import NTPServer
from qntp.node.daemon import NTPd, Phase, main

from conftest import fake_resolver, scripted_factory, set_offsets


STEADY = [0.010, 0.012, 0.011, 0.009, None]


@pytest.fixture
def daemon(config, fake_clock):
    return NTPd(config, clock=fake_clock, resolver=fake_resolver,
                peer_factory=scripted_factory)


class TestStartup:
    """Tests for init() and first_sync()."""

    @pytest.mark.asyncio
    async def test_init_builds_peers(self, daemon):
        """Every configured name becomes one peer at minimum trust."""
        await daemon.init()
        assert len(daemon.peer_list) == 5
        assert all(p.trust_level == MIN_POLL for p in daemon.peer_list)
        assert all(p.max_samples == 1 for p in daemon.peer_list)
        assert daemon.sleep == POLL_TABLE[0]

    @pytest.mark.asyncio
    async def test_no_peers(self, config, fake_clock):
        """Nothing resolvable is fatal."""
        daemon = NTPd(config, clock=fake_clock, resolver=lambda name: [],
                      peer_factory=scripted_factory)
        with pytest.raises(NoPeersError):
            await daemon.init()

    @pytest.mark.asyncio
    async def test_first_sync(self, daemon, fake_clock):
        """First sync applies the median without leap handling."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)

        median = await daemon.first_sync()

        assert median.resp.clock_offset == 0.011
        fake_clock.apply_offset.assert_called_once_with(0.011, 0, False)
        assert daemon.offset == 0.011
        assert daemon.template.synchronized
        # Trust is only adjusted in steady state
        assert all(p.trust_level == MIN_POLL for p in daemon.peer_list)

    @pytest.mark.asyncio
    async def test_first_sync_force(self, config, fake_clock):
        """force_update is passed through to the clock."""
        config.force_update = True
        daemon = NTPd(config, clock=fake_clock, resolver=fake_resolver,
                      peer_factory=scripted_factory)
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)

        await daemon.first_sync()
        fake_clock.apply_offset.assert_called_once_with(0.011, 0, True)

    @pytest.mark.asyncio
    async def test_first_sync_no_quorum(self, daemon, fake_clock):
        """First sync without quorum is fatal and leaves the clock alone."""
        await daemon.init()
        set_offsets(daemon.peer_list, [0.010, 0.012, None, None, None])

        with pytest.raises(StartupFailure) as exc_info:
            await daemon.first_sync()
        assert isinstance(exc_info.value, FirstSyncNoQuorumError)
        assert exc_info.value.code == ErrorCode.NO_QUORUM
        assert exc_info.value.details == {"eligible": 2, "required": 3}
        fake_clock.apply_offset.assert_not_called()
        assert not daemon.template.synchronized


class TestSteadyState:
    """Tests for run_cycle()."""

    @pytest.mark.asyncio
    async def test_stable_offsets_grow_interval(self, daemon, fake_clock):
        """Small offsets raise trust and lengthen the poll interval."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)

        median = await daemon.run_cycle()
        assert median.resp.clock_offset == 0.011
        fake_clock.apply_offset.assert_called_with(0.011, 0, False)
        assert daemon.sleep == POLL_TABLE[0]
        healthy = [p for p in daemon.peer_list if p.healthy]
        assert len(healthy) == 4
        assert all(p.trust_level == 2 for p in healthy)
        assert daemon.peer_list[4].trust_level == MIN_POLL

        await daemon.run_cycle()
        assert daemon.sleep == POLL_TABLE[1]
        assert daemon.cycles == 2

    @pytest.mark.asyncio
    async def test_trust_capped_at_max_poll(self, daemon):
        """Trust never passes max_poll, so the interval stops growing."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)

        for _ in range(12):
            await daemon.run_cycle()

        assert all(p.trust_level <= daemon.config.max_poll for p in daemon.peer_list)
        assert daemon.sleep == POLL_TABLE[daemon.config.max_poll - MIN_POLL]

    @pytest.mark.asyncio
    async def test_no_quorum_retries(self, daemon, fake_clock):
        """Without quorum the clock is untouched and the retry is quick."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)
        await daemon.run_cycle()
        trust = [p.trust_level for p in daemon.peer_list]
        fake_clock.reset_mock()

        set_offsets(daemon.peer_list, [0.010, 0.012, None, None, None])
        assert await daemon.run_cycle() is None

        fake_clock.apply_offset.assert_not_called()
        assert daemon.sleep == NO_QUORUM_RETRY_SEC
        assert [p.trust_level for p in daemon.peer_list] == trust

    @pytest.mark.asyncio
    async def test_metrics_only_on_completed_cycles(self, config, fake_clock):
        """The sink gets one update per synced cycle and none without quorum."""
        stat = Mock(spec=NTPStat)
        daemon = NTPd(config, clock=fake_clock, stat=stat, resolver=fake_resolver,
                      peer_factory=scripted_factory)
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)

        await daemon.run_cycle()
        stat.set_offset.assert_called_once_with(0.011)
        stat.set_poll.assert_called_once_with(POLL_TABLE[0])
        stat.set_delay.assert_called_once()
        stat.set_dispersion.assert_called_once_with(0.0)
        stat.reset_mock()

        set_offsets(daemon.peer_list, [0.010, 0.012, None, None, None])
        assert await daemon.run_cycle() is None
        assert stat.method_calls == []

    @pytest.mark.asyncio
    async def test_large_offset_resets_trust(self, daemon, fake_clock):
        """A large offset is applied and every peer drops to minimum trust."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)
        await daemon.run_cycle()
        await daemon.run_cycle()

        set_offsets(daemon.peer_list, [0.5, 0.5, 0.5, 0.5, None])
        await daemon.run_cycle()

        fake_clock.apply_offset.assert_called_with(0.5, 0, False)
        assert all(p.trust_level == MIN_POLL for p in daemon.peer_list)
        assert daemon.sleep == POLL_TABLE[0]

    @pytest.mark.asyncio
    async def test_leap_passed_to_clock(self, daemon, fake_clock):
        """The reference's leap indicator reaches the clock in steady state."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)
        for peer in daemon.peer_list[:4]:
            peer.default = replace(peer.default, leap=1)

        await daemon.run_cycle()
        assert fake_clock.apply_offset.call_args[0][1] == 1

    @pytest.mark.asyncio
    async def test_clock_failure_propagates(self, daemon, fake_clock):
        """A failed correction is raised to the caller."""
        await daemon.init()
        set_offsets(daemon.peer_list, STEADY)
        fake_clock.apply_offset.side_effect = ClockWriteError(0.011, "EPERM")

        with pytest.raises(ClockWriteError):
            await daemon.run_cycle()


class TestRun:
    """Tests for the whole lifecycle."""

    @pytest.mark.asyncio
    async def test_clock_failure_ends_run(self, daemon, fake_clock):
        """The loop ends on the first failed correction."""
        daemon._wait = AsyncMock(return_value=True)
        fake_clock.apply_offset.side_effect = [None, ClockWriteError(0.011, "EPERM")]

        # Peers are created by init(), so script them through the factory
        def factory(origin, address, **kwargs):
            peer, err = scripted_factory(origin, address, **kwargs)
            set_offsets([peer], [0.011])
            return peer, err
        daemon.peer_factory = factory

        with pytest.raises(ClockWriteError):
            await daemon.run()

        assert daemon.phase == Phase.STOPPED
        assert daemon.cycles == 1

    @pytest.mark.asyncio
    async def test_stop(self, daemon, fake_clock):
        """stop() ends the loop after the current cycle."""
        daemon._wait = AsyncMock(return_value=True)

        def factory(origin, address, **kwargs):
            peer, err = scripted_factory(origin, address, **kwargs)
            set_offsets([peer], [0.011])
            return peer, err
        daemon.peer_factory = factory

        calls = []

        def apply(offset, leap, force):
            calls.append(offset)
            if len(calls) == 2:
                daemon.stop()
        fake_clock.apply_offset.side_effect = apply

        await daemon.run()

        assert daemon.phase == Phase.STOPPED
        assert daemon.cycles == 1

    @pytest.mark.asyncio
    async def test_bind_failure_is_startup_failure(self, config, fake_clock):
        """A responder port that cannot be bound stops the daemon cleanly."""
        config.listen = "127.0.0.1:1123"

        def factory(origin, address, **kwargs):
            peer, err = scripted_factory(origin, address, **kwargs)
            set_offsets([peer], [0.011])
            return peer, err

        daemon = NTPd(config, clock=fake_clock, resolver=fake_resolver,
                      peer_factory=factory)
        in_use = OSError(errno.EADDRINUSE, "Address already in use")

        with patch.object(NTPServer, "start", new=AsyncMock(side_effect=in_use)):
            with pytest.raises(StartupFailure) as exc_info:
                await daemon.run()

        assert exc_info.value.__cause__ is in_use
        assert daemon.phase == Phase.STOPPED
        assert daemon.cycles == 0

    @pytest.mark.asyncio
    async def test_wait_interrupted_by_stop(self, daemon):
        """_wait() returns False once stop() is called."""
        daemon.stop()
        assert await daemon._wait(60) is False


class TestMain:
    """Tests for the command line entry point."""

    def test_clean_exit(self):
        with patch("qntp.node.daemon.setup_logging"), \
                patch.object(NTPd, "run", new=AsyncMock(return_value=None)):
            assert main(["--peer", "ntp0.example.net", "--dry-run"]) == 0

    def test_startup_failure(self):
        with patch("qntp.node.daemon.setup_logging"), \
                patch.object(NTPd, "run", new=AsyncMock(side_effect=NoPeersError(["x"]))):
            assert main(["--peer", "x", "--dry-run"]) == 1

    def test_config_error(self):
        with patch("qntp.node.daemon.setup_logging") as setup:
            assert main(["--metric", "no-port"]) == 2
        setup.assert_not_called()
