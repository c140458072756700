from __future__ import annotations

import pytest

from tdmatch.core.errors import ErrorCode
from tdmatch.core.messages import (
    AdvanceTickCommand,
    GetGameStateQuery,
    PlaceBuildingCommand,
    ReportEnemyDefeatedCommand,
    ReportEnemyLeakedCommand,
    ResetMatchCommand,
    SpendMoneyCommand,
    StartRoundCommand,
    StartWaveCommand,
)
from tdmatch.core.model.state import Phase
from tdmatch.core.rules.rounds import (
    SCORE_PER_KILL,
    WAVE_CLEAR_SCORE,
    EnemyDefeated,
    EnemyLeaked,
    PhaseChanged,
    WaveCleared,
    WaveStarted,
)
from tdmatch.sim.metrics import WaveMetricsCollector
from tdmatch.testing.builders import OPEN_CELL, make_match, wave_catalog


def _kill(match, n: int, reward: int = 0) -> None:
    for _ in range(n):
        assert match.dispatch(ReportEnemyDefeatedCommand(reward)).success


def test_initial_state():
    match = make_match(rounds=((3,), (2,)))
    state = match.dispatch(GetGameStateQuery())
    assert state.current_phase == Phase.PREPARATION.value
    assert state.current_round == 1
    assert state.is_game_active
    assert state.total_rounds == 2
    assert state.next_wave_index is None


def test_start_round_starts_first_wave():
    match = make_match(rounds=((3, 2),))

    result = match.dispatch(StartRoundCommand())

    assert result.success
    assert result.round_number == 1
    assert result.phase == Phase.WAVE_ACTIVE.value
    state = match.dispatch(GetGameStateQuery())
    assert state.enemies_remaining == 3
    assert match.rounds.current_wave_index == 0


def test_wave_indices_are_monotonic_and_skips_rejected():
    match = make_match(rounds=((2, 2, 2),))
    match.dispatch(StartRoundCommand(1))
    _kill(match, 2)

    skipped = match.dispatch(StartWaveCommand(2))
    assert not skipped.success
    assert skipped.error_message == ErrorCode.WAVE_OUT_OF_SEQUENCE

    started = match.dispatch(StartWaveCommand(1))
    assert started.success
    assert started.total_enemies == 2
    assert started.wave_name == "Wave 2"

    again = match.dispatch(StartWaveCommand(1))
    assert again.error_message == ErrorCode.WAVE_OUT_OF_SEQUENCE


def test_next_wave_rejected_until_previous_cleared():
    match = make_match(rounds=((2, 2),))
    match.dispatch(StartRoundCommand())
    _kill(match, 1)

    result = match.dispatch(StartWaveCommand(1))

    assert result.error_message == ErrorCode.WAVE_OUT_OF_SEQUENCE
    assert match.state.enemies_remaining == 1


def test_start_wave_outside_round_rejected():
    match = make_match()
    assert match.dispatch(StartWaveCommand(0)).error_message == ErrorCode.WAVE_OUT_OF_SEQUENCE


def test_global_wave_index_converted_to_round_local():
    match = make_match(rounds=((1,), (1, 1)))
    match.dispatch(StartRoundCommand())
    _kill(match, 1)
    match.dispatch(AdvanceTickCommand(0.1))
    assert match.state.current_round == 2
    match.dispatch(StartRoundCommand(2))
    _kill(match, 1)

    result = match.dispatch(StartWaveCommand(2, is_round_based=False))

    assert result.success
    assert result.wave_index == 2
    assert match.rounds.current_wave_index == 1


def test_lives_reaching_zero_mid_wave_is_game_over():
    match = make_match(lives=3, rounds=((5,),))
    match.dispatch(StartRoundCommand())

    for _ in range(2):
        assert match.dispatch(ReportEnemyLeakedCommand(1)).phase == Phase.WAVE_ACTIVE.value
    last = match.dispatch(ReportEnemyLeakedCommand(1))

    assert last.phase == Phase.GAME_OVER.value
    state = match.dispatch(GetGameStateQuery())
    assert state.lives == 0
    assert not state.is_game_active
    assert state.enemies_remaining == 2


def test_lives_clamped_at_zero():
    match = make_match(lives=2, rounds=((1,),))
    match.dispatch(StartRoundCommand())
    match.dispatch(ReportEnemyLeakedCommand(5))
    assert match.state.lives == 0
    assert match.state.current_phase is Phase.GAME_OVER


@pytest.mark.parametrize(
    "request_obj",
    [
        StartRoundCommand(),
        StartRoundCommand(force_start=True),
        StartWaveCommand(0),
        AdvanceTickCommand(0.1),
        ReportEnemyDefeatedCommand(1),
        PlaceBuildingCommand("basic_tower", OPEN_CELL),
        SpendMoneyCommand(1),
    ],
)
def test_terminal_phase_rejects_commands(request_obj):
    match = make_match(lives=1, rounds=((2,),))
    match.dispatch(StartRoundCommand())
    match.dispatch(ReportEnemyLeakedCommand(1))
    money = match.state.money

    result = match.dispatch(request_obj)

    assert not result.success
    assert result.error_message == ErrorCode.MATCH_ALREADY_ENDED
    assert match.state.current_phase is Phase.GAME_OVER
    assert match.state.money == money


def test_final_round_goes_round_end_then_victory():
    match = make_match(rounds=((1,), (1,)))
    phases: list[tuple[str, str]] = []
    match.rounds.add_listener(
        lambda e: phases.append((e.previous.value, e.current.value)) if isinstance(e, PhaseChanged) else None
    )

    match.dispatch(StartRoundCommand())
    match.dispatch(ReportEnemyDefeatedCommand(5))
    assert match.state.current_phase is Phase.ROUND_END
    match.dispatch(AdvanceTickCommand(0.1))
    assert match.state.current_phase is Phase.PREPARATION
    match.dispatch(StartRoundCommand())
    match.dispatch(ReportEnemyDefeatedCommand(5))

    state = match.dispatch(GetGameStateQuery())
    assert state.current_phase == Phase.VICTORY.value
    assert state.is_game_won
    assert not state.is_game_active
    assert state.lives == 20
    assert state.money == 510
    assert state.score == 2 * SCORE_PER_KILL + WAVE_CLEAR_SCORE * (1 + 2)
    assert phases == [
        ("Preparation", "WaveActive"),
        ("WaveActive", "RoundEnd"),
        ("RoundEnd", "Preparation"),
        ("Preparation", "WaveActive"),
        ("WaveActive", "RoundEnd"),
        ("RoundEnd", "Victory"),
    ]


def test_wave_bonus_credited_on_clear():
    match = make_match(money=0, waves=wave_catalog(((1, 1),), bonus_money=30))
    match.dispatch(StartRoundCommand())
    match.dispatch(ReportEnemyDefeatedCommand(7))
    assert match.state.money == 37
    assert match.ledger.history[-1].reason.startswith("wave_bonus")


def test_zero_enemy_wave_clears_immediately():
    match = make_match(rounds=((0,),))
    match.dispatch(StartRoundCommand())
    assert match.state.current_phase is Phase.VICTORY


def test_round_out_of_sequence_and_already_active():
    match = make_match(rounds=((2,), (2,)))
    assert match.dispatch(StartRoundCommand(2)).error_message == ErrorCode.ROUND_OUT_OF_SEQUENCE
    assert match.dispatch(StartRoundCommand(1)).success
    assert match.dispatch(StartRoundCommand(1)).error_message == ErrorCode.ROUND_ALREADY_ACTIVE


def test_force_start_restarts_current_round():
    match = make_match(rounds=((3,), (2,)))
    match.dispatch(StartRoundCommand())
    _kill(match, 2)

    result = match.dispatch(StartRoundCommand(force_start=True))

    assert result.success
    assert result.round_number == 1
    assert match.state.enemies_remaining == 3
    assert match.rounds.current_wave_index == 0


def test_force_start_from_round_end_moves_forward():
    match = make_match(rounds=((1,), (2,)), waves=wave_catalog(((1,), (2,)), post_wave_delay=30.0))
    match.dispatch(StartRoundCommand())
    _kill(match, 1)
    assert match.state.current_phase is Phase.ROUND_END

    result = match.dispatch(StartRoundCommand(force_start=True))

    assert result.success
    assert result.round_number == 2
    assert match.state.enemies_remaining == 2


def test_round_numbers_never_decrease():
    match = make_match(rounds=((1,), (1,), (1,)))
    seen: list[int] = []
    match.rounds.add_listener(lambda e: seen.append(e.round_number))
    for _ in range(3):
        match.dispatch(StartRoundCommand())
        match.dispatch(StartRoundCommand(1))
        _kill(match, 1)
        match.dispatch(AdvanceTickCommand(0.1))

    assert match.state.current_phase is Phase.VICTORY
    assert seen == sorted(seen)
    assert seen[-1] == 3


def test_timers_gate_round_and_wave_start():
    match = make_match(waves=wave_catalog(((1, 1),), pre_wave_delay=2.0))
    assert not match.rounds.round_start_due
    match.dispatch(AdvanceTickCommand(1.5))
    assert match.state.phase_time_remaining == pytest.approx(0.5)
    match.dispatch(AdvanceTickCommand(1.0))
    assert match.state.phase_time_remaining == 0.0
    assert match.rounds.round_start_due

    match.dispatch(StartRoundCommand())
    _kill(match, 1)
    assert match.state.phase_time_remaining == pytest.approx(2.0)
    assert not match.rounds.wave_start_due
    match.dispatch(AdvanceTickCommand(2.0))
    assert match.rounds.wave_start_due
    assert match.rounds.next_wave_index == 1


def test_enemy_report_without_running_wave():
    match = make_match()
    result = match.dispatch(ReportEnemyDefeatedCommand(5))
    assert result.error_message == ErrorCode.WAVE_OUT_OF_SEQUENCE
    assert match.state.money == 500


def test_listeners_called_in_registration_order():
    match = make_match(rounds=((1,),))
    calls: list[tuple[str, str]] = []
    match.rounds.add_listener(lambda e: calls.append(("a", type(e).__name__)))
    match.rounds.add_listener(lambda e: calls.append(("b", type(e).__name__)))

    match.dispatch(StartRoundCommand())

    assert calls == [
        ("a", "PhaseChanged"),
        ("b", "PhaseChanged"),
        ("a", "WaveStarted"),
        ("b", "WaveStarted"),
    ]


def test_wave_events_carry_definition():
    match = make_match(rounds=((2,),))
    events = []
    match.rounds.add_listener(events.append)
    match.dispatch(StartRoundCommand())
    _kill(match, 2)

    started = [e for e in events if isinstance(e, WaveStarted)]
    cleared = [e for e in events if isinstance(e, WaveCleared)]
    assert [(e.round_number, e.wave_index, e.wave.total_enemies) for e in started] == [(1, 0, 2)]
    assert [(e.round_number, e.wave_index) for e in cleared] == [(1, 0)]



def test_last_enemy_reported_before_wave_clears():
    match = make_match(lives=20, rounds=((2,), (1,)))
    events = []
    metrics = WaveMetricsCollector(clock=lambda: 0.0)
    match.rounds.add_listener(events.append)
    match.rounds.add_listener(metrics.on_event)
    match.dispatch(StartRoundCommand())

    match.dispatch(ReportEnemyDefeatedCommand(5))
    match.dispatch(ReportEnemyLeakedCommand(3))

    tail = [e for e in events if not isinstance(e, PhaseChanged)][-3:]
    assert tail == [
        EnemyDefeated(1, 0, 5),
        EnemyLeaked(1, 0, 3),
        WaveCleared(1, 0, tail[-1].wave, 0),
    ]
    (result,) = metrics.results
    assert (result.enemies_killed, result.enemies_leaked, result.money_earned, result.lives_lost) == (1, 1, 5, 3)
    assert result.completed


def test_reset_returns_to_initial_state():
    match = make_match(money=500, rounds=((1,), (1,)))
    match.dispatch(PlaceBuildingCommand("basic_tower", OPEN_CELL))
    match.dispatch(StartRoundCommand())
    _kill(match, 1, reward=10)
    match.dispatch(AdvanceTickCommand(0.1))

    assert match.dispatch(ResetMatchCommand()).success

    state = match.dispatch(GetGameStateQuery())
    assert (state.money, state.lives, state.score, state.current_round) == (500, 20, 0, 1)
    assert state.current_phase == Phase.PREPARATION.value
    assert match.registry.count == 0
    assert match.registry.next_id == 1
