import random

import pytest
from minefield.game_engine import (
    AWAITING_FIRST_MOVE,
    BLANK,
    DIG,
    DIG_ANYWAY,
    FLAG,
    FLAGGED,
    HIDDEN,
    IN_PROGRESS,
    KEEP_FLAGGED,
    LOST,
    MINE,
    UNFLAG,
    WON,
    CellAlreadyRevealed,
    CellFlagged,
    EngineError,
    Count,
    IllegalActionForState,
    InvalidCoordinate,
    Mine,
    Revealed,
    SessionTerminated,
    apply_action,
    generate,
    mine_bounds,
    new_session,
    pending_zeros,
    reveal_cascade,
    to_client_view,
)

from helpers import CORNERS_5X5, ScriptedRandom, fixed_session


def count_mines(layout) -> int:
    return sum(1 for row in layout for cell in row if isinstance(cell, Mine))


def test_mine_bounds_round_half_up():
    assert mine_bounds(5, 5) == (3, 20)
    assert mine_bounds(15, 15) == (23, 180)
    assert mine_bounds(5, 7) == (4, 28)


def test_generate_counts_match_neighbours():
    for seed in range(20):
        layout = generate(8, 11, 30, random.Random(seed))
        assert count_mines(layout) == 30
        for r in range(8):
            for c in range(11):
                cell = layout[r][c]
                if isinstance(cell, Mine):
                    continue
                expected = sum(
                    1
                    for rr in range(r - 1, r + 2)
                    for cc in range(c - 1, c + 2)
                    if (rr, cc) != (r, c) and 0 <= rr < 8 and 0 <= cc < 11 and isinstance(layout[rr][cc], Mine)
                )
                assert cell == Count(expected)


def test_generate_redraws_occupied_coordinates():
    layout = generate(5, 5, 2, ScriptedRandom([(1, 1), (1, 1), (3, 3)]))
    assert layout[1][1] == MINE and layout[3][3] == MINE
    assert count_mines(layout) == 2
    assert layout[2][2] == Count(2)


def test_generate_is_deterministic_for_seed():
    assert generate(6, 6, 8, random.Random(42)) == generate(6, 6, 8, random.Random(42))


def test_new_session_validates_bounds():
    with pytest.raises(ValueError) as exc:
        new_session(4, 6, 5)
    assert str(exc.value) == "invalid_dimensions"
    with pytest.raises(ValueError) as exc:
        new_session(5, 5, 2)
    assert str(exc.value) == "mine_count_out_of_range"
    s = new_session(5, 5, 20, rng_seed=1)
    assert s.status == AWAITING_FIRST_MOVE
    assert s.flags_remaining == 20
    assert all(cell == HIDDEN for row in s.overlay for cell in row)


def test_dig_zero_reveals_region_and_leaves_mines_hidden():
    s = fixed_session(5, 5, CORNERS_5X5)
    assert s.layout[1][1] == Count(0)
    res = apply_action(s, 1, 1, DIG)
    assert res["outcome"] == "dug"
    assert res["cleared_cells"] == 22
    for r, c in CORNERS_5X5:
        assert s.overlay[r][c] == HIDDEN
    assert s.overlay[1][1] == Revealed(BLANK)
    assert s.overlay[0][3] == Revealed(Count(1))
    assert pending_zeros(s.overlay) == []
    assert s.status == WON


def test_cascade_is_idempotent():
    s = fixed_session(6, 6, [(0, 2), (2, 0), (2, 2), (5, 5)])
    apply_action(s, 4, 1, DIG)
    snapshot = [row[:] for row in s.overlay]
    for r in range(6):
        for c in range(6):
            if isinstance(s.overlay[r][c], Revealed):
                assert reveal_cascade(s.overlay, s.layout, r, c) == 0
    assert s.overlay == snapshot
    # no hidden cell touches a blank
    for r in range(6):
        for c in range(6):
            if s.overlay[r][c] != Revealed(BLANK):
                continue
            for rr in range(max(0, r - 1), min(6, r + 2)):
                for cc in range(max(0, c - 1), min(6, c + 2)):
                    assert s.overlay[rr][cc] != HIDDEN


def test_cascade_skips_flagged_neighbours():
    s = fixed_session(5, 5, CORNERS_5X5)
    apply_action(s, 2, 2, FLAG)
    apply_action(s, 1, 1, DIG)
    assert s.overlay[2][2] == FLAGGED
    assert s.status == IN_PROGRESS
    assert s.flags_remaining == 2


def test_first_dig_on_mine_regenerates_once():
    second_layout = [(0, 0), (0, 1), (0, 2)]
    s = fixed_session(5, 5, [(2, 2), (4, 4), (0, 4)], rng=ScriptedRandom(second_layout))
    assert isinstance(s.layout[2][2], Mine)
    res = apply_action(s, 2, 2, DIG)
    assert res["regenerations"] == 1
    assert s.regenerations == 1
    assert not res["hit_mine"]
    assert s.overlay[2][2] == Revealed(Count(0)) or s.overlay[2][2] == Revealed(BLANK)
    assert count_mines(s.layout) == 3
    assert s.first_move_resolved is True
    assert s.status in (IN_PROGRESS, WON)


def test_first_dig_never_a_mine():
    for seed in range(30):
        s = new_session(5, 5, 20, rng_seed=seed)
        res = apply_action(s, seed % 5, (seed * 3) % 5, DIG)
        assert res["hit_mine"] is False
        assert s.status != LOST


def test_first_move_check_only_runs_once():
    s = fixed_session(5, 5, [(1, 1), (3, 3), (2, 4)])
    apply_action(s, 0, 0, DIG)
    res = apply_action(s, 1, 1, DIG)
    assert res["hit_mine"] is True
    assert res["regenerations"] == 0
    assert s.status == LOST


def test_reveal_mine_loses_and_session_terminates():
    s = fixed_session(5, 5, [(1, 1), (3, 3), (2, 4)])
    apply_action(s, 0, 4, DIG)
    res = apply_action(s, 3, 3, DIG)
    assert res["hit_mine"] is True
    assert res["status_after"] == LOST
    with pytest.raises(SessionTerminated):
        apply_action(s, 0, 0, DIG)
    with pytest.raises(SessionTerminated):
        apply_action(s, 0, 0, FLAG)
    view = to_client_view(s)
    assert view[1][1] == "X" and view[3][3] == "X" and view[2][4] == "X"


def test_win_when_all_safe_cells_revealed():
    s = fixed_session(5, 5, [(1, 1), (3, 3), (2, 4)])
    safe = [(r, c) for r in range(5) for c in range(5) if (r, c) not in ((1, 1), (3, 3), (2, 4))]
    for r, c in safe:
        if s.status == WON:
            break
        if s.overlay[r][c] == HIDDEN:
            apply_action(s, r, c, DIG)
            if s.status != WON:
                assert s.status == IN_PROGRESS
    assert s.status == WON
    with pytest.raises(SessionTerminated):
        apply_action(s, 1, 1, DIG)


def test_flag_unflag_round_trip():
    s = new_session(5, 5, 3, rng_seed=2)
    res = apply_action(s, 0, 0, FLAG)
    assert res["outcome"] == "flagged"
    assert res["flags_remaining"] == 2
    assert s.overlay[0][0] == FLAGGED
    res = apply_action(s, 0, 0, UNFLAG)
    assert res["outcome"] == "unflagged"
    assert s.overlay[0][0] == HIDDEN
    assert s.flags_remaining == 3
    assert s.status == AWAITING_FIRST_MOVE


def test_flag_budget_goes_negative():
    s = new_session(5, 5, 3, rng_seed=4)
    for c in range(5):
        apply_action(s, 0, c, FLAG)
    assert s.flags_remaining == -2


def test_dig_on_flag_requires_resolution():
    s = fixed_session(5, 5, CORNERS_5X5)
    apply_action(s, 2, 2, FLAG)
    with pytest.raises(CellFlagged) as exc:
        apply_action(s, 2, 2, DIG)
    assert str(exc.value) == "cell_flagged"
    assert isinstance(exc.value, IllegalActionForState)
    res = apply_action(s, 2, 2, KEEP_FLAGGED)
    assert res["outcome"] == "kept_flagged"
    assert s.overlay[2][2] == FLAGGED
    assert s.moves_count == 1
    res = apply_action(s, 2, 2, DIG_ANYWAY)
    assert res["outcome"] == "dug"
    assert s.flags_remaining == 3
    assert s.overlay[2][2] == Revealed(BLANK)


def test_illegal_actions_for_state():
    s = fixed_session(5, 5, CORNERS_5X5)
    with pytest.raises(IllegalActionForState):
        apply_action(s, 0, 0, UNFLAG)
    with pytest.raises(IllegalActionForState):
        apply_action(s, 0, 0, DIG_ANYWAY)
    with pytest.raises(IllegalActionForState):
        apply_action(s, 0, 0, KEEP_FLAGGED)
    apply_action(s, 0, 0, FLAG)
    with pytest.raises(IllegalActionForState) as exc:
        apply_action(s, 0, 0, FLAG)
    assert str(exc.value) == "illegal_action_for_state"


def test_unknown_action_is_an_engine_error():
    s = fixed_session(5, 5, CORNERS_5X5)
    with pytest.raises(EngineError) as exc:
        apply_action(s, 1, 1, "sweep")
    assert isinstance(exc.value, IllegalActionForState)
    assert (exc.value.row, exc.value.col) == (1, 1)
    assert s.overlay[1][1] == HIDDEN
    assert s.moves_count == 0


def test_actions_on_revealed_cell_rejected():
    s = fixed_session(5, 5, [(1, 1), (3, 3), (2, 4)])
    apply_action(s, 0, 0, DIG)
    for action in (DIG, FLAG, UNFLAG, DIG_ANYWAY):
        with pytest.raises(CellAlreadyRevealed) as exc:
            apply_action(s, 0, 0, action)
        assert str(exc.value) == "cell_already_revealed"


def test_out_of_bounds_rejected():
    s = new_session(5, 6, 5, rng_seed=1)
    for r, c in [(-1, 0), (0, -1), (5, 0), (0, 6)]:
        with pytest.raises(InvalidCoordinate) as exc:
            apply_action(s, r, c, DIG)
        assert str(exc.value) == "out_of_bounds"
        assert (exc.value.row, exc.value.col) == (r, c)


def test_to_client_view_symbols():
    s = fixed_session(5, 5, [(1, 1), (3, 3), (2, 4)])
    apply_action(s, 0, 0, DIG)
    apply_action(s, 4, 0, DIG)
    apply_action(s, 0, 4, FLAG)
    view = to_client_view(s)
    assert view[0][0] == "1"
    assert view[4][0] == " "
    assert view[0][4] == "M"
    assert view[1][1] == "_"
    assert all(cell != "X" for row in view for cell in row)
