import pytest

from history import History
from logic import initial_state, transition
from maze import Direction
from state import Move, Revive


@pytest.fixture
def ledger(open_map):
    return History(initial_state(open_map))


def _step(ledger, map_def, direction):
    nxt = transition(ledger.current, Move.toward(direction), map_def)
    assert nxt is not ledger.current
    ledger.record(nxt)
    return nxt


def test_new_ledger_cannot_undo(ledger):
    assert not ledger.can_undo()
    result = ledger.undo()
    assert not result.ok
    assert result.message == "Nothing to undo."


def test_undo_moves_cursor_back(ledger, open_map):
    s0 = ledger.current
    _step(ledger, open_map, Direction.E)

    assert ledger.undo().ok
    assert ledger.current is s0
    assert ledger.current_step == 0


def test_record_after_undo_drops_the_undone_branch(ledger, open_map):
    for d in (Direction.E, Direction.E, Direction.N):
        _step(ledger, open_map, d)
    undone = ledger.current
    ledger.undo()
    ledger.undo()

    _step(ledger, open_map, Direction.W)

    assert len(ledger) == ledger.current_step + 1
    assert all(ledger.state_at(i) is not undone for i in range(len(ledger)))


def test_save_then_rewind_restores_checkpoint(ledger, open_map):
    for d in (Direction.E, Direction.W, Direction.E, Direction.W, Direction.E):
        _step(ledger, open_map, d)
    at_five = ledger.current

    saved = ledger.save()
    assert saved.ok
    assert saved.message == "Checkpoint saved at step 5."

    for d in (Direction.W, Direction.N, Direction.E):
        _step(ledger, open_map, d)
    assert ledger.current_step == 8

    result = ledger.rewind()
    assert result.ok
    assert ledger.current_step == 5
    assert ledger.current == at_five
    assert ledger.current is at_five


def test_save_requires_a_move_since_last_checkpoint(ledger, open_map):
    _step(ledger, open_map, Direction.E)
    assert ledger.save().ok

    again = ledger.save()
    assert not again.ok
    assert again.message == "Move before saving again."
    assert ledger.checkpoints == (1,)


def test_rewind_without_checkpoint_fails(ledger, open_map):
    _step(ledger, open_map, Direction.E)
    result = ledger.rewind()
    assert not result.ok
    assert result.message == "No earlier checkpoint to rewind to."


def test_checkpoints_past_an_abandoned_branch_are_dropped(ledger, open_map):
    _step(ledger, open_map, Direction.E)
    _step(ledger, open_map, Direction.E)
    ledger.save()
    ledger.undo()
    _step(ledger, open_map, Direction.N)

    assert ledger.checkpoints == ()


def test_undo_stops_at_revival_point(make_builder):
    b = make_builder()
    b.set_start(0, 5, 2)
    b.add_ghost(0, 5, 4)
    m = b.build()
    ledger = History(initial_state(m))

    dead = transition(ledger.current, Move.toward(Direction.S), m)
    ledger.record(dead)
    assert dead.is_dead
    assert ledger.can_undo()

    ledger.record(transition(dead, Revive(), m))
    assert not ledger.can_undo()
    result = ledger.undo()
    assert not result.ok
    assert result.message == "Cannot undo past a revival point."
    assert ledger.current_step == 2


def test_reset_starts_a_fresh_log(ledger, open_map):
    _step(ledger, open_map, Direction.E)
    ledger.save()
    fresh = initial_state(open_map)

    ledger.reset(fresh)

    assert len(ledger) == 1
    assert ledger.current is fresh
    assert ledger.checkpoints == ()
