from collections import deque

import pytest

from generator import generate_description, generate_maze
from maze import DOOR, Direction, LockedWall, Position, SolidWall, in_start_room, wall_between


def _reachable(map_def):
    layer = map_def.layers[0]
    start = map_def.player_start.pos
    seen = {start}
    q = deque([start])
    while q:
        cur = q.popleft()
        for d in Direction:
            nxt = cur.step(d)
            if not map_def.in_bounds(nxt.x, nxt.y) or nxt in seen:
                continue
            if isinstance(wall_between(layer.h_walls, layer.v_walls, cur, d), SolidWall):
                continue
            seen.add(nxt)
            q.append(nxt)
    return seen


def test_same_seed_same_maze():
    assert generate_description(12, 10, seed=7) == generate_description(12, 10, seed=7)
    assert generate_description(12, 10, seed=7) != generate_description(12, 10, seed=8)


def test_too_small_is_rejected():
    with pytest.raises(ValueError):
        generate_description(3, 8, seed=1)


@pytest.mark.parametrize("seed", [1, 2, 3, 42])
def test_generated_maze_layout(seed):
    m = generate_maze(12, 12, seed=seed)
    layer = m.layers[0]

    assert m.player_start.pos == Position(1, 10)
    assert m.maze_id.startswith("maze-")

    # Start room exits are doors.
    assert layer.v_walls[10][3] == DOOR
    assert layer.h_walls[9][1] == DOOR

    end = layer.end_pos
    assert end is not None
    assert end.x in (0, 11) or end.y in (0, 11)
    assert not in_start_room(end.x, end.y, 12)
    sides = [wall_between(layer.h_walls, layer.v_walls, end, d) for d in Direction]
    assert LockedWall(required_keys=3) in sides

    assert len(layer.ghosts) == 3
    assert len(layer.items) == 4
    occupied = [(g.x, g.y) for g in layer.ghosts] + [(i.x, i.y) for i in layer.items]
    assert len(set(occupied)) == len(occupied)
    assert all(not in_start_room(x, y, 12) for x, y in occupied)
    assert (end.x, end.y) not in occupied


@pytest.mark.parametrize("seed", [5, 11])
def test_every_cell_is_reachable_past_doors_and_locks(seed):
    m = generate_maze(10, 14, seed=seed)
    assert len(_reachable(m)) == m.width * m.height


def test_counts_are_configurable():
    m = generate_maze(10, 10, seed=3, ghost_count=0, key_count=1)
    assert m.layers[0].ghosts == ()
    assert len(m.layers[0].items) == 1
