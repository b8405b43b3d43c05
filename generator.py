from __future__ import annotations

import logging
import random
from collections import deque
from typing import Any

from description import map_from_description
from editor import MapBuilder
from maze import (
    DOOR,
    EMPTY,
    SOLID,
    START_ROOM_SIZE,
    Direction,
    EmptyWall,
    GameMode,
    LockedWall,
    MapDefinition,
    Position,
    SolidWall,
    in_start_room,
    wall_between,
)

logger = logging.getLogger(__name__)

EXTRA_OPENINGS = 0.08
DOOR_PROBABILITY = 0.02
EXIT_LOCK_KEYS = 3


def _set(h_walls, v_walls, x: int, y: int, direction: Direction, wall) -> None:
    if direction is Direction.E:
        v_walls[y][x + 1] = wall
    elif direction is Direction.W:
        v_walls[y][x] = wall
    elif direction is Direction.S:
        h_walls[y + 1][x] = wall
    else:
        h_walls[y][x] = wall


def _wall_count(h_walls, v_walls, x: int, y: int) -> int:
    return sum(not isinstance(wall_between(h_walls, v_walls, Position(x, y), d), EmptyWall) for d in Direction)


def _distances(h_walls, v_walls, width: int, height: int, start: Position) -> dict[Position, int]:
    """Walking distance from `start`; doors count as open, solid walls do not."""
    dist = {start: 0}
    queue = deque([start])
    while queue:
        cur = queue.popleft()
        for d in Direction:
            nxt = cur.step(d)
            if not (0 <= nxt.x < width and 0 <= nxt.y < height) or nxt in dist:
                continue
            if isinstance(wall_between(h_walls, v_walls, cur, d), SolidWall):
                continue
            dist[nxt] = dist[cur] + 1
            queue.append(nxt)
    return dist


def _carve(rng: random.Random, h_walls, v_walls, width: int, height: int) -> None:
    # Iterative backtracker (no RecursionError on large grids); the start room
    # counts as visited so it keeps its own walls.
    visited = {
        Position(x, y) for y in range(height) for x in range(width) if in_start_room(x, y, height)
    }
    outside = [Position(x, y) for y in range(height) for x in range(width) if Position(x, y) not in visited]
    first = rng.choice(outside)
    visited.add(first)
    stack = [first]
    while stack:
        pos = stack[-1]
        unvisited_neighbors: list[tuple[Position, Direction]] = []
        for d in Direction:
            npos = pos.step(d)
            if 0 <= npos.x < width and 0 <= npos.y < height and npos not in visited:
                unvisited_neighbors.append((npos, d))
        if unvisited_neighbors:
            npos, d = rng.choice(unvisited_neighbors)
            _set(h_walls, v_walls, pos.x, pos.y, d, EMPTY)
            visited.add(npos)
            stack.append(npos)
        else:
            stack.pop()


def _open_extra_walls(rng: random.Random, h_walls, v_walls, width: int, height: int) -> None:
    room_top = height - START_ROOM_SIZE
    to_remove = int(width * height * EXTRA_OPENINGS)
    removed = attempts = 0
    while removed < to_remove and attempts < to_remove * 10:
        attempts += 1
        rx = rng.randrange(width - 1)
        ry = rng.randrange(height - 1)
        if rng.random() > 0.5:
            # Keep the start room's east side closed except for its door.
            if room_top <= ry < room_top + START_ROOM_SIZE and rx + 1 == START_ROOM_SIZE:
                continue
            if isinstance(v_walls[ry][rx + 1], SolidWall):
                v_walls[ry][rx + 1] = EMPTY
                removed += 1
        else:
            if rx < START_ROOM_SIZE and ry + 1 == room_top:
                continue
            if isinstance(h_walls[ry + 1][rx], SolidWall):
                h_walls[ry + 1][rx] = EMPTY
                removed += 1


def _farthest_dead_end(h_walls, v_walls, width: int, height: int, start: Position) -> Position:
    dist = _distances(h_walls, v_walls, width, height, start)
    best, best_dist = None, -1
    for y in range(height):
        for x in range(width):
            if not (x in (0, width - 1) or y in (0, height - 1)) or in_start_room(x, y, height):
                continue
            d = dist.get(Position(x, y), -1)
            if _wall_count(h_walls, v_walls, x, y) >= 3 and d > best_dist:
                best, best_dist = Position(x, y), d
    return best or Position(width - 1, 0)


def generate_description(
    width: int,
    height: int,
    seed: int,
    ghost_count: int = 3,
    key_count: int = 4,
    game_mode: GameMode = GameMode.EXPLORATION,
) -> dict[str, Any]:
    """Procedurally generate a single-layer maze description using a seeded backtracker.

    The player starts in a 3x3 room in the bottom-left corner with two door
    exits. The exit sits on the dead-end edge cell farthest from the start,
    behind a wall that needs three keys.
    """
    if width <= START_ROOM_SIZE or height <= START_ROOM_SIZE:
        raise ValueError(f"Generated mazes must be larger than {START_ROOM_SIZE}x{START_ROOM_SIZE}")
    rng = random.Random(seed)

    builder = MapBuilder(width, height, game_mode=game_mode)
    draft = builder.layers[0]
    h_walls, v_walls = draft.h_walls, draft.v_walls
    for row in h_walls:
        row[:] = [SOLID] * width
    for row in v_walls:
        row[:] = [SOLID] * (width + 1)

    room_top = height - START_ROOM_SIZE
    for y in range(room_top, height):
        for x in range(START_ROOM_SIZE):
            if x < START_ROOM_SIZE - 1:
                v_walls[y][x + 1] = EMPTY
            if y < height - 1:
                h_walls[y + 1][x] = EMPTY
    v_walls[room_top + 1][START_ROOM_SIZE] = DOOR
    h_walls[room_top][1] = DOOR

    _carve(rng, h_walls, v_walls, width, height)
    _open_extra_walls(rng, h_walls, v_walls, width, height)

    start = Position(1, height - 2)
    end = _farthest_dead_end(h_walls, v_walls, width, height, start)

    for y in range(height):
        for x in range(width):
            near_end = (abs(x - end.x) <= 1 and y == end.y) or (x == end.x and abs(y - end.y) <= 1)
            if near_end or in_start_room(x, y, height):
                continue
            if y < height - 1 and not in_start_room(x, y + 1, height) and rng.random() < DOOR_PROBABILITY:
                h_walls[y + 1][x] = DOOR
            if x < width - 1 and not in_start_room(x + 1, y, height) and rng.random() < DOOR_PROBABILITY:
                v_walls[y][x + 1] = DOOR

    for d in (Direction.N, Direction.S, Direction.W, Direction.E):
        if isinstance(wall_between(h_walls, v_walls, end, d), EmptyWall):
            _set(h_walls, v_walls, end.x, end.y, d, LockedWall(required_keys=EXIT_LOCK_KEYS))
            break

    builder.set_start(0, start.x, start.y)
    builder.set_end(0, end.x, end.y)

    occupied = {end} | {
        Position(x, y) for y in range(height) for x in range(width) if in_start_room(x, y, height)
    }
    free = [Position(x, y) for y in range(height) for x in range(width) if Position(x, y) not in occupied]
    for pos in rng.sample(free, min(ghost_count, len(free))):
        builder.add_ghost(0, pos.x, pos.y)
        occupied.add(pos)

    # Keys go to dead ends first.
    valid = [Position(x, y) for y in range(height) for x in range(width) if Position(x, y) not in occupied]
    preferred = [p for p in valid if _wall_count(h_walls, v_walls, p.x, p.y) >= 3]
    for _ in range(key_count):
        pool = preferred or valid
        if not pool:
            break
        pos = pool.pop(rng.randrange(len(pool)))
        if pos in valid:
            valid.remove(pos)
        builder.add_key(0, pos.x, pos.y)

    logger.info(
        f"Generated {width}x{height} maze (seed={seed}) exit={end.x},{end.y} "
        f"ghosts={len(draft.ghosts)} keys={len(draft.items)}"
    )
    return builder.to_description()


def generate_maze(
    width: int,
    height: int,
    seed: int,
    ghost_count: int = 3,
    key_count: int = 4,
    game_mode: GameMode = GameMode.EXPLORATION,
) -> MapDefinition:
    return map_from_description(generate_description(width, height, seed, ghost_count, key_count, game_mode))
