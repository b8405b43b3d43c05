from __future__ import annotations

from dataclasses import replace

from maze import (
    Direction,
    EditorMode,
    GameMode,
    MapDefinition,
    Position,
    blocks_ghost_sight,
    blocks_sight,
    with_cell,
)
from state import GameState, LayerState


def can_see(layer_state: LayerState, source: Position, target: Position) -> bool:
    """Line of sight along a shared row or column.

    Glass and open letter doors are transparent; any other non-empty wall on
    the way blocks the view.
    """
    if source.x != target.x and source.y != target.y:
        return False
    if source.x == target.x:
        x = source.x
        for y in range(min(source.y, target.y), max(source.y, target.y)):
            if blocks_ghost_sight(layer_state.wall_between(Position(x, y), Direction.S)):
                return False
    else:
        y = source.y
        for x in range(min(source.x, target.x), max(source.x, target.x)):
            if blocks_ghost_sight(layer_state.wall_between(Position(x, y), Direction.E)):
                return False
    return True


def recompute_visibility(state: GameState, map_def: MapDefinition) -> GameState:
    """Mark every cell visible from the player's cell as seen. Never unmarks."""
    p = state.player
    layer_def = map_def.layers[p.layer]
    layer_state = state.layers[p.layer]
    grid = [list(row) for row in state.seen[p.layer]]

    for cell in map_def.start_room_cells():
        grid[cell.y][cell.x] = True
    if map_def.editor_mode is EditorMode.FREE:
        start = layer_def.custom_start_pos
        if start is not None and map_def.in_bounds(start.x, start.y):
            grid[start.y][start.x] = True
    grid[p.y][p.x] = True

    for direction in Direction:
        cur = p.pos
        while True:
            nxt = cur.step(direction)
            if not map_def.in_bounds(nxt.x, nxt.y) or not layer_def.active_cells[nxt.y][nxt.x]:
                break
            if blocks_sight(layer_state.wall_between(cur, direction)):
                break
            grid[nxt.y][nxt.x] = True
            cur = nxt

    seen = state.seen[:p.layer] + (tuple(tuple(row) for row in grid),) + state.seen[p.layer + 1:]

    # Looking down (or up) a stairwell reveals the landing on the paired layer.
    if map_def.multi_layer_mode:
        stair = map_def.stair_at(p.x, p.y, p.layer)
        paired = map_def.paired_stair(stair) if stair is not None else None
        if paired is not None:
            landing = with_cell(seen[paired.layer], p.x, p.y, True)
            seen = seen[:paired.layer] + (landing,) + seen[paired.layer + 1:]

    if seen == state.seen:
        return state
    return replace(state, seen=seen)


def unseen_ghost_nearby(state: GameState, map_def: MapDefinition) -> bool:
    """Danger indicator: a ghost within one cell (diagonals included) hides in fog."""
    if map_def.game_mode is not GameMode.EXPLORATION:
        return False
    p = state.player
    for ghost in state.layers[p.layer].ghosts:
        if abs(ghost.x - p.x) <= 1 and abs(ghost.y - p.y) <= 1:
            if not state.is_seen(p.layer, ghost.x, ghost.y):
                return True
    return False
