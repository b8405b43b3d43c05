from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, replace

from maze import Direction, Ghost, LayerDefinition, MapDefinition, Position, TrailStep, blocks_ghost
from state import GHOST_TRAIL_LENGTH, GameState, LayerState, push_trail
from vision import can_see

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MoveIntent:
    index: int
    target: Position


def choose_target(layer_state: LayerState, ghost: Ghost, before: Position, after: Position) -> Position | None:
    """Chase the player while in view; on losing sight, head for where they were last seen."""
    if can_see(layer_state, ghost.pos, after):
        return after
    if can_see(layer_state, ghost.pos, before):
        return before
    return None


def shortest_path(
    layer_def: LayerDefinition,
    layer_state: LayerState,
    start: Position,
    goal: Position,
) -> list[Position] | None:
    height = len(layer_def.active_cells)
    width = len(layer_def.active_cells[0]) if height else 0

    queue = deque([start])
    came_from: dict[Position, Position | None] = {start: None}
    while queue:
        cur = queue.popleft()
        if cur == goal:
            break
        for direction in Direction:
            nxt = cur.step(direction)
            if not (0 <= nxt.x < width and 0 <= nxt.y < height) or nxt in came_from:
                continue
            if not layer_def.active_cells[nxt.y][nxt.x]:
                continue
            if blocks_ghost(layer_state.wall_between(cur, direction)):
                continue
            came_from[nxt] = cur
            queue.append(nxt)

    if goal not in came_from:
        return None
    path = [goal]
    while path[-1] != start:
        path.append(came_from[path[-1]])
    path.reverse()
    return path


def resolve_moves(ghosts: tuple[Ghost, ...], intents: list[MoveIntent], tick: int) -> tuple[Ghost, ...]:
    """Apply move intents in rounds so that no two ghosts ever share a cell.

    Each round an intent may move only into a cell that no ghost occupies, and
    each free cell goes to the first intent asking for it. Blocked and losing
    intents retry in the next round, for at most ``len(ghosts) + 1`` rounds.
    """
    moved = list(ghosts)
    pending = list(intents)
    rounds = len(ghosts) + 1

    while pending and rounds > 0:
        rounds -= 1
        occupied = {g.pos for g in moved}
        blocked = [i for i in pending if i.target in occupied]
        claimed: set[Position] = set()
        granted: list[MoveIntent] = []
        losers: list[MoveIntent] = []
        for intent in pending:
            if intent.target in occupied:
                continue
            if intent.target in claimed:
                losers.append(intent)
                continue
            claimed.add(intent.target)
            granted.append(intent)

        if not granted:
            break
        for intent in granted:
            ghost = moved[intent.index]
            moved[intent.index] = replace(
                ghost,
                x=intent.target.x,
                y=intent.target.y,
                trail=push_trail(ghost.trail, TrailStep(ghost.x, ghost.y, tick), GHOST_TRAIL_LENGTH),
            )
        pending = blocked + losers

    if pending:
        logger.debug(f"{len(pending)} ghost(s) could not move this tick")
    return tuple(moved)


def direct_ghosts(
    layer_def: LayerDefinition,
    layer_state: LayerState,
    before: Position,
    after: Position,
    tick: int,
    idle: frozenset[int] = frozenset(),
) -> LayerState:
    intents = []
    for index, ghost in enumerate(layer_state.ghosts):
        if index in idle:
            continue
        target = choose_target(layer_state, ghost, before, after)
        if target is None:
            continue
        path = shortest_path(layer_def, layer_state, ghost.pos, target)
        if path is not None and len(path) >= 2:
            intents.append(MoveIntent(index=index, target=path[1]))

    if not intents:
        return layer_state
    return replace(layer_state, ghosts=resolve_moves(layer_state.ghosts, intents, tick))


def stair_chase(state: GameState, map_def: MapDefinition, before: Position) -> tuple[GameState, frozenset[int]]:
    """Ghosts waiting on the far end of the stair the player just left follow them across.

    Returns the new state and the indices, on the player's layer, of the ghosts
    that crossed; they do not move again this tick.
    """
    layer = state.player.layer
    stair = map_def.stair_at(before.x, before.y, layer)
    paired = map_def.paired_stair(stair) if stair is not None else None
    if paired is None:
        return state, frozenset()

    far = state.layers[paired.layer]
    followers = tuple(g for g in far.ghosts if g.x == paired.x and g.y == paired.y)
    if not followers:
        return state, frozenset()

    here = state.layers[layer]
    arrived = tuple(replace(g, x=before.x, y=before.y, trail=()) for g in followers)
    first = len(here.ghosts)
    state = state.with_layer(paired.layer, replace(far, ghosts=tuple(g for g in far.ghosts if g not in followers)))
    state = state.with_layer(layer, replace(here, ghosts=here.ghosts + arrived))
    logger.debug(f"{len(arrived)} ghost(s) followed the player from layer {paired.layer} to {layer}")
    return state, frozenset(range(first, first + len(arrived)))


def move_ghosts(state: GameState, map_def: MapDefinition, before: Position, after: Position) -> GameState:
    idle: frozenset[int] = frozenset()
    if map_def.multi_layer_mode:
        state, idle = stair_chase(state, map_def, before)

    layer = state.player.layer
    layer_state = direct_ghosts(
        map_def.layers[layer],
        state.layers[layer],
        before,
        after,
        tick=state.player.steps,
        idle=idle,
    )
    if layer_state is state.layers[layer]:
        return state
    return state.with_layer(layer, layer_state)


def close_in_on_stair(state: GameState, map_def: MapDefinition, layer: int, stair: Position) -> GameState:
    """After the player takes a stair, ghosts left behind that saw them step toward the stair cell."""
    layer_state = direct_ghosts(map_def.layers[layer], state.layers[layer], stair, stair, tick=state.player.steps)
    if layer_state is state.layers[layer]:
        return state
    return state.with_layer(layer, layer_state)
