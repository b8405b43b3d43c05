from __future__ import annotations

import logging
from dataclasses import replace

from maze import (
    EMPTY,
    GameMode,
    GlassWall,
    LetterDoor,
    LockedWall,
    MapDefinition,
    OneWayWall,
    Position,
    SolidWall,
    TrailStep,
    WallGrid,
)
from ghosts import close_in_on_stair, move_ghosts
from state import (
    PLAYER_TRAIL_LENGTH,
    Action,
    DeathReason,
    GameState,
    LayerState,
    Move,
    PlayerState,
    PressButton,
    Revive,
    UseStair,
    blank_seen,
    push_trail,
)
from vision import recompute_visibility

logger = logging.getLogger(__name__)


def initial_state(map_def: MapDefinition) -> GameState:
    start = map_def.player_start
    state = GameState(
        player=PlayerState(
            x=start.x,
            y=start.y,
            layer=start.layer,
            hp=map_def.initial_health,
            stamina=map_def.initial_stamina,
        ),
        layers=tuple(LayerState.from_definition(layer) for layer in map_def.layers),
        seen=blank_seen(map_def),
        is_revival_point=True,
    )
    return recompute_visibility(state, map_def)


def is_game_over(state: GameState, map_def: MapDefinition) -> bool:
    """Out of lives: the player is dead and cannot be revived."""
    return map_def.game_mode is GameMode.EXPLORATION and state.is_dead and state.player.hp <= 0


def transition(state: GameState, action: Action, map_def: MapDefinition) -> GameState:
    """Compute the state that follows `action`.

    Never mutates `state`. When the action has no effect the very same object
    is returned, so callers can compare by identity to skip recording.
    """
    if isinstance(action, Revive):
        return _revive(state, map_def)
    if state.is_dead or state.is_won:
        return state
    if isinstance(action, Move):
        return _move(state, action, map_def)
    if isinstance(action, UseStair):
        return _use_stair(state, map_def)
    if isinstance(action, PressButton):
        return _press_button(state, action.letter)
    return state


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


def _toggle_letter(grid: WallGrid, letter: str) -> tuple[WallGrid, bool]:
    changed = False
    rows = []
    for row in grid:
        new_row = []
        for wall in row:
            if isinstance(wall, LetterDoor) and wall.letter == letter:
                wall = wall.toggled()
                changed = True
            new_row.append(wall)
        rows.append(tuple(new_row))
    return (tuple(rows), True) if changed else (grid, False)


def _press_button(state: GameState, letter: str) -> GameState:
    letter = letter.upper()
    layer = state.player.layer
    layer_state = state.layers[layer]
    h_walls, h_changed = _toggle_letter(layer_state.h_walls, letter)
    v_walls, v_changed = _toggle_letter(layer_state.v_walls, letter)
    if not (h_changed or v_changed):
        logger.debug(f"No letter door {letter!r} on layer {layer}")
        return state
    new_layer = replace(layer_state, h_walls=h_walls, v_walls=v_walls)
    return replace(state.with_layer(layer, new_layer), is_revival_point=False)


def _move(state: GameState, action: Move, map_def: MapDefinition) -> GameState:
    direction = action.direction
    if direction is None:
        return state

    p = state.player
    button = map_def.button_at(p.layer, p.x, p.y, direction)
    if button is not None:
        return _press_button(state, button.letter)

    target = p.pos.step(direction)
    if not map_def.is_active(p.layer, target.x, target.y):
        logger.debug(f"Move {direction.name} from {p.pos} leaves the maze")
        return state

    layer_state = state.layers[p.layer]
    wall = layer_state.wall_between(p.pos, direction)
    if isinstance(wall, (SolidWall, GlassWall)):
        return state
    if isinstance(wall, OneWayWall) and wall.direction is not direction:
        return state
    if isinstance(wall, LetterDoor) and not wall.is_open:
        return state
    if isinstance(wall, LockedWall):
        if p.keys < wall.required_keys:
            logger.debug(f"Locked wall needs {wall.required_keys} keys, player holds {p.keys}")
            return state
        # Unlocked for good; keys are kept.
        layer_state = layer_state.with_wall(p.pos, direction, EMPTY)

    player = replace(
        p,
        x=target.x,
        y=target.y,
        steps=p.steps + 1,
        stamina=p.stamina - 1 if map_def.game_mode is GameMode.DEATH_LOOP else p.stamina,
        trail=push_trail(p.trail, TrailStep(p.x, p.y, p.steps), PLAYER_TRAIL_LENGTH),
    )
    state = replace(state.with_layer(p.layer, layer_state), player=player, is_revival_point=False)
    state = recompute_visibility(state, map_def)
    state = _collect_item(state)

    outcome = _check_outcome(state, map_def)
    if outcome is not None:
        return outcome

    state = move_ghosts(state, map_def, before=p.pos, after=target)
    if state.current_layer.ghost_at(target):
        return _die(state, map_def, DeathReason.GHOST)
    return state


def _use_stair(state: GameState, map_def: MapDefinition) -> GameState:
    if not map_def.multi_layer_mode:
        return state
    p = state.player
    stair = map_def.stair_at(p.x, p.y, p.layer)
    paired = map_def.paired_stair(stair) if stair is not None else None
    if paired is None:
        return state

    departure = state.layers[p.layer]
    riders = tuple(g for g in departure.ghosts if g.x == p.x and g.y == p.y)
    if riders:
        arrival = state.layers[paired.layer]
        state = state.with_layer(p.layer, replace(departure, ghosts=tuple(g for g in departure.ghosts if g not in riders)))
        state = state.with_layer(
            paired.layer,
            replace(arrival, ghosts=arrival.ghosts + tuple(replace(g, trail=()) for g in riders)),
        )

    player = replace(
        p,
        layer=paired.layer,
        steps=p.steps + 1,
        stamina=p.stamina - 1 if map_def.game_mode is GameMode.DEATH_LOOP else p.stamina,
    )
    state = replace(state, player=player, is_revival_point=False)
    state = close_in_on_stair(state, map_def, p.layer, p.pos)
    state = recompute_visibility(state, map_def)
    state = _collect_item(state)
    return _check_outcome(state, map_def) or state


def _revive(state: GameState, map_def: MapDefinition) -> GameState:
    if not state.is_dead:
        return state
    start = map_def.player_start

    if map_def.game_mode is GameMode.EXPLORATION:
        if state.player.hp <= 0:
            return state
        player = replace(state.player, x=start.x, y=start.y, layer=start.layer, trail=())
        revived = replace(state, player=player, is_dead=False, death_reason=None, is_revival_point=True)
        return recompute_visibility(revived, map_def)

    # Death loop: the whole maze resets, only the explored map carries over.
    fresh = initial_state(map_def)
    revived = replace(fresh, loop_count=state.loop_count + 1, seen=state.seen, is_revival_point=True)
    logger.debug(f"Starting loop {revived.loop_count}")
    return recompute_visibility(revived, map_def)


# ---------------------------------------------------------------------------
# Consequences
# ---------------------------------------------------------------------------


def _collect_item(state: GameState) -> GameState:
    p = state.player
    layer_state = state.layers[p.layer]
    for index, item in enumerate(layer_state.items):
        if item.x == p.x and item.y == p.y:
            items = layer_state.items[:index] + layer_state.items[index + 1:]
            state = state.with_layer(p.layer, replace(layer_state, items=items))
            return replace(state, player=replace(p, keys=p.keys + 1))
    return state


def _check_outcome(state: GameState, map_def: MapDefinition) -> GameState | None:
    p = state.player
    end = map_def.layers[p.layer].end_pos
    if end is not None and end == p.pos:
        logger.debug(f"Exit reached after {p.steps} steps")
        return replace(state, is_won=True)
    if map_def.game_mode is GameMode.DEATH_LOOP and p.stamina <= 0:
        return _die(state, map_def, DeathReason.STAMINA_DEPLETED)
    if state.current_layer.ghost_at(p.pos):
        return _die(state, map_def, DeathReason.GHOST)
    return None


def _die(state: GameState, map_def: MapDefinition, reason: DeathReason) -> GameState:
    player = state.player
    if reason is DeathReason.GHOST and map_def.game_mode is GameMode.EXPLORATION:
        player = replace(player, hp=player.hp - 1)
    logger.debug(f"Player died ({reason.value}) at {Position(player.x, player.y)}")
    return replace(state, player=player, is_dead=True, death_reason=reason)
