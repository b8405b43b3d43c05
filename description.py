from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import replace
from typing import Any, Iterable, Mapping

from maze import (
    EMPTY,
    Button,
    CellGrid,
    Direction,
    DoorWall,
    EditorMode,
    GameMode,
    GlassWall,
    Ghost,
    Item,
    ItemKind,
    LayerDefinition,
    LetterDoor,
    LockedWall,
    MapDefinition,
    OneWayWall,
    PlayerStart,
    Position,
    SolidWall,
    Stair,
    StairDirection,
    Wall,
    WallGrid,
    WallType,
)

logger = logging.getLogger(__name__)

DEFAULT_HEALTH = 5
DEFAULT_STAMINA = 100


# ---------------------------------------------------------------------------
# Walls
# ---------------------------------------------------------------------------


def wall_from_dict(raw: Any) -> Wall:
    if not isinstance(raw, Mapping):
        return EMPTY
    try:
        kind = WallType(int(raw.get("type", 0)))
    except (TypeError, ValueError):
        logger.warning(f"Unknown wall type {raw.get('type')!r}; treating as empty")
        return EMPTY

    if kind is WallType.SOLID:
        return SolidWall()
    if kind is WallType.GLASS:
        return GlassWall()
    if kind is WallType.DOOR:
        return DoorWall()
    if kind is WallType.LOCKED:
        return LockedWall(required_keys=_as_int(raw.get("keys"), 0))
    if kind is WallType.ONE_WAY:
        direction = _direction(raw.get("direction"))
        if direction is None:
            # A one-way wall without a direction admits nobody.
            return SolidWall()
        return OneWayWall(direction=direction)
    if kind is WallType.LETTER_DOOR:
        letter = str(raw.get("letter") or "A").upper()
        state = raw.get("currentState", raw.get("initialState", "closed"))
        return LetterDoor(letter=letter, is_open=state == "open")
    return EMPTY


def wall_to_dict(wall: Wall) -> dict[str, Any]:
    data: dict[str, Any] = {"type": int(wall.kind)}
    if isinstance(wall, LockedWall):
        data["keys"] = wall.required_keys
    elif isinstance(wall, OneWayWall):
        dx, dy = wall.direction.delta
        data["direction"] = {"dx": dx, "dy": dy}
    elif isinstance(wall, LetterDoor):
        data["letter"] = wall.letter
        data["initialState"] = "open" if wall.is_open else "closed"
    return data


def walls_from_rows(raw: Any, rows: int, cols: int) -> WallGrid:
    """Read a wall grid, padding missing rows/cells with empty walls."""
    source = raw if isinstance(raw, list) else []
    grid = []
    for y in range(rows):
        row_src = source[y] if y < len(source) and isinstance(source[y], list) else []
        grid.append(tuple(wall_from_dict(row_src[x]) if x < len(row_src) else EMPTY for x in range(cols)))
    return tuple(grid)


def walls_to_rows(grid: WallGrid) -> list[list[dict[str, Any]]]:
    return [[wall_to_dict(w) for w in row] for row in grid]


# ---------------------------------------------------------------------------
# Small readers
# ---------------------------------------------------------------------------


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _position(raw: Any) -> Position | None:
    if not isinstance(raw, Mapping):
        return None
    x, y = raw.get("x"), raw.get("y")
    if not isinstance(x, int) or not isinstance(y, int):
        return None
    return Position(x, y)


def _position_dict(pos: Position | None) -> dict[str, int] | None:
    return None if pos is None else {"x": pos.x, "y": pos.y}


def _direction(raw: Any) -> Direction | None:
    if not isinstance(raw, Mapping):
        return None
    return Direction.from_delta(_as_int(raw.get("dx"), 0), _as_int(raw.get("dy"), 0))


def _active_cells(raw: Any, width: int, height: int) -> CellGrid:
    source = raw if isinstance(raw, list) else []
    grid = []
    for y in range(height):
        row_src = source[y] if y < len(source) and isinstance(source[y], list) else []
        grid.append(tuple(bool(row_src[x]) if x < len(row_src) else True for x in range(width)))
    return tuple(grid)


def _cell(raw: Any, width: int, height: int, label: str) -> Position | None:
    pos = _position(raw)
    if pos is not None and not (0 <= pos.x < width and 0 <= pos.y < height):
        logger.warning(f"Dropping {label} outside the {width}x{height} grid: {raw!r}")
        return None
    return pos


def _entities(raw: Any, label: str, width: int, height: int) -> Iterable[Mapping[str, Any]]:
    if not isinstance(raw, list):
        return []
    good = []
    for entry in raw:
        if _position(entry) is None:
            logger.warning(f"Dropping {label} with malformed coordinates: {entry!r}")
            continue
        if _cell(entry, width, height, label) is None:
            continue
        good.append(entry)
    return good


def _ghosts(raw: Any, width: int, height: int) -> tuple[Ghost, ...]:
    return tuple(
        Ghost(x=g["x"], y=g["y"], id=_as_int(g.get("id"), idx))
        for idx, g in enumerate(_entities(raw, "ghost", width, height))
    )


def _items(raw: Any, width: int, height: int) -> tuple[Item, ...]:
    items = []
    for entry in _entities(raw, "item", width, height):
        kind = entry.get("type", ItemKind.KEY.value)
        if kind != ItemKind.KEY.value:
            logger.warning(f"Dropping item of unknown kind {kind!r}")
            continue
        items.append(Item(x=entry["x"], y=entry["y"]))
    return tuple(items)


def _buttons(raw: Any, width: int, height: int) -> tuple[Button, ...]:
    buttons = []
    for entry in _entities(raw, "button", width, height):
        direction = _direction(entry.get("direction"))
        if direction is None:
            logger.warning(f"Dropping button without direction: {entry!r}")
            continue
        buttons.append(
            Button(x=entry["x"], y=entry["y"], direction=direction, letter=str(entry.get("letter") or "A").upper())
        )
    return tuple(buttons)


def _stairs(raw: Any, width: int, height: int, default_layer: int | None = None) -> list[Stair]:
    stairs = []
    for entry in _entities(raw, "stair", width, height):
        layer = _as_int(entry.get("layer", default_layer), -1)
        try:
            direction = StairDirection(entry.get("direction"))
        except ValueError:
            logger.warning(f"Dropping stair with unknown direction: {entry!r}")
            continue
        if layer < 0:
            continue
        stairs.append(Stair(x=entry["x"], y=entry["y"], layer=layer, direction=direction))
    return stairs


# ---------------------------------------------------------------------------
# Import / export
# ---------------------------------------------------------------------------


def _layer_sources(data: Mapping[str, Any], layer_count: int) -> list[Mapping[str, Any] | None]:
    layers = data.get("layers")
    layers = layers if isinstance(layers, list) else []
    sources: list[Mapping[str, Any] | None] = []
    for i in range(layer_count):
        if i < len(layers) and isinstance(layers[i], Mapping):
            sources.append(layers[i])
        elif i == 0:
            sources.append(
                {
                    "hWalls": data.get("hWalls"),
                    "vWalls": data.get("vWalls"),
                    "activeCells": data.get("activeCells"),
                    "ghosts": data.get("initialGhosts"),
                    "items": data.get("items"),
                    "buttons": data.get("buttons"),
                    "endPos": data.get("endPos"),
                    "customStartPos": data.get("customStartPos"),
                }
            )
        else:
            sources.append(None)
    return sources


def _resolve_start(
    data: Mapping[str, Any],
    layers: tuple[LayerDefinition, ...],
    editor_mode: EditorMode,
    height: int,
) -> PlayerStart:
    start_layer = data.get("playerStartLayer")
    start_layer = start_layer if isinstance(start_layer, int) and 0 <= start_layer < len(layers) else 0

    if editor_mode is EditorMode.FREE:
        for index, layer in enumerate(layers):
            if layer.custom_start_pos is not None:
                return PlayerStart(layer.custom_start_pos.x, layer.custom_start_pos.y, index)
        map_start = _position(data.get("mapStartPos"))
        if map_start is not None:
            return PlayerStart(map_start.x, map_start.y, start_layer)

    start = _position(data.get("startPos")) or Position(1, height - 2)
    return PlayerStart(start.x, start.y, start_layer)


def _fallback_start(map_def: MapDefinition) -> PlayerStart:
    """First active cell, preferring the intended start layer."""
    wanted = map_def.player_start.layer
    order = [wanted] + [i for i in range(map_def.layer_count) if i != wanted]
    for layer in order:
        for y in range(map_def.height):
            for x in range(map_def.width):
                if map_def.is_active(layer, x, y):
                    return PlayerStart(x, y, layer)
    return PlayerStart(0, 0, wanted)


def map_from_description(data: Mapping[str, Any]) -> MapDefinition:
    """Build a MapDefinition from a plain description; absent parts default to empty."""
    width = _as_int(data.get("width"), 0)
    height = _as_int(data.get("height"), 0)
    if width <= 0 or height <= 0:
        raise ValueError(f"Maze dimensions must be positive, got {width}x{height}")

    try:
        game_mode = GameMode(data.get("gameMode") or GameMode.EXPLORATION.value)
    except ValueError:
        logger.warning(f"Unknown game mode {data.get('gameMode')!r}; using exploration")
        game_mode = GameMode.EXPLORATION
    try:
        editor_mode = EditorMode(data.get("editorMode") or EditorMode.REGULAR.value)
    except ValueError:
        editor_mode = EditorMode.REGULAR

    layer_count = max(1, _as_int(data.get("layerCount"), 1))
    stairs: list[Stair] = _stairs(data.get("stairs"), width, height)
    layers = []
    for index, src in enumerate(_layer_sources(data, layer_count)):
        src = src or {}
        layers.append(
            LayerDefinition(
                active_cells=_active_cells(src.get("activeCells"), width, height),
                h_walls=walls_from_rows(src.get("hWalls"), height + 1, width),
                v_walls=walls_from_rows(src.get("vWalls"), height, width + 1),
                ghosts=_ghosts(src.get("ghosts"), width, height),
                items=_items(src.get("items"), width, height),
                buttons=_buttons(src.get("buttons"), width, height),
                end_pos=_cell(src.get("endPos"), width, height, "end position"),
                custom_start_pos=_cell(src.get("customStartPos"), width, height, "custom start"),
            )
        )
        for stair in _stairs(src.get("stairs"), width, height, default_layer=index):
            if stair not in stairs:
                stairs.append(stair)
    layers_t = tuple(layers)
    for stair in [s for s in stairs if s.layer >= layer_count]:
        logger.warning(f"Dropping stair on missing layer {stair.layer}: {stair}")
    stairs = [s for s in stairs if s.layer < layer_count]

    map_def = MapDefinition(
        width=width,
        height=height,
        layers=layers_t,
        player_start=_resolve_start(data, layers_t, editor_mode, height),
        game_mode=game_mode,
        initial_health=_as_int(data.get("initialHealth"), DEFAULT_HEALTH) or DEFAULT_HEALTH,
        initial_stamina=_as_int(data.get("initialStamina"), DEFAULT_STAMINA) or DEFAULT_STAMINA,
        editor_mode=editor_mode,
        multi_layer_mode=bool(data.get("multiLayerMode", False)),
        stairs=tuple(stairs),
        start_pos=_position(data.get("startPos")),
    )
    start = map_def.player_start
    if not map_def.is_active(start.layer, start.x, start.y):
        fallback = _fallback_start(map_def)
        logger.warning(f"Player start {start} is not on an active cell; starting at {fallback}")
        map_def = replace(map_def, player_start=fallback)

    return replace(map_def, maze_id=maze_fingerprint(map_to_description(map_def)))


def map_to_description(map_def: MapDefinition) -> dict[str, Any]:
    """Plain, JSON-ready description that `map_from_description` reads back."""
    layers = []
    for index, layer in enumerate(map_def.layers):
        layers.append(
            {
                "activeCells": [list(row) for row in layer.active_cells],
                "hWalls": walls_to_rows(layer.h_walls),
                "vWalls": walls_to_rows(layer.v_walls),
                "ghosts": [{"x": g.x, "y": g.y, "id": g.id} for g in layer.ghosts],
                "items": [{"x": i.x, "y": i.y, "type": i.kind.value} for i in layer.items],
                "buttons": [
                    {
                        "x": b.x,
                        "y": b.y,
                        "direction": {"dx": b.direction.delta[0], "dy": b.direction.delta[1]},
                        "letter": b.letter,
                    }
                    for b in layer.buttons
                ],
                "stairs": [_stair_dict(s) for s in map_def.stairs if s.layer == index],
                "endPos": _position_dict(layer.end_pos),
                "customStartPos": _position_dict(layer.custom_start_pos),
            }
        )
    return {
        "width": map_def.width,
        "height": map_def.height,
        "gameMode": map_def.game_mode.value,
        "initialHealth": map_def.initial_health,
        "initialStamina": map_def.initial_stamina,
        "editorMode": map_def.editor_mode.value,
        "multiLayerMode": map_def.multi_layer_mode,
        "layerCount": map_def.layer_count,
        "layers": layers,
        "stairs": [_stair_dict(s) for s in map_def.stairs],
        "startPos": _position_dict(map_def.start_pos),
        "mapStartPos": _position_dict(map_def.player_start.pos) if map_def.editor_mode is EditorMode.FREE else None,
        "playerStartLayer": map_def.player_start.layer,
    }


def _stair_dict(stair: Stair) -> dict[str, Any]:
    return {"x": stair.x, "y": stair.y, "layer": stair.layer, "direction": stair.direction.value}


def maze_fingerprint(description: Mapping[str, Any]) -> str:
    canonical = json.dumps(description, sort_keys=True, separators=(",", ":"))
    return "maze-" + hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:12]
