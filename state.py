from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Mapping, Union

from description import walls_from_rows, walls_to_rows
from maze import (
    CellGrid,
    Direction,
    Ghost,
    Item,
    ItemKind,
    LayerDefinition,
    MapDefinition,
    Position,
    TrailStep,
    WallGrid,
    replace_wall,
    wall_between,
)

PLAYER_TRAIL_LENGTH = 10
GHOST_TRAIL_LENGTH = 5


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Move:
    dx: int
    dy: int

    @classmethod
    def toward(cls, direction: Direction) -> "Move":
        dx, dy = direction.delta
        return cls(dx, dy)

    @property
    def direction(self) -> Direction | None:
        return Direction.from_delta(self.dx, self.dy)


@dataclass(frozen=True)
class UseStair:
    pass


@dataclass(frozen=True)
class PressButton:
    letter: str


@dataclass(frozen=True)
class Revive:
    pass


Action = Union[Move, UseStair, PressButton, Revive]


# ---------------------------------------------------------------------------
# Dynamic state
# ---------------------------------------------------------------------------


class DeathReason(str, Enum):
    GHOST = "ghost"
    STAMINA_DEPLETED = "stamina_depleted"


@dataclass(frozen=True)
class PlayerState:
    x: int
    y: int
    layer: int
    hp: int
    stamina: int
    keys: int = 0
    steps: int = 0
    trail: tuple[TrailStep, ...] = ()

    @property
    def pos(self) -> Position:
        return Position(self.x, self.y)


@dataclass(frozen=True)
class LayerState:
    ghosts: tuple[Ghost, ...]
    items: tuple[Item, ...]
    h_walls: WallGrid
    v_walls: WallGrid

    @classmethod
    def from_definition(cls, layer_def: LayerDefinition) -> "LayerState":
        return cls(
            ghosts=tuple(Ghost(x=g.x, y=g.y, id=g.id) for g in layer_def.ghosts),
            items=layer_def.items,
            h_walls=layer_def.h_walls,
            v_walls=layer_def.v_walls,
        )

    def wall_between(self, pos: Position, direction: Direction):
        return wall_between(self.h_walls, self.v_walls, pos, direction)

    def with_wall(self, pos: Position, direction: Direction, wall) -> "LayerState":
        h_walls, v_walls = replace_wall(self.h_walls, self.v_walls, pos, direction, wall)
        return replace(self, h_walls=h_walls, v_walls=v_walls)

    def ghost_at(self, pos: Position) -> bool:
        return any(g.x == pos.x and g.y == pos.y for g in self.ghosts)


@dataclass(frozen=True)
class GameState:
    """One immutable step of a play-through.

    Everything reachable from a GameState is a tuple or a frozen dataclass, so
    successive states can share structure without ever aliasing mutable data.
    """

    player: PlayerState
    layers: tuple[LayerState, ...]
    seen: tuple[CellGrid, ...]
    loop_count: int = 0
    is_dead: bool = False
    is_won: bool = False
    death_reason: DeathReason | None = None
    is_revival_point: bool = False

    @property
    def current_layer(self) -> LayerState:
        return self.layers[self.player.layer]

    def is_seen(self, layer: int, x: int, y: int) -> bool:
        return self.seen[layer][y][x]

    def with_layer(self, index: int, layer_state: LayerState) -> "GameState":
        layers = self.layers[:index] + (layer_state,) + self.layers[index + 1:]
        return replace(self, layers=layers)


def blank_seen(map_def: MapDefinition) -> tuple[CellGrid, ...]:
    row = tuple(False for _ in range(map_def.width))
    grid = tuple(row for _ in range(map_def.height))
    return tuple(grid for _ in range(map_def.layer_count))


def push_trail(trail: tuple[TrailStep, ...], step: TrailStep, limit: int) -> tuple[TrailStep, ...]:
    return ((step,) + trail)[:limit]


# ---------------------------------------------------------------------------
# Snapshot (de)serialization for persistence
# ---------------------------------------------------------------------------


def _trail_list(trail: tuple[TrailStep, ...]) -> list[dict[str, int]]:
    return [{"x": t.x, "y": t.y, "tick": t.tick} for t in trail]


def _trail_tuple(raw: Any) -> tuple[TrailStep, ...]:
    return tuple(TrailStep(x=t["x"], y=t["y"], tick=t.get("tick", 0)) for t in raw or [])


def state_to_dict(state: GameState) -> dict[str, Any]:
    p = state.player
    return {
        "player": {
            "x": p.x,
            "y": p.y,
            "layer": p.layer,
            "hp": p.hp,
            "stamina": p.stamina,
            "keys": p.keys,
            "steps": p.steps,
            "trail": _trail_list(p.trail),
        },
        "loopCount": state.loop_count,
        "isDead": state.is_dead,
        "isWon": state.is_won,
        "deathReason": state.death_reason.value if state.death_reason else None,
        "isRevivalPoint": state.is_revival_point,
        "layerStates": [
            {
                "ghosts": [{"x": g.x, "y": g.y, "id": g.id, "trail": _trail_list(g.trail)} for g in ls.ghosts],
                "items": [{"x": i.x, "y": i.y, "type": i.kind.value} for i in ls.items],
                "hWalls": walls_to_rows(ls.h_walls),
                "vWalls": walls_to_rows(ls.v_walls),
            }
            for ls in state.layers
        ],
        "seenCells": [[list(row) for row in grid] for grid in state.seen],
    }


def state_from_dict(data: Mapping[str, Any], map_def: MapDefinition) -> GameState:
    p = data["player"]
    layers = []
    for ls in data["layerStates"]:
        layers.append(
            LayerState(
                ghosts=tuple(
                    Ghost(x=g["x"], y=g["y"], id=g.get("id", i), trail=_trail_tuple(g.get("trail")))
                    for i, g in enumerate(ls.get("ghosts", []))
                ),
                items=tuple(Item(x=i["x"], y=i["y"], kind=ItemKind(i.get("type", "key"))) for i in ls.get("items", [])),
                h_walls=walls_from_rows(ls.get("hWalls"), map_def.height + 1, map_def.width),
                v_walls=walls_from_rows(ls.get("vWalls"), map_def.height, map_def.width + 1),
            )
        )
    reason = data.get("deathReason")
    return GameState(
        player=PlayerState(
            x=p["x"],
            y=p["y"],
            layer=p["layer"],
            hp=p["hp"],
            stamina=p["stamina"],
            keys=p.get("keys", 0),
            steps=p.get("steps", 0),
            trail=_trail_tuple(p.get("trail")),
        ),
        layers=tuple(layers),
        seen=tuple(tuple(tuple(bool(c) for c in row) for row in grid) for grid in data["seenCells"]),
        loop_count=data.get("loopCount", 0),
        is_dead=data.get("isDead", False),
        is_won=data.get("isWon", False),
        death_reason=DeathReason(reason) if reason else None,
        is_revival_point=data.get("isRevivalPoint", False),
    )
