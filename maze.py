from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import ClassVar, Union

START_ROOM_SIZE = 3


class Direction(Enum):
    N = (0, -1)
    E = (1, 0)
    S = (0, 1)
    W = (-1, 0)

    @property
    def delta(self) -> tuple[int, int]:
        return self.value

    @property
    def opposite(self) -> "Direction":
        return {
            Direction.N: Direction.S,
            Direction.S: Direction.N,
            Direction.E: Direction.W,
            Direction.W: Direction.E,
        }[self]

    @staticmethod
    def from_delta(dx: int, dy: int) -> "Direction | None":
        for direction in Direction:
            if direction.value == (dx, dy):
                return direction
        return None

    @staticmethod
    def from_token(token: str | None) -> "Direction | None":
        if token is None:
            return None
        t = token.strip().upper()
        t = {"NORTH": "N", "SOUTH": "S", "EAST": "E", "WEST": "W"}.get(t, t)
        return Direction.__members__.get(t)


@dataclass(frozen=True)
class Position:
    x: int
    y: int

    def step(self, direction: Direction) -> "Position":
        dx, dy = direction.delta
        return Position(self.x + dx, self.y + dy)


class GameMode(str, Enum):
    EXPLORATION = "exploration"
    DEATH_LOOP = "death-loop"


class EditorMode(str, Enum):
    REGULAR = "regular"
    FREE = "free"


class WallType(IntEnum):
    EMPTY = 0
    SOLID = 1
    DOOR = 2
    LOCKED = 3
    ONE_WAY = 4
    GLASS = 5
    LETTER_DOOR = 6


# ---------------------------------------------------------------------------
# Wall variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EmptyWall:
    kind: ClassVar[WallType] = WallType.EMPTY


@dataclass(frozen=True)
class SolidWall:
    kind: ClassVar[WallType] = WallType.SOLID


@dataclass(frozen=True)
class GlassWall:
    """Blocks movement like a solid wall but not sight."""

    kind: ClassVar[WallType] = WallType.GLASS


@dataclass(frozen=True)
class DoorWall:
    """Passable for the player; hides what lies behind it and stops ghosts."""

    kind: ClassVar[WallType] = WallType.DOOR


@dataclass(frozen=True)
class LockedWall:
    required_keys: int
    kind: ClassVar[WallType] = WallType.LOCKED


@dataclass(frozen=True)
class OneWayWall:
    direction: Direction
    kind: ClassVar[WallType] = WallType.ONE_WAY


@dataclass(frozen=True)
class LetterDoor:
    letter: str
    is_open: bool = False
    kind: ClassVar[WallType] = WallType.LETTER_DOOR

    def toggled(self) -> "LetterDoor":
        return LetterDoor(letter=self.letter, is_open=not self.is_open)


Wall = Union[EmptyWall, SolidWall, GlassWall, DoorWall, LockedWall, OneWayWall, LetterDoor]
WallGrid = tuple[tuple[Wall, ...], ...]
CellGrid = tuple[tuple[bool, ...], ...]

EMPTY = EmptyWall()
SOLID = SolidWall()
GLASS = GlassWall()
DOOR = DoorWall()


def blocks_sight(wall: Wall) -> bool:
    return not isinstance(wall, (EmptyWall, GlassWall))


def blocks_ghost_sight(wall: Wall) -> bool:
    if isinstance(wall, LetterDoor):
        return not wall.is_open
    return blocks_sight(wall)


def blocks_ghost(wall: Wall) -> bool:
    # Ghosts ignore locks and one-way restrictions; only open passages count.
    if isinstance(wall, LetterDoor):
        return not wall.is_open
    return not isinstance(wall, EmptyWall)


def wall_between(h_walls: WallGrid, v_walls: WallGrid, pos: Position, direction: Direction) -> Wall:
    """Return the wall on the `direction` side of the cell at `pos`.

    Horizontal edge (x, y) separates cell (x, y-1) from (x, y); vertical edge
    (x, y) separates cell (x-1, y) from (x, y).
    """
    if direction is Direction.E:
        return v_walls[pos.y][pos.x + 1]
    if direction is Direction.W:
        return v_walls[pos.y][pos.x]
    if direction is Direction.S:
        return h_walls[pos.y + 1][pos.x]
    return h_walls[pos.y][pos.x]


def replace_wall(
    h_walls: WallGrid,
    v_walls: WallGrid,
    pos: Position,
    direction: Direction,
    wall: Wall,
) -> tuple[WallGrid, WallGrid]:
    if direction is Direction.E:
        return h_walls, with_cell(v_walls, pos.x + 1, pos.y, wall)
    if direction is Direction.W:
        return h_walls, with_cell(v_walls, pos.x, pos.y, wall)
    if direction is Direction.S:
        return with_cell(h_walls, pos.x, pos.y + 1, wall), v_walls
    return with_cell(h_walls, pos.x, pos.y, wall), v_walls


def with_cell(grid: tuple[tuple, ...], x: int, y: int, value) -> tuple[tuple, ...]:
    row = grid[y]
    new_row = row[:x] + (value,) + row[x + 1:]
    return grid[:y] + (new_row,) + grid[y + 1:]


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrailStep:
    x: int
    y: int
    tick: int


@dataclass(frozen=True)
class Ghost:
    x: int
    y: int
    id: int
    trail: tuple[TrailStep, ...] = ()

    @property
    def pos(self) -> Position:
        return Position(self.x, self.y)


class ItemKind(str, Enum):
    KEY = "key"


@dataclass(frozen=True)
class Item:
    x: int
    y: int
    kind: ItemKind = ItemKind.KEY


@dataclass(frozen=True)
class Button:
    x: int
    y: int
    direction: Direction
    letter: str


class StairDirection(str, Enum):
    UP = "up"
    DOWN = "down"

    @property
    def opposite(self) -> "StairDirection":
        return StairDirection.DOWN if self is StairDirection.UP else StairDirection.UP

    @property
    def layer_offset(self) -> int:
        return 1 if self is StairDirection.UP else -1


@dataclass(frozen=True)
class Stair:
    x: int
    y: int
    layer: int
    direction: StairDirection

    @property
    def target_layer(self) -> int:
        return self.layer + self.direction.layer_offset


# ---------------------------------------------------------------------------
# Static map definition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlayerStart:
    x: int
    y: int
    layer: int

    @property
    def pos(self) -> Position:
        return Position(self.x, self.y)


@dataclass(frozen=True)
class LayerDefinition:
    active_cells: CellGrid
    h_walls: WallGrid
    v_walls: WallGrid
    ghosts: tuple[Ghost, ...] = ()
    items: tuple[Item, ...] = ()
    buttons: tuple[Button, ...] = ()
    end_pos: Position | None = None
    custom_start_pos: Position | None = None


@dataclass(frozen=True)
class MapDefinition:
    width: int
    height: int
    layers: tuple[LayerDefinition, ...]
    player_start: PlayerStart
    game_mode: GameMode = GameMode.EXPLORATION
    initial_health: int = 5
    initial_stamina: int = 100
    editor_mode: EditorMode = EditorMode.REGULAR
    multi_layer_mode: bool = False
    stairs: tuple[Stair, ...] = ()
    start_pos: Position | None = None
    maze_id: str = field(default="", compare=False)

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def in_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def is_active(self, layer: int, x: int, y: int) -> bool:
        if not (0 <= layer < self.layer_count) or not self.in_bounds(x, y):
            return False
        return self.layers[layer].active_cells[y][x]

    def stair_at(self, x: int, y: int, layer: int) -> Stair | None:
        for stair in self.stairs:
            if stair.x == x and stair.y == y and stair.layer == layer:
                return stair
        return None

    def paired_stair(self, stair: Stair) -> Stair | None:
        target = stair.target_layer
        if not (0 <= target < self.layer_count):
            return None
        for other in self.stairs:
            if (
                other.x == stair.x
                and other.y == stair.y
                and other.layer == target
                and other.direction is stair.direction.opposite
            ):
                return other
        return None

    def button_at(self, layer: int, x: int, y: int, direction: Direction) -> Button | None:
        for button in self.layers[layer].buttons:
            if button.x == x and button.y == y and button.direction is direction:
                return button
        return None

    def start_room_cells(self) -> list[Position]:
        """Cells revealed from the outset: the fixed 3x3 room or the free-form start."""
        if self.editor_mode is EditorMode.REGULAR:
            top = self.height - START_ROOM_SIZE
            return [
                Position(x, y)
                for y in range(top, top + START_ROOM_SIZE)
                for x in range(START_ROOM_SIZE)
                if self.in_bounds(x, y)
            ]
        return []


def in_start_room(x: int, y: int, height: int) -> bool:
    top = height - START_ROOM_SIZE
    return 0 <= x < START_ROOM_SIZE and top <= y < top + START_ROOM_SIZE


def blank_walls(width: int, height: int, *, perimeter: Wall = EMPTY) -> tuple[WallGrid, WallGrid]:
    h_walls = tuple(
        tuple(perimeter if y in (0, height) else EMPTY for _ in range(width))
        for y in range(height + 1)
    )
    v_walls = tuple(
        tuple(perimeter if x in (0, width) else EMPTY for x in range(width + 1))
        for _ in range(height)
    )
    return h_walls, v_walls
