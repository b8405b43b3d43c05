from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from description import map_from_description, map_to_description
from maze import (
    EMPTY,
    SOLID,
    Button,
    Direction,
    EditorMode,
    GameMode,
    Ghost,
    Item,
    LayerDefinition,
    MapDefinition,
    PlayerStart,
    Position,
    Stair,
    StairDirection,
    Wall,
    blank_walls,
)

logger = logging.getLogger(__name__)


@dataclass
class LayerDraft:
    active_cells: list[list[bool]]
    h_walls: list[list[Wall]]
    v_walls: list[list[Wall]]
    ghosts: list[Ghost] = field(default_factory=list)
    items: list[Item] = field(default_factory=list)
    buttons: list[Button] = field(default_factory=list)
    end_pos: Position | None = None
    custom_start_pos: Position | None = None


class MapBuilder:
    """Editor-side workspace that produces MapDefinition values.

    Everything here is mutable and editor-only; the simulation only ever sees
    the immutable result of `build()`.
    """

    def __init__(
        self,
        width: int,
        height: int,
        *,
        editor_mode: EditorMode = EditorMode.REGULAR,
        game_mode: GameMode = GameMode.EXPLORATION,
        initial_health: int = 5,
        initial_stamina: int = 100,
    ):
        if width <= 0 or height <= 0:
            raise ValueError(f"Maze dimensions must be positive, got {width}x{height}")
        self.width = width
        self.height = height
        self.editor_mode = editor_mode
        self.game_mode = game_mode
        self.initial_health = initial_health
        self.initial_stamina = initial_stamina
        self.multi_layer_mode = False
        self.stairs: list[Stair] = []
        self.start_pos: Position | None = None
        self.map_start: Position | None = None
        self.player_start_layer = 0
        self.layers: list[LayerDraft] = [self._blank_layer()]

    def _blank_layer(self) -> LayerDraft:
        edge = SOLID if self.editor_mode is EditorMode.REGULAR else EMPTY
        h_walls, v_walls = blank_walls(self.width, self.height, perimeter=edge)
        return LayerDraft(
            active_cells=[[True] * self.width for _ in range(self.height)],
            h_walls=[list(row) for row in h_walls],
            v_walls=[list(row) for row in v_walls],
        )

    @classmethod
    def from_map(cls, map_def: MapDefinition) -> "MapBuilder":
        builder = cls(
            map_def.width,
            map_def.height,
            editor_mode=map_def.editor_mode,
            game_mode=map_def.game_mode,
            initial_health=map_def.initial_health,
            initial_stamina=map_def.initial_stamina,
        )
        builder.multi_layer_mode = map_def.multi_layer_mode
        builder.stairs = list(map_def.stairs)
        builder.start_pos = map_def.start_pos
        if map_def.editor_mode is EditorMode.FREE:
            builder.map_start = map_def.player_start.pos
        builder.player_start_layer = map_def.player_start.layer
        builder.layers = [
            LayerDraft(
                active_cells=[list(row) for row in layer.active_cells],
                h_walls=[list(row) for row in layer.h_walls],
                v_walls=[list(row) for row in layer.v_walls],
                ghosts=list(layer.ghosts),
                items=list(layer.items),
                buttons=list(layer.buttons),
                end_pos=layer.end_pos,
                custom_start_pos=layer.custom_start_pos,
            )
            for layer in map_def.layers
        ]
        return builder

    # -- checks -------------------------------------------------------------

    @property
    def layer_count(self) -> int:
        return len(self.layers)

    def _layer(self, index: int) -> LayerDraft:
        if not (0 <= index < self.layer_count):
            raise ValueError(f"No layer {index}; maze has {self.layer_count}")
        return self.layers[index]

    def _check_cell(self, x: int, y: int) -> None:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise ValueError(f"Cell ({x}, {y}) is outside a {self.width}x{self.height} maze")

    # -- walls and cells ----------------------------------------------------

    def set_wall(self, layer: int, x: int, y: int, direction: Direction, wall: Wall) -> None:
        """Set the wall on the `direction` side of cell (x, y)."""
        self._check_cell(x, y)
        draft = self._layer(layer)
        if direction is Direction.E:
            draft.v_walls[y][x + 1] = wall
        elif direction is Direction.W:
            draft.v_walls[y][x] = wall
        elif direction is Direction.S:
            draft.h_walls[y + 1][x] = wall
        else:
            draft.h_walls[y][x] = wall

    def toggle_cell(self, layer: int, x: int, y: int) -> bool:
        self._check_cell(x, y)
        draft = self._layer(layer)
        draft.active_cells[y][x] = not draft.active_cells[y][x]
        if not draft.active_cells[y][x]:
            self.clear_cell(layer, x, y)
        return draft.active_cells[y][x]

    # -- entities -----------------------------------------------------------

    def add_ghost(self, layer: int, x: int, y: int) -> Ghost:
        self._check_cell(x, y)
        draft = self._layer(layer)
        ghost = Ghost(x=x, y=y, id=len(draft.ghosts))
        draft.ghosts.append(ghost)
        return ghost

    def add_key(self, layer: int, x: int, y: int) -> Item:
        self._check_cell(x, y)
        item = Item(x=x, y=y)
        self._layer(layer).items.append(item)
        return item

    def add_button(self, layer: int, x: int, y: int, direction: Direction, letter: str) -> Button:
        self._check_cell(x, y)
        button = Button(x=x, y=y, direction=direction, letter=letter.upper())
        self._layer(layer).buttons.append(button)
        return button

    def set_start(self, layer: int, x: int, y: int) -> None:
        self._check_cell(x, y)
        self._layer(layer)
        if self.editor_mode is EditorMode.FREE:
            for draft in self.layers:
                draft.custom_start_pos = None
            self.layers[layer].custom_start_pos = Position(x, y)
        self.start_pos = Position(x, y)
        self.player_start_layer = layer
        self.map_start = None

    def set_end(self, layer: int, x: int, y: int) -> None:
        self._check_cell(x, y)
        self._layer(layer).end_pos = Position(x, y)

    def clear_cell(self, layer: int, x: int, y: int) -> None:
        """Eraser: remove every entity placed on the cell."""
        draft = self._layer(layer)
        draft.ghosts = [g for g in draft.ghosts if (g.x, g.y) != (x, y)]
        draft.items = [i for i in draft.items if (i.x, i.y) != (x, y)]
        draft.buttons = [b for b in draft.buttons if (b.x, b.y) != (x, y)]
        if draft.end_pos == Position(x, y):
            draft.end_pos = None
        if draft.custom_start_pos == Position(x, y):
            draft.custom_start_pos = None
        stair = next((s for s in self.stairs if (s.x, s.y, s.layer) == (x, y, layer)), None)
        if stair is not None:
            self.remove_stair_pair(x, y, layer)

    # -- layers and stairs --------------------------------------------------

    def add_layer(self) -> int:
        self.layers.append(self._blank_layer())
        self.multi_layer_mode = True
        return self.layer_count - 1

    def remove_layer(self, index: int) -> None:
        """Delete a layer together with every stair that would be left dangling."""
        self._layer(index)
        if self.layer_count == 1:
            raise ValueError("Cannot remove the only layer")

        kept = []
        for stair in self.stairs:
            if stair.layer == index:
                continue
            if stair.layer == index - 1 and stair.direction is StairDirection.UP:
                continue
            if stair.layer == index + 1 and stair.direction is StairDirection.DOWN:
                continue
            if stair.layer > index:
                stair = Stair(x=stair.x, y=stair.y, layer=stair.layer - 1, direction=stair.direction)
            kept.append(stair)
        dropped = len(self.stairs) - len(kept)
        if dropped:
            logger.debug(f"Removing layer {index} dropped {dropped} stair(s)")
        self.stairs = kept
        del self.layers[index]

        if self.player_start_layer == index:
            self.player_start_layer = 0
        elif self.player_start_layer > index:
            self.player_start_layer -= 1
        if self.layer_count == 1:
            self.multi_layer_mode = False

    def add_stair_pair(self, x: int, y: int, lower_layer: int) -> tuple[Stair, Stair]:
        self._check_cell(x, y)
        self._layer(lower_layer)
        self._layer(lower_layer + 1)
        for layer in (lower_layer, lower_layer + 1):
            if any((s.x, s.y, s.layer) == (x, y, layer) for s in self.stairs):
                raise ValueError(f"Cell ({x}, {y}) on layer {layer} already has a stair")
        up = Stair(x=x, y=y, layer=lower_layer, direction=StairDirection.UP)
        down = Stair(x=x, y=y, layer=lower_layer + 1, direction=StairDirection.DOWN)
        self.stairs.extend([up, down])
        self.multi_layer_mode = True
        return up, down

    def remove_stair_pair(self, x: int, y: int, layer: int) -> None:
        stair = next((s for s in self.stairs if (s.x, s.y, s.layer) == (x, y, layer)), None)
        if stair is None:
            return
        partner_layer = stair.target_layer
        self.stairs = [
            s for s in self.stairs
            if not (s.x == x and s.y == y and s.layer in (layer, partner_layer))
        ]

    # -- output -------------------------------------------------------------

    def to_description(self) -> dict[str, Any]:
        start = self.map_start or self.start_pos or Position(1, self.height - 2)
        draft = MapDefinition(
            width=self.width,
            height=self.height,
            layers=tuple(
                LayerDefinition(
                    active_cells=tuple(tuple(row) for row in d.active_cells),
                    h_walls=tuple(tuple(row) for row in d.h_walls),
                    v_walls=tuple(tuple(row) for row in d.v_walls),
                    ghosts=tuple(d.ghosts),
                    items=tuple(d.items),
                    buttons=tuple(d.buttons),
                    end_pos=d.end_pos,
                    custom_start_pos=d.custom_start_pos,
                )
                for d in self.layers
            ),
            player_start=PlayerStart(start.x, start.y, self.player_start_layer),
            game_mode=self.game_mode,
            initial_health=self.initial_health,
            initial_stamina=self.initial_stamina,
            editor_mode=self.editor_mode,
            multi_layer_mode=self.multi_layer_mode,
            stairs=tuple(self.stairs),
            start_pos=self.start_pos,
        )
        return map_to_description(draft)

    def build(self) -> MapDefinition:
        return map_from_description(self.to_description())

