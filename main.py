from __future__ import annotations

import argparse
import json
import logging
import random
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from db import open_repo
from description import map_from_description, map_to_description
from generator import generate_description
from history import History
from logic import initial_state, is_game_over, transition
from maze import (
    Direction,
    DoorWall,
    EmptyWall,
    GameMode,
    GlassWall,
    LetterDoor,
    LockedWall,
    MapDefinition,
    OneWayWall,
    StairDirection,
    Wall,
)
from state import Action, DeathReason, GameState, Move, PressButton, Revive, UseStair, state_from_dict, state_to_dict
from vision import unseen_ghost_nearby

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Command:
    """
    Normalized command object consumed by the engine.
    """

    verb: str
    args: list[str] = field(default_factory=list)


def parse_command(line: str) -> Command:
    tokens = line.split()
    if not tokens:
        return Command(verb="")
    return Command(verb=tokens[0].lower(), args=tokens[1:])


@dataclass
class GameView:
    """
    UI-agnostic state projection returned by the engine.
    """

    pos: dict[str, int]
    layer: int
    viewed_layer: int
    mode: str
    hp: int
    keys: int
    steps: int
    stamina: int
    loop_count: int
    is_won: bool
    is_dead: bool
    death_reason: str | None
    is_game_over: bool
    danger: bool
    can_undo: bool
    map_text: str = ""


@dataclass
class GameOutput:
    """
    Wrapper for state + user-facing messages from engine commands.
    """

    view: GameView
    messages: list[str] = field(default_factory=list)
    did_persist: bool = False


_DEATH_MESSAGES = {
    DeathReason.GHOST: "A ghost caught you.",
    DeathReason.STAMINA_DEPLETED: "You collapse, out of stamina.",
}


class GameEngine:
    def __init__(
        self,
        *,
        map_def: MapDefinition,
        repo: Any,
        player_id: str,
        game_id: str,
    ):
        self.map_def = map_def
        self.repo = repo
        self.player_id = player_id
        self.game_id = game_id
        self._viewed_layer: int | None = None
        self._load_state()

    @classmethod
    def new_game(cls, *, map_def: MapDefinition, repo: Any, player_id: str) -> "GameEngine":
        repo.save_maze(map_def.maze_id, map_to_description(map_def))
        game = repo.create_game(
            player_id=player_id,
            maze_id=map_def.maze_id,
            initial_state=state_to_dict(initial_state(map_def)),
        )
        return cls(map_def=map_def, repo=repo, player_id=player_id, game_id=game["id"])

    def _load_state(self) -> None:
        game = self.repo.get_game(self.game_id)
        if game is None:
            raise KeyError(f"Unknown game_id: {self.game_id}")
        snapshot = game.get("state") or {}
        state = state_from_dict(snapshot, self.map_def) if "player" in snapshot else initial_state(self.map_def)
        self.history = History(state)
        self._started_at = game.get("created_at")
        self._score_recorded = game.get("status") == "completed"

    @property
    def state(self) -> GameState:
        return self.history.current

    def _status(self) -> str:
        if self.state.is_won:
            return "completed"
        if is_game_over(self.state, self.map_def):
            return "game_over"
        return "in_progress"

    def _persist(self) -> None:
        self.repo.save_game(game_id=self.game_id, state=state_to_dict(self.state), status=self._status())

    def _maybe_record_score(self) -> None:
        if not self.state.is_won or self._score_recorded:
            return
        p = self.state.player
        metrics = {
            "elapsed_seconds": _elapsed_seconds(self._started_at),
            "steps": p.steps,
            "loops": self.state.loop_count,
            "hp": p.hp,
            "keys": p.keys,
        }
        self.repo.record_score(
            player_id=self.player_id,
            game_id=self.game_id,
            maze_id=self.map_def.maze_id,
            metrics=metrics,
        )
        self._score_recorded = True

    def _make_view(self) -> GameView:
        s = self.state
        p = s.player
        viewed = p.layer if self._viewed_layer is None else self._viewed_layer
        return GameView(
            pos={"x": p.x, "y": p.y},
            layer=p.layer,
            viewed_layer=viewed,
            mode=self.map_def.game_mode.value,
            hp=p.hp,
            keys=p.keys,
            steps=p.steps,
            stamina=p.stamina,
            loop_count=s.loop_count,
            is_won=s.is_won,
            is_dead=s.is_dead,
            death_reason=s.death_reason.value if s.death_reason else None,
            is_game_over=is_game_over(s, self.map_def),
            danger=unseen_ghost_nearby(s, self.map_def),
            can_undo=self.history.can_undo(),
            map_text=render_map(self.map_def, s, viewed),
        )

    def view(self) -> GameView:
        return self._make_view()

    def _output(self, messages: list[str] | None = None, did_persist: bool = False) -> GameOutput:
        return GameOutput(view=self._make_view(), messages=messages or [], did_persist=did_persist)

    def status_line(self) -> str:
        p = self.state.player
        if self.map_def.game_mode is GameMode.DEATH_LOOP:
            return f"Loop {self.state.loop_count} | Keys {p.keys} | Stamina {p.stamina}"
        return f"HP {p.hp} | Keys {p.keys} | Steps {p.steps}"

    def _apply(self, action: Action) -> GameOutput:
        before = self.state
        after = transition(before, action, self.map_def)
        if after is before:
            return self._output([self._rejection(before, action)])

        self.history.record(after)
        self._viewed_layer = None
        messages: list[str] = []
        if after.player.keys > before.player.keys:
            messages.append("You picked up a key.")
        if after.player.layer != before.player.layer and not before.is_dead:
            messages.append(f"You take the stairs to layer {after.player.layer}.")
        if after.is_won:
            messages.append("You escaped the maze!")
            self._maybe_record_score()
        elif after.is_dead and not before.is_dead:
            messages.append(_DEATH_MESSAGES[after.death_reason])
            if is_game_over(after, self.map_def):
                messages.append("Game over.")
            else:
                messages.append("Type 'revive' to continue.")
        elif before.is_dead and not after.is_dead:
            messages.append("You wake up at the start.")
        self._persist()
        return self._output(messages, did_persist=True)

    def _rejection(self, state: GameState, action: Action) -> str:
        if isinstance(action, Revive):
            if not state.is_dead:
                return "You are not dead."
            return "No lives left."
        if state.is_won:
            return "The maze is already solved."
        if state.is_dead:
            return "You are dead. Type 'revive' to continue."
        if isinstance(action, UseStair):
            return "There is no stair here."
        if isinstance(action, PressButton):
            return "Nothing happens."
        return "Blocked path."

    def _ledger(self, result) -> GameOutput:
        if not result.ok:
            return self._output([result.message])
        self._viewed_layer = None
        self._persist()
        return self._output([result.message] if result.message else [], did_persist=True)

    def handle(self, command: Command) -> GameOutput:
        verb = (command.verb or "").strip().lower()
        args = command.args or []

        if verb in {"look", "map"}:
            return self._output()

        if verb == "status":
            return self._output([self.status_line()])

        if verb in {"n", "s", "e", "w"}:
            return self._apply(Move.toward(Direction.from_token(verb)))

        if verb == "go":
            direction = Direction.from_token(args[0] if args else None)
            if direction is None:
                return self._output(["Invalid direction."])
            return self._apply(Move.toward(direction))

        if verb in {"stair", "stairs", "up", "down"}:
            stair = self.map_def.stair_at(self.state.player.x, self.state.player.y, self.state.player.layer)
            if verb in {"up", "down"} and stair is not None and stair.direction is not StairDirection(verb):
                return self._output([f"This stair does not lead {verb}."])
            return self._apply(UseStair())

        if verb == "press":
            if not args or len(args[0]) != 1 or not args[0].isalpha():
                return self._output(["Press which letter?"])
            return self._apply(PressButton(args[0].upper()))

        if verb == "revive":
            return self._apply(Revive())

        if verb == "undo":
            return self._ledger(self.history.undo())

        if verb == "save":
            return self._ledger(self.history.save())

        if verb == "rewind":
            return self._ledger(self.history.rewind())

        if verb == "restart":
            self.history.reset(initial_state(self.map_def))
            self._viewed_layer = None
            self._persist()
            return self._output(["Restarted."], did_persist=True)

        if verb == "layer":
            if not args:
                self._viewed_layer = None
                return self._output([f"Following the player on layer {self.state.player.layer}."])
            try:
                layer = int(args[0])
            except ValueError:
                return self._output(["Layer must be a number."])
            if not (0 <= layer < self.map_def.layer_count):
                return self._output([f"No layer {layer}."])
            self._viewed_layer = layer
            return self._output([f"Viewing layer {layer}."])

        return self._output(["Unknown command."])


# ---------------------------------------------------------------------------
# Text map
# ---------------------------------------------------------------------------


def _h_glyph(wall: Wall) -> str:
    if isinstance(wall, EmptyWall):
        return "   "
    if isinstance(wall, GlassWall):
        return "~~~"
    if isinstance(wall, DoorWall):
        return "-D-"
    if isinstance(wall, LockedWall):
        return f"-{min(wall.required_keys, 9)}-"
    if isinstance(wall, OneWayWall):
        return {Direction.N: "-^-", Direction.S: "-v-"}.get(wall.direction, "---")
    if isinstance(wall, LetterDoor):
        return f" {wall.letter.lower()} " if wall.is_open else f"-{wall.letter}-"
    return "---"


def _v_glyph(wall: Wall) -> str:
    if isinstance(wall, EmptyWall):
        return " "
    if isinstance(wall, GlassWall):
        return ":"
    if isinstance(wall, DoorWall):
        return "D"
    if isinstance(wall, LockedWall):
        return str(min(wall.required_keys, 9))
    if isinstance(wall, OneWayWall):
        return {Direction.E: ">", Direction.W: "<"}.get(wall.direction, "|")
    if isinstance(wall, LetterDoor):
        return wall.letter.lower() if wall.is_open else wall.letter
    return "|"


def render_map(map_def: MapDefinition, state: GameState, layer: int, reveal_all: bool = False) -> str:
    """Draw one layer as text; cells never seen stay in fog."""
    layer_def = map_def.layers[layer]
    layer_state = state.layers[layer]
    p = state.player
    ghosts = {(g.x, g.y) for g in layer_state.ghosts}
    keys = {(i.x, i.y) for i in layer_state.items}
    stairs = {(s.x, s.y): s.direction for s in map_def.stairs if s.layer == layer}

    def seen(x: int, y: int) -> bool:
        return map_def.in_bounds(x, y) and (reveal_all or state.is_seen(layer, x, y))

    def cell(x: int, y: int) -> str:
        if not layer_def.active_cells[y][x]:
            return "   "
        if not seen(x, y):
            return "###"
        if p.layer == layer and (p.x, p.y) == (x, y):
            return " @ "
        if (x, y) in ghosts:
            return " G "
        if (x, y) in keys:
            return " k "
        if layer_def.end_pos is not None and (layer_def.end_pos.x, layer_def.end_pos.y) == (x, y):
            return " E "
        if (x, y) in stairs:
            return " ^ " if stairs[(x, y)] is StairDirection.UP else " v "
        return " . "

    lines = []
    for y in range(map_def.height + 1):
        edge = "+"
        for x in range(map_def.width):
            visible = seen(x, y - 1) or seen(x, y)
            edge += (_h_glyph(layer_state.h_walls[y][x]) if visible else "   ") + "+"
        lines.append(edge)
        if y == map_def.height:
            break
        row = ""
        for x in range(map_def.width + 1):
            visible = seen(x - 1, y) or seen(x, y)
            row += _v_glyph(layer_state.v_walls[y][x]) if visible else " "
            if x < map_def.width:
                row += cell(x, y)
        lines.append(row)
    return "\n".join(lines)


def _elapsed_seconds(started_at: str | None) -> int:
    if not started_at:
        return 0
    try:
        dt = datetime.fromisoformat(started_at.replace("Z", "+00:00"))
    except ValueError:
        return 0
    now = datetime.now(timezone.utc)
    return max(0, int((now - dt).total_seconds()))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _load_map(args: argparse.Namespace) -> MapDefinition:
    if args.maze:
        description = json.loads(Path(args.maze).read_text(encoding="utf-8"))
    else:
        seed = args.seed if args.seed is not None else random.randrange(2**31)
        logger.info(f"Generating a {args.width}x{args.height} maze with seed {seed}")
        description = generate_description(args.width, args.height, seed, ghost_count=args.ghosts)
    if args.mode:
        description["gameMode"] = args.mode
    return map_from_description(description)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ghost maze: explore a fogged maze, dodge ghosts, find the exit")
    parser.add_argument("--repo", default="ghost_maze.json", help="Game store path (.db selects SQLite)")
    parser.add_argument("--maze", help="Plain maze description (JSON file) to play")
    parser.add_argument("--game", help="Resume an existing game by id")
    parser.add_argument("--width", type=int, default=15, help="Generated maze width (default: 15)")
    parser.add_argument("--height", type=int, default=15, help="Generated maze height (default: 15)")
    parser.add_argument("--seed", type=int, help="Seed for the maze generator")
    parser.add_argument("--ghosts", type=int, default=3, help="Ghosts in a generated maze (default: 3)")
    parser.add_argument("--mode", choices=[m.value for m in GameMode], help="Override the maze's game mode")
    parser.add_argument("--handle", default="player", help="Player name for the score table")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    repo = open_repo(args.repo)
    player = repo.get_or_create_player(args.handle)
    if args.game:
        game = repo.get_game(args.game)
        maze = repo.get_maze(game["maze_id"]) if game else None
        if maze is None:
            parser.error(f"Cannot resume game {args.game!r}")
        engine = GameEngine(
            map_def=map_from_description(maze["description"]),
            repo=repo,
            player_id=player["id"],
            game_id=args.game,
        )
    else:
        engine = GameEngine.new_game(map_def=_load_map(args), repo=repo, player_id=player["id"])
    print(f"Game {engine.game_id}. Commands: n s e w, stair, press <letter>, undo, save, rewind, revive, quit")

    output = GameOutput(view=engine.view())
    while True:
        print(output.view.map_text)
        print(engine.status_line() + ("  (!) something is close" if output.view.danger else ""))
        for message in output.messages:
            print(message)
        try:
            line = input("> ")
        except EOFError:
            break
        if line.strip().lower() in {"quit", "exit", "q"}:
            break
        output = engine.handle(parse_command(line))

    for rank, score in enumerate(repo.top_scores(maze_id=engine.map_def.maze_id, limit=5), start=1):
        m = score["metrics"]
        print(f"{rank}. loops={m.get('loops')} steps={m.get('steps')} time={m.get('elapsed_seconds')}s")
    repo.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
