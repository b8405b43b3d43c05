from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, Session, SQLModel, create_engine, select

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _as_record(obj: Any) -> Any:
    # Return dicts as-is; convert dataclasses to dicts if needed.
    if isinstance(obj, dict):
        return obj
    try:
        return asdict(obj)
    except TypeError:
        return obj


def _score_key(score: dict[str, Any]) -> tuple[Any, Any, Any]:
    # Fewer loops first, then fewer steps, then faster.
    metrics = score.get("metrics", {})
    return (
        metrics.get("loops", float("inf")),
        metrics.get("steps", float("inf")),
        metrics.get("elapsed_seconds", float("inf")),
    )


@dataclass
class PlayerRecord:
    id: str
    handle: str
    created_at: str


@dataclass
class MazeRecord:
    id: str
    name: str
    description: dict[str, Any]
    created_at: str


@dataclass
class GameRecord:
    id: str
    player_id: str
    maze_id: str
    state: dict[str, Any]
    status: str
    created_at: str
    updated_at: str


@dataclass
class ScoreRecord:
    id: str
    player_id: str
    game_id: str
    maze_id: str
    metrics: dict[str, Any]
    created_at: str


class JsonGameRepository:
    def __init__(self, path: str | Path, schema_version: int = 1):
        self.path = Path(path)
        self.schema_version = schema_version
        self._ensure_store()

    def _empty_doc(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "players": {},
            "mazes": {},
            "games": {},
            "scores": {},
        }

    def _ensure_store(self) -> None:
        if self.path.exists():
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_doc(self._empty_doc())
        logger.info(f"Created game store at {self.path}")

    def _read_doc(self) -> dict[str, Any]:
        if not self.path.exists():
            return self._empty_doc()
        raw = self.path.read_text(encoding="utf-8").strip()
        if not raw:
            return self._empty_doc()
        doc = json.loads(raw)
        # Backfill missing keys if needed.
        doc.setdefault("schema_version", self.schema_version)
        for key in ("players", "mazes", "games", "scores"):
            doc.setdefault(key, {})
        return doc

    def _write_doc(self, doc: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(doc, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.path)

    def _save_doc(self, doc: dict[str, Any]) -> None:
        doc["schema_version"] = self.schema_version
        self._write_doc(doc)

    # Player ops
    def _lookup(self, table: str, key: str) -> dict[str, Any] | None:
        return self._read_doc()[table].get(key)

    def get_player(self, player_id: str) -> dict[str, Any] | None:
        return self._lookup("players", player_id)

    def get_or_create_player(self, handle: str) -> dict[str, Any]:
        doc = self._read_doc()
        for player in doc["players"].values():
            if player.get("handle") == handle:
                return player

        record = _as_record(PlayerRecord(id=str(uuid4()), handle=handle, created_at=_utc_now_iso()))
        doc["players"][record["id"]] = record
        self._save_doc(doc)
        logger.info(f"New player {handle!r} ({record['id']})")
        return record

    # Maze ops
    def save_maze(self, maze_id: str, description: dict[str, Any], name: str = "") -> dict[str, Any]:
        doc = self._read_doc()
        existing = doc["mazes"].get(maze_id)
        record = _as_record(
            MazeRecord(
                id=maze_id,
                name=name or (existing or {}).get("name", ""),
                description=description,
                created_at=(existing or {}).get("created_at", _utc_now_iso()),
            )
        )
        doc["mazes"][maze_id] = record
        self._save_doc(doc)
        return record

    def get_maze(self, maze_id: str) -> dict[str, Any] | None:
        return self._lookup("mazes", maze_id)

    # Game ops
    def create_game(self, player_id: str, maze_id: str, initial_state: dict[str, Any]) -> dict[str, Any]:
        doc = self._read_doc()
        now = _utc_now_iso()
        record = _as_record(
            GameRecord(
                id=str(uuid4()),
                player_id=player_id,
                maze_id=maze_id,
                state=initial_state,
                status="in_progress",
                created_at=now,
                updated_at=now,
            )
        )
        doc["games"][record["id"]] = record
        self._save_doc(doc)
        logger.info(f"Game {record['id']} started on {maze_id}")
        return record

    def get_game(self, game_id: str) -> dict[str, Any] | None:
        return self._lookup("games", game_id)

    def save_game(self, game_id: str, state: dict[str, Any], status: str = "in_progress") -> dict[str, Any]:
        doc = self._read_doc()
        game = doc["games"].get(game_id)
        if game is None:
            raise KeyError(f"Unknown game_id: {game_id}")
        game["state"] = state
        game["status"] = status
        game["updated_at"] = _utc_now_iso()
        self._save_doc(doc)
        return game

    # Score ops
    def record_score(
        self,
        player_id: str,
        game_id: str,
        maze_id: str,
        metrics: dict[str, Any],
    ) -> dict[str, Any]:
        doc = self._read_doc()
        record = _as_record(
            ScoreRecord(
                id=str(uuid4()),
                player_id=player_id,
                game_id=game_id,
                maze_id=maze_id,
                metrics=metrics,
                created_at=_utc_now_iso(),
            )
        )
        doc["scores"][record["id"]] = record
        self._save_doc(doc)
        logger.info(f"Score recorded for game {game_id}: {metrics}")
        return record

    def top_scores(self, maze_id: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        doc = self._read_doc()
        items = list(doc["scores"].values())
        if maze_id is not None:
            items = [s for s in items if s.get("maze_id") == maze_id]
        items.sort(key=_score_key)
        return items[:limit]

    def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# SQLModel tables for SqliteGameRepository
# ---------------------------------------------------------------------------


class PlayerModel(SQLModel, table=True):
    __tablename__ = "players"
    id: str = Field(primary_key=True)
    handle: str = Field(index=True)
    created_at: str


class MazeModel(SQLModel, table=True):
    __tablename__ = "mazes"
    id: str = Field(primary_key=True)
    name: str = ""
    description_json: str = Field(sa_column_kwargs={"name": "description"})
    created_at: str


class GameModel(SQLModel, table=True):
    __tablename__ = "games"
    id: str = Field(primary_key=True)
    player_id: str
    maze_id: str
    state_json: str = Field(sa_column_kwargs={"name": "state"})
    status: str
    created_at: str
    updated_at: str


class ScoreModel(SQLModel, table=True):
    __tablename__ = "scores"
    id: str = Field(primary_key=True)
    player_id: str
    game_id: str
    maze_id: str = Field(index=True)
    metrics_json: str = Field(sa_column_kwargs={"name": "metrics"})
    created_at: str


def _decode(raw: Any) -> Any:
    return json.loads(raw) if isinstance(raw, str) else raw


def _player_dict(row: PlayerModel) -> dict[str, Any]:
    return {"id": row.id, "handle": row.handle, "created_at": row.created_at}


def _score_dict(row: ScoreModel) -> dict[str, Any]:
    record = row.model_dump(exclude={"metrics_json"})
    record["metrics"] = _decode(row.metrics_json)
    return record


def _game_dict(row: GameModel, state: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "id": row.id,
        "player_id": row.player_id,
        "maze_id": row.maze_id,
        "state": _decode(row.state_json) if state is None else state,
        "status": row.status,
        "created_at": row.created_at,
        "updated_at": row.updated_at,
    }


class SqliteGameRepository:
    """SQLite-backed repository using SQLModel. Same interface as JsonGameRepository."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite:///{self.path}"
        self.engine = create_engine(url, connect_args={"check_same_thread": False})
        SQLModel.metadata.create_all(self.engine)
        self._verify_schema()

    def _verify_schema(self) -> None:
        """Drop and recreate tables if the existing schema is incompatible."""
        try:
            with Session(self.engine) as session:
                session.exec(select(MazeModel).limit(1)).all()
                session.exec(select(GameModel).limit(1)).all()
                session.exec(select(ScoreModel).limit(1)).all()
        except SQLAlchemyError as exc:
            logger.warning(f"Incompatible schema in {self.path} ({exc}); recreating tables")
            SQLModel.metadata.drop_all(self.engine)
            SQLModel.metadata.create_all(self.engine)

    # Player ops
    def get_player(self, player_id: str) -> dict[str, Any] | None:
        with Session(self.engine) as session:
            row = session.get(PlayerModel, player_id)
            return None if row is None else _player_dict(row)

    def get_or_create_player(self, handle: str) -> dict[str, Any]:
        with Session(self.engine) as session:
            stmt = select(PlayerModel).where(PlayerModel.handle == handle)
            row = session.exec(stmt).first()
            if row is not None:
                return _player_dict(row)
            created = PlayerModel(id=str(uuid4()), handle=handle, created_at=_utc_now_iso())
            session.add(created)
            session.commit()
            session.refresh(created)
            logger.info(f"New player {handle!r} ({created.id})")
            return _player_dict(created)

    # Maze ops
    def save_maze(self, maze_id: str, description: dict[str, Any], name: str = "") -> dict[str, Any]:
        with Session(self.engine) as session:
            row = session.get(MazeModel, maze_id)
            if row is None:
                row = MazeModel(id=maze_id, name=name, description_json="", created_at=_utc_now_iso())
            elif name:
                row.name = name
            row.description_json = json.dumps(description)
            session.add(row)
            session.commit()
            session.refresh(row)
            return {"id": row.id, "name": row.name, "description": description, "created_at": row.created_at}

    def get_maze(self, maze_id: str) -> dict[str, Any] | None:
        with Session(self.engine) as session:
            row = session.get(MazeModel, maze_id)
            if row is None:
                return None
            return {
                "id": row.id,
                "name": row.name,
                "description": _decode(row.description_json),
                "created_at": row.created_at,
            }

    # Game ops
    def create_game(self, player_id: str, maze_id: str, initial_state: dict[str, Any]) -> dict[str, Any]:
        now = _utc_now_iso()
        row = GameModel(
            id=str(uuid4()),
            player_id=player_id,
            maze_id=maze_id,
            state_json=json.dumps(initial_state),
            status="in_progress",
            created_at=now,
            updated_at=now,
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            record = _game_dict(row, initial_state)
        logger.info(f"Game {record['id']} started on {maze_id}")
        return record

    def get_game(self, game_id: str) -> dict[str, Any] | None:
        with Session(self.engine) as session:
            row = session.get(GameModel, game_id)
            if row is None:
                return None
            return _game_dict(row)

    def save_game(self, game_id: str, state: dict[str, Any], status: str = "in_progress") -> dict[str, Any]:
        with Session(self.engine) as session:
            row = session.get(GameModel, game_id)
            if row is None:
                raise KeyError(f"Unknown game_id: {game_id}")
            row.state_json = json.dumps(state)
            row.status = status
            row.updated_at = _utc_now_iso()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _game_dict(row, state)

    # Score ops
    def record_score(
        self,
        player_id: str,
        game_id: str,
        maze_id: str,
        metrics: dict[str, Any],
    ) -> dict[str, Any]:
        row = ScoreModel(
            id=str(uuid4()),
            player_id=player_id,
            game_id=game_id,
            maze_id=maze_id,
            metrics_json=json.dumps(metrics),
            created_at=_utc_now_iso(),
        )
        with Session(self.engine) as session:
            session.add(row)
            session.commit()
            session.refresh(row)
            record = _score_dict(row)
        logger.info(f"Score recorded for game {game_id}: {metrics}")
        return record

    def top_scores(self, maze_id: str | None = None, limit: int = 10) -> list[dict[str, Any]]:
        with Session(self.engine) as session:
            stmt = select(ScoreModel)
            if maze_id is not None:
                stmt = stmt.where(ScoreModel.maze_id == maze_id)
            items = [_score_dict(row) for row in session.exec(stmt).all()]
        items.sort(key=_score_key)
        return items[:limit]

    def close(self) -> None:
        self.engine.dispose()


def open_repo(path: str | Path):
    """Return SqliteGameRepository for .db paths, JsonGameRepository otherwise."""
    path = Path(path)
    if path.suffix == ".db":
        return SqliteGameRepository(path)
    return JsonGameRepository(path)
