import json

import pytest

from maze import SOLID, Direction, GameMode


def _engine(main_module, repo, map_def, handle="trinity"):
    player = repo.get_or_create_player(handle)
    return main_module.GameEngine.new_game(map_def=map_def, repo=repo, player_id=player["id"])


def _cmd(main_module, line):
    return main_module.parse_command(line)


def test_new_game_persists_maze_and_initial_state(main_module, repo, open_map):
    engine = _engine(main_module, repo, open_map)

    game = repo.get_game(engine.game_id)
    assert game["maze_id"] == open_map.maze_id
    assert game["state"]["player"]["x"] == 1
    assert repo.get_maze(open_map.maze_id) is not None

    view = engine.view()
    assert view.pos == {"x": 1, "y": 8}
    assert view.mode == "exploration"
    assert view.hp == 5
    assert view.steps == 0
    assert not view.can_undo
    assert not view.danger


def test_unknown_game_id_raises(main_module, repo, open_map):
    with pytest.raises(KeyError):
        main_module.GameEngine(map_def=open_map, repo=repo, player_id="p", game_id="missing")


def test_move_updates_view_and_persists(main_module, repo, open_map):
    engine = _engine(main_module, repo, open_map)

    out = engine.handle(_cmd(main_module, "go east"))

    assert out.view.pos == {"x": 2, "y": 8}
    assert out.view.steps == 1
    assert out.did_persist
    assert repo.get_game(engine.game_id)["state"]["player"]["x"] == 2


def test_blocked_move_is_not_recorded(main_module, repo, make_builder):
    b = make_builder()
    b.set_wall(0, 1, 8, Direction.S, SOLID)
    engine = _engine(main_module, repo, b.build())

    out = engine.handle(_cmd(main_module, "s"))

    assert out.messages == ["Blocked path."]
    assert not out.did_persist
    assert len(engine.history) == 1


def test_bad_input_gets_messages(main_module, repo, open_map):
    engine = _engine(main_module, repo, open_map)

    assert engine.handle(_cmd(main_module, "dance")).messages == ["Unknown command."]
    assert engine.handle(_cmd(main_module, "go sideways")).messages == ["Invalid direction."]
    assert engine.handle(_cmd(main_module, "press")).messages == ["Press which letter?"]
    assert engine.handle(_cmd(main_module, "stair")).messages == ["There is no stair here."]
    assert engine.handle(_cmd(main_module, "revive")).messages == ["You are not dead."]


def test_resumed_engine_continues_from_saved_state(main_module, repo, open_map):
    engine = _engine(main_module, repo, open_map)
    engine.handle(_cmd(main_module, "e"))
    engine.handle(_cmd(main_module, "n"))

    resumed = main_module.GameEngine(
        map_def=open_map, repo=repo, player_id=engine.player_id, game_id=engine.game_id
    )

    assert resumed.state == engine.state
    assert resumed.view().pos == {"x": 2, "y": 7}


def test_win_records_score_once(main_module, repo, make_builder):
    b = make_builder()
    b.set_end(0, 2, 8)
    m = b.build()
    engine = _engine(main_module, repo, m)

    out = engine.handle(_cmd(main_module, "e"))
    assert out.view.is_won
    assert "You escaped the maze!" in out.messages
    assert repo.get_game(engine.game_id)["status"] == "completed"

    assert engine.handle(_cmd(main_module, "w")).messages == ["The maze is already solved."]
    engine.handle(_cmd(main_module, "restart"))
    engine.handle(_cmd(main_module, "e"))

    scores = repo.top_scores(maze_id=m.maze_id)
    assert len(scores) == 1
    assert scores[0]["metrics"]["steps"] == 1
    assert scores[0]["metrics"]["loops"] == 0


def test_undo_save_and_rewind_commands(main_module, repo, open_map):
    engine = _engine(main_module, repo, open_map)

    assert engine.handle(_cmd(main_module, "undo")).messages == ["Nothing to undo."]
    engine.handle(_cmd(main_module, "e"))
    assert engine.handle(_cmd(main_module, "save")).messages == ["Checkpoint saved at step 1."]
    assert engine.handle(_cmd(main_module, "save")).messages == ["Move before saving again."]
    engine.handle(_cmd(main_module, "n"))
    engine.handle(_cmd(main_module, "n"))

    out = engine.handle(_cmd(main_module, "rewind"))
    assert out.messages == ["Rewound to checkpoint at step 1."]
    assert out.view.pos == {"x": 2, "y": 8}
    assert repo.get_game(engine.game_id)["state"]["player"]["y"] == 8

    out = engine.handle(_cmd(main_module, "undo"))
    assert out.view.pos == {"x": 1, "y": 8}


def test_death_loop_flow(main_module, repo, make_builder):
    m = make_builder(game_mode=GameMode.DEATH_LOOP, initial_stamina=1).build()
    engine = _engine(main_module, repo, m)

    out = engine.handle(_cmd(main_module, "n"))
    assert out.view.is_dead
    assert out.view.death_reason == "stamina_depleted"
    assert "You collapse, out of stamina." in out.messages
    assert engine.handle(_cmd(main_module, "e")).messages == ["You are dead. Type 'revive' to continue."]

    out = engine.handle(_cmd(main_module, "revive"))
    assert out.view.loop_count == 1
    assert out.view.stamina == 1
    assert not out.view.can_undo
    assert engine.handle(_cmd(main_module, "status")).messages == ["Loop 1 | Keys 0 | Stamina 1"]


def test_game_over_status_is_persisted(main_module, repo, make_builder):
    b = make_builder(initial_health=1)
    b.set_start(0, 5, 2)
    b.add_ghost(0, 5, 4)
    m = b.build()
    engine = _engine(main_module, repo, m)

    out = engine.handle(_cmd(main_module, "s"))

    assert out.view.is_game_over
    assert out.messages == ["A ghost caught you.", "Game over."]
    assert repo.get_game(engine.game_id)["status"] == "game_over"
    assert engine.handle(_cmd(main_module, "revive")).messages == ["No lives left."]


def test_stairs_and_spectating(main_module, repo, make_builder):
    b = make_builder()
    b.add_layer()
    b.add_stair_pair(3, 3, 0)
    b.set_start(0, 3, 3)
    m = b.build()
    engine = _engine(main_module, repo, m)

    assert engine.handle(_cmd(main_module, "down")).messages == ["This stair does not lead down."]
    out = engine.handle(_cmd(main_module, "up"))
    assert out.view.layer == 1
    assert out.view.viewed_layer == 1

    out = engine.handle(_cmd(main_module, "layer 0"))
    assert out.view.viewed_layer == 0
    assert out.view.layer == 1
    assert engine.handle(_cmd(main_module, "layer 7")).messages == ["No layer 7."]
    assert engine.handle(_cmd(main_module, "layer x")).messages == ["Layer must be a number."]

    out = engine.handle(_cmd(main_module, "e"))
    assert out.view.viewed_layer == 1


def test_status_line_in_exploration(main_module, repo, open_map):
    engine = _engine(main_module, repo, open_map)
    assert engine.handle(_cmd(main_module, "status")).messages == ["HP 5 | Keys 0 | Steps 0"]


def test_map_text_shows_player_and_fog(main_module, repo, make_builder):
    b = make_builder()
    b.set_start(0, 5, 5)
    b.add_key(0, 5, 3)
    m = b.build()
    engine = _engine(main_module, repo, m)

    text = engine.view().map_text
    lines = text.splitlines()

    assert len(lines) == 2 * m.height + 1
    assert " @ " in lines[2 * 5 + 1]
    assert " k " in lines[2 * 3 + 1]
    assert "###" in text

    revealed = main_module.render_map(m, engine.state, 0, reveal_all=True)
    assert "###" not in revealed


def test_cli_plays_a_generated_maze(main_module, tmp_path, monkeypatch, capsys):
    store = tmp_path / "cli.json"
    inputs = iter(["status", "look", "quit"])
    monkeypatch.setattr("builtins.input", lambda prompt="": next(inputs))

    code = main_module.main(["--repo", str(store), "--seed", "7", "--width", "8", "--height", "8", "--handle", "cli"])

    assert code == 0
    doc = json.loads(store.read_text(encoding="utf-8"))
    assert len(doc["games"]) == 1
    assert len(doc["mazes"]) == 1
    assert "HP 5 | Keys 0 | Steps 0" in capsys.readouterr().out


def test_cli_resumes_a_game(main_module, tmp_path, monkeypatch, capsys, make_builder):
    store = tmp_path / "resume.json"
    repo = main_module.open_repo(store)
    engine = _engine(main_module, repo, make_builder().build(), handle="cli")
    engine.handle(_cmd(main_module, "e"))

    def end_of_input(prompt=""):
        raise EOFError

    monkeypatch.setattr("builtins.input", end_of_input)
    assert main_module.main(["--repo", str(store), "--game", engine.game_id, "--handle", "cli"]) == 0
    assert "HP 5 | Keys 0 | Steps 1" in capsys.readouterr().out


def test_cli_rejects_unknown_game(main_module, tmp_path):
    with pytest.raises(SystemExit):
        main_module.main(["--repo", str(tmp_path / "x.json"), "--game", "missing"])
