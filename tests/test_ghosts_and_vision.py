from ghosts import MoveIntent, choose_target, direct_ghosts, resolve_moves, shortest_path
from logic import initial_state
from maze import DOOR, GLASS, SOLID, Direction, GameMode, Ghost, LetterDoor, Position
from state import LayerState
from vision import can_see, unseen_ghost_nearby


def _layer(map_def, index=0):
    return map_def.layers[index], LayerState.from_definition(map_def.layers[index])


def test_director_moves_ghost_one_step_along_shortest_path(make_builder):
    b = make_builder()
    b.add_ghost(0, 5, 5)
    layer_def, layer_state = _layer(b.build())

    moved = direct_ghosts(layer_def, layer_state, before=Position(5, 2), after=Position(5, 2), tick=0)

    assert moved.ghosts[0].pos == Position(5, 4)


def test_ghost_without_sight_stays_put(make_builder):
    b = make_builder()
    b.add_ghost(0, 5, 5)
    b.set_wall(0, 5, 4, Direction.S, SOLID)
    layer_def, layer_state = _layer(b.build())

    moved = direct_ghosts(layer_def, layer_state, before=Position(5, 2), after=Position(5, 2), tick=0)

    assert moved is layer_state


def test_choose_target_prefers_current_position(make_builder):
    b = make_builder()
    b.add_ghost(0, 5, 5)
    _, layer_state = _layer(b.build())
    ghost = layer_state.ghosts[0]

    assert choose_target(layer_state, ghost, before=Position(5, 2), after=Position(2, 5)) == Position(2, 5)
    assert choose_target(layer_state, ghost, before=Position(5, 2), after=Position(2, 2)) == Position(5, 2)
    assert choose_target(layer_state, ghost, before=Position(1, 1), after=Position(2, 2)) is None


def test_shortest_path_avoids_doors(make_builder):
    b = make_builder(width=3, height=1)
    b.set_wall(0, 0, 0, Direction.E, DOOR)
    layer_def, layer_state = _layer(b.build())

    assert shortest_path(layer_def, layer_state, Position(0, 0), Position(2, 0)) is None


def test_shortest_path_skips_inactive_cells(make_builder):
    b = make_builder(width=3, height=2)
    b.toggle_cell(0, 1, 0)
    layer_def, layer_state = _layer(b.build())

    path = shortest_path(layer_def, layer_state, Position(0, 0), Position(2, 0))

    assert path == [Position(0, 0), Position(0, 1), Position(1, 1), Position(2, 1), Position(2, 0)]


def test_conflicting_intents_never_share_a_cell():
    ghosts = (Ghost(0, 0, 0), Ghost(2, 0, 1))
    intents = [MoveIntent(0, Position(1, 0)), MoveIntent(1, Position(1, 0))]

    moved = resolve_moves(ghosts, intents, tick=3)

    assert moved[0].pos == Position(1, 0)
    assert moved[1].pos == Position(2, 0)
    assert moved[1].trail == ()
    assert len({g.pos for g in moved}) == len(moved)


def test_queue_of_ghosts_moves_in_rounds():
    ghosts = (Ghost(0, 0, 0), Ghost(1, 0, 1))
    intents = [MoveIntent(0, Position(1, 0)), MoveIntent(1, Position(2, 0))]

    moved = resolve_moves(ghosts, intents, tick=0)

    assert [g.pos for g in moved] == [Position(1, 0), Position(2, 0)]


def test_swapping_ghosts_stay_in_place():
    ghosts = (Ghost(0, 0, 0), Ghost(1, 0, 1))
    intents = [MoveIntent(0, Position(1, 0)), MoveIntent(1, Position(0, 0))]

    moved = resolve_moves(ghosts, intents, tick=0)

    assert moved == ghosts


def test_ghost_sight_passes_glass_and_open_letter_doors(make_builder):
    b = make_builder()
    b.set_wall(0, 3, 5, Direction.E, GLASS)
    b.set_wall(0, 5, 5, Direction.E, LetterDoor(letter="B", is_open=True))
    _, layer_state = _layer(b.build())
    assert can_see(layer_state, Position(2, 5), Position(7, 5))

    b.set_wall(0, 5, 5, Direction.E, LetterDoor(letter="B"))
    _, layer_state = _layer(b.build())
    assert not can_see(layer_state, Position(2, 5), Position(7, 5))
    assert not can_see(layer_state, Position(2, 5), Position(3, 6))


def test_player_sight_stops_at_walls_and_passes_glass(make_builder):
    b = make_builder()
    b.set_start(0, 5, 5)
    b.set_wall(0, 6, 5, Direction.E, SOLID)
    b.set_wall(0, 5, 4, Direction.N, GLASS)
    b.set_wall(0, 5, 6, Direction.S, DOOR)
    m = b.build()
    s = initial_state(m)

    assert s.is_seen(0, 6, 5)
    assert not s.is_seen(0, 7, 5)
    assert s.is_seen(0, 5, 1)
    assert s.is_seen(0, 5, 6)
    assert not s.is_seen(0, 5, 7)
    # The start room is always revealed.
    assert s.is_seen(0, 0, 9)
    assert not s.is_seen(0, 6, 6)


def test_standing_on_a_stair_reveals_the_landing(make_builder):
    b = make_builder()
    b.add_layer()
    b.add_stair_pair(3, 3, 0)
    b.set_start(0, 3, 3)
    s = initial_state(b.build())

    assert s.is_seen(1, 3, 3)
    assert not s.is_seen(1, 4, 3)


def test_danger_flag_for_unseen_adjacent_ghost(make_builder):
    b = make_builder()
    b.set_start(0, 5, 5)
    b.add_ghost(0, 6, 4)
    m = b.build()
    assert unseen_ghost_nearby(initial_state(m), m)

    b.game_mode = GameMode.DEATH_LOOP
    m = b.build()
    assert not unseen_ghost_nearby(initial_state(m), m)


def test_no_danger_when_adjacent_ghost_is_visible(make_builder):
    b = make_builder()
    b.set_start(0, 5, 5)
    b.add_ghost(0, 5, 4)
    b.add_ghost(0, 7, 7)
    m = b.build()
    assert not unseen_ghost_nearby(initial_state(m), m)
