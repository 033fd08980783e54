# tilemerge_core.py
# This file is the rule engine for the sliding-tile merge game: tiles, shifts, spawning and scoring.

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_BOARD_SIZE = 4
BASE_VALUE = 2
INITIAL_TILES = 2

# Physical sizing, only consumed by renderers.
TILE_SIZE = 40.0
TILE_SPACER = 10.0


class GameProgressState(Enum):
    """Represents the current progress state of the game."""
    IN_PROGRESS = 1
    GAME_OVER = 2


@dataclass(frozen=True, order=True)
class Position:
    """A cell coordinate on the grid. x is the column, y is the row."""
    x: int
    y: int


@dataclass(frozen=True)
class Tile:
    """A live tile: stable identity, cell position and value."""
    id: int
    position: Position
    value: int


class Direction(Enum):
    """Represents the possible shift directions."""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def from_key(cls, key: str) -> "Direction":
        """
        Maps an input key to a direction.
        Args:
            key (str): An arrow name ("up", "left", ...) or one of W/A/S/D, any case.
        Returns:
            Direction: The matching direction.
        Raises:
            ValueError: If the key does not name a direction.
        """
        normalized = key.strip().lower()
        direction = _KEY_BINDINGS.get(normalized)
        if direction is None:
            raise ValueError(f"{key!r} is not a valid board shift key.")
        return direction

    def sort_key(self, position: Position) -> Tuple[int, int]:
        """
        Two-key traversal order: the first key separates lanes, the second orders a lane
        from the target edge backwards.
        """
        if self is Direction.UP:
            return (-position.x, -position.y)
        if self is Direction.DOWN:
            return (position.x, position.y)
        if self is Direction.LEFT:
            return (position.y, position.x)
        return (-position.y, -position.x)

    def lane(self, position: Position) -> int:
        """The coordinate shared by every tile in the same lane: x for vertical shifts, y otherwise."""
        if self in (Direction.UP, Direction.DOWN):
            return position.x
        return position.y

    def place(self, position: Position, column: int, size: int) -> Position:
        """Returns the position `column` cells away from the target edge, in the same lane."""
        if self is Direction.UP:
            return Position(position.x, size - 1 - column)
        if self is Direction.DOWN:
            return Position(position.x, column)
        if self is Direction.LEFT:
            return Position(column, position.y)
        return Position(size - 1 - column, position.y)


_KEY_BINDINGS = {
    "up": Direction.UP, "w": Direction.UP,
    "down": Direction.DOWN, "s": Direction.DOWN,
    "left": Direction.LEFT, "a": Direction.LEFT,
    "right": Direction.RIGHT, "d": Direction.RIGHT,
}

# --- Grid Geometry ---

@dataclass(frozen=True)
class Board:
    """
    The N x N grid. Only `size` matters to the rules; the physical sizing is for renderers.
    """
    size: int

    def __post_init__(self):
        if not isinstance(self.size, int) or self.size < 2:
            raise ValueError("Board size must be an integer of at least 2.")

    @property
    def physical_size(self) -> float:
        return self.size * TILE_SIZE + (self.size + 1) * TILE_SPACER

    def cell_position_to_physical(self, index: int) -> float:
        """
        Pixel offset of the centre of cell `index`, measured from the board centre.
        Args:
            index (int): A column or row index in [0, size).
        Returns:
            float: The offset along that axis.
        """
        offset = -self.physical_size / 2.0 + TILE_SIZE / 2.0
        return offset + index * TILE_SIZE + (index + 1) * TILE_SPACER

    def contains(self, position: Position) -> bool:
        """True if both coordinates lie in [0, size)."""
        return 0 <= position.x < self.size and 0 <= position.y < self.size

    def cells(self) -> List[Position]:
        """Every cell on the board, column by column."""
        return [Position(x, y) for x in range(self.size) for y in range(self.size)]

# --- Tile Store ---

def is_valid_tile_value(value: int) -> bool:
    """True for powers of two that are at least 2."""
    return isinstance(value, int) and value >= BASE_VALUE and value & (value - 1) == 0


class TileStore:
    """
    The set of live tiles on a board, indexed by id and by position.

    Every mutation checks the board invariants and raises ValueError on a violation.
    """

    def __init__(self, size: int = DEFAULT_BOARD_SIZE):
        self.board = Board(size)
        self._tiles: Dict[int, Tile] = {}
        self._by_position: Dict[Position, int] = {}
        self._next_id = 0

    @classmethod
    def from_tiles(cls, size: int, tiles: Iterable[Tile]) -> "TileStore":
        """
        Rebuilds a store from tiles held elsewhere (e.g. by a client).
        Args:
            size (int): Board dimension.
            tiles (Iterable[Tile]): The live tiles, with their ids.
        Returns:
            TileStore: A validated store; new ids continue after the largest given id.
        Raises:
            ValueError: If the tiles break any board invariant.
        """
        store = cls(size)
        for tile in tiles:
            store._add(tile)
        return store

    @property
    def size(self) -> int:
        return self.board.size

    def __len__(self) -> int:
        return len(self._tiles)

    def __iter__(self) -> Iterator[Tile]:
        return iter(list(self._tiles.values()))

    def __contains__(self, tile_id: int) -> bool:
        return tile_id in self._tiles

    def get(self, tile_id: int) -> Tile:
        """Returns the live tile with this id. Raises KeyError if there is none."""
        return self._tiles[tile_id]

    def at(self, position: Position) -> Optional[Tile]:
        """Returns the tile occupying `position`, or None for an empty cell."""
        tile_id = self._by_position.get(position)
        return None if tile_id is None else self._tiles[tile_id]

    def is_full(self) -> bool:
        return len(self._tiles) == self.size * self.size

    def empty_cells(self) -> List[Position]:
        return [cell for cell in self.board.cells() if cell not in self._by_position]

    def snapshot(self) -> Tuple[Tile, ...]:
        return tuple(self._tiles.values())

    def insert(self, position: Position, value: int = BASE_VALUE) -> Tile:
        """
        Places a new tile under the next free id.
        Args:
            position (Position): An empty cell on the board.
            value (int): Tile value. Default is the base value.
        Returns:
            Tile: The created tile.
        Raises:
            ValueError: If the cell is taken or off the board, or the value is invalid.
        """
        tile = Tile(self._next_id, position, value)
        self._add(tile)
        return tile

    def remove(self, tile_id: int) -> Tile:
        """
        Removes a live tile.
        Args:
            tile_id (int): Id of the tile to drop.
        Returns:
            Tile: The removed tile.
        Raises:
            ValueError: If no live tile has that id.
        """
        if tile_id not in self._tiles:
            raise ValueError(f"No live tile with id {tile_id}.")
        tile = self._tiles.pop(tile_id)
        del self._by_position[tile.position]
        return tile

    def apply(self, result: "ShiftResult") -> None:
        """
        Applies a shift resolution as one batch: absorbed tiles are dropped and every
        survivor takes its new position and value.
        """
        tiles = {tid: tile for tid, tile in self._tiles.items() if tid not in result.removed}
        for tile in result.tiles:
            if tile.id not in tiles:
                raise ValueError(f"Shift result refers to unknown tile {tile.id}.")
            tiles[tile.id] = tile
        rebuilt = TileStore.from_tiles(self.size, tiles.values())
        self._tiles, self._by_position = rebuilt._tiles, rebuilt._by_position

    def _add(self, tile: Tile) -> None:
        if tile.id in self._tiles:
            raise ValueError(f"Duplicate tile id {tile.id}.")
        if not self.board.contains(tile.position):
            raise ValueError(f"Tile {tile.id} at {tile.position} is outside a {self.size}x{self.size} board.")
        if tile.position in self._by_position:
            raise ValueError(f"Cell {tile.position} is already occupied.")
        if not is_valid_tile_value(tile.value):
            raise ValueError(f"Tile value {tile.value!r} is not a power of two >= {BASE_VALUE}.")
        self._tiles[tile.id] = tile
        self._by_position[tile.position] = tile.id
        self._next_id = max(self._next_id, tile.id + 1)

# --- Shift Resolver ---

@dataclass(frozen=True)
class ShiftResult:
    """Outcome of one shift: surviving tiles (new positions/values), absorbed ids and score gained."""
    tiles: Tuple[Tile, ...]
    removed: FrozenSet[int]
    score_delta: int
    moved: bool

    @property
    def new_positions(self) -> Dict[int, Position]:
        return {tile.id: tile.position for tile in self.tiles}


def resolve_shift(direction: Direction, tiles: Iterable[Tile], size: int) -> ShiftResult:
    """
    Slides every tile toward the direction's edge, merging equal neighbours once per shift.

    Tiles are visited nearest-to-edge first. A running `column` counts the cells already
    claimed in the current lane; each tile is placed at that column, then the next tile
    is peeked: a new lane resets the column, a different value advances it, and an equal
    value is absorbed into the current tile before the column is updated against the
    tile after it.

    Args:
        direction (Direction): Shift direction.
        tiles (Iterable[Tile]): Snapshot of the live tiles. It is not modified.
        size (int): Board dimension.
    Returns:
        ShiftResult: Survivors, removed ids and the score delta (sum of merged values).
    Raises:
        ValueError: If the tiles break a board invariant (shared cell, off-board
            position, value that is not a power of two).
    """
    snapshot = TileStore.from_tiles(size, tiles).snapshot()
    ordered = sorted(snapshot, key=lambda t: direction.sort_key(t.position))

    survivors: List[Tile] = []
    removed = set()
    score_delta = 0
    column = 0
    index = 0
    while index < len(ordered):
        tile = ordered[index]
        target = direction.place(tile.position, column, size)
        value = tile.value
        lane = direction.lane(tile.position)
        index += 1
        if index < len(ordered):
            next_tile = ordered[index]
            if lane != direction.lane(next_tile.position):
                column = 0
            elif value != next_tile.value:
                column += 1
            else:
                value += next_tile.value
                score_delta += value
                removed.add(next_tile.id)
                index += 1
                if index < len(ordered):
                    column = 0 if lane != direction.lane(ordered[index].position) else column + 1
        survivors.append(Tile(tile.id, target, value))

    before = {tile.id: tile.position for tile in ordered}
    moved = bool(removed) or any(tile.position != before[tile.id] for tile in survivors)
    return ShiftResult(tuple(survivors), frozenset(removed), score_delta, moved)

# --- Terminal Detector ---

_NEIGHBOR_OFFSETS = ((-1, 0), (0, 1), (1, 0), (0, -1))


def has_equal_neighbor(values: Dict[Position, int], position: Position, size: int) -> bool:
    """True if an orthogonal neighbour of `position` on the board holds the same value."""
    value = values[position]
    for dx, dy in _NEIGHBOR_OFFSETS:
        nx, ny = position.x + dx, position.y + dy
        if not (0 <= nx < size and 0 <= ny < size):
            continue
        if values.get(Position(nx, ny)) == value:
            return True
    return False


def is_game_over(tiles: Iterable[Tile], size: int) -> bool:
    """
    Checks whether the board is full and no tile has an equal-valued orthogonal neighbour.
    Args:
        tiles (Iterable[Tile]): The live tiles.
        size (int): Board dimension.
    Returns:
        bool: True if no shift could change the board.
    Raises:
        ValueError: If the tiles break a board invariant.
    """
    store = TileStore.from_tiles(size, tiles)
    if not store.is_full():
        return False
    values = {tile.position: tile.value for tile in store}
    return not any(has_equal_neighbor(values, position, size) for position in values)

# --- Spawner ---

def spawn_one(store: TileStore, rng=None) -> Optional[Position]:
    """
    Picks a uniformly random empty cell.
    Args:
        store (TileStore): The live tiles.
        rng: Random source with a `choice` method. Defaults to the `random` module.
    Returns:
        Optional[Position]: The chosen cell, or None if the board is full.
    """
    empty_cells = store.empty_cells()
    if not empty_cells:
        return None
    return (rng or random).choice(empty_cells)


def spawn_initial(size: int, rng=None) -> List[Position]:
    """Picks the distinct starting cells for a new game."""
    return (rng or random).sample(Board(size).cells(), INITIAL_TILES)

# --- Score Tracker ---

def apply_delta(score: int, best_score: int, delta: int) -> Tuple[int, int]:
    """
    Adds a merge score to the running score.
    Args:
        score (int): Current score.
        best_score (int): Best score so far.
        delta (int): Points gained by the last shift.
    Returns:
        Tuple[int, int]: The new score and the new best score.
    """
    new_score = score + delta
    return new_score, max(best_score, new_score)


def reset_score(best_score: int) -> Tuple[int, int]:
    """Starts the running score over; the best score is kept."""
    return 0, best_score

# --- Turn Driver ---

@dataclass
class GameState:
    """Everything a game session carries between turns."""
    store: TileStore
    score: int = 0
    best_score: int = 0
    progress: GameProgressState = GameProgressState.IN_PROGRESS

    @property
    def size(self) -> int:
        return self.store.size


@dataclass(frozen=True)
class TurnResult:
    moved: bool
    removed: FrozenSet[int] = frozenset()
    score_delta: int = 0
    spawned: Optional[Tile] = None
    progress: GameProgressState = GameProgressState.IN_PROGRESS


def new_game(size: int = DEFAULT_BOARD_SIZE, best_score: int = 0, rng=None) -> GameState:
    """
    Starts a game with the initial base tiles placed.
    Args:
        size (int): Board dimension. Default is 4.
        best_score (int): Best score carried over from earlier games in this session.
        rng: Random source for tile placement.
    Returns:
        GameState: Fresh state with score 0.
    Raises:
        ValueError: If the size is below 2.
    """
    store = TileStore(size)
    for position in spawn_initial(size, rng):
        store.insert(position)
    score, best_score = reset_score(best_score)
    return GameState(store=store, score=score, best_score=best_score)


def reset_game(state: GameState, rng=None) -> GameState:
    """
    Starts a new game on the same board size, keeping the session best score.
    Args:
        state (GameState): The finished or abandoned game.
        rng: Random source for tile placement.
    Returns:
        GameState: Fresh state with score 0.
    """
    return new_game(state.size, state.best_score, rng)


def play_turn(state: GameState, direction: Direction, rng=None) -> TurnResult:
    """
    Runs one full turn on `state` in place: shift, score, spawn, terminal check.
    Args:
        state (GameState): The session state; updated in place.
        direction (Direction): The requested shift.
        rng: Random source for the spawned tile.
    Returns:
        TurnResult: What changed, for renderers and score displays.
    """
    if state.progress is GameProgressState.GAME_OVER:
        return TurnResult(moved=False, progress=state.progress)

    result = resolve_shift(direction, state.store.snapshot(), state.size)
    if not result.moved:
        return TurnResult(moved=False, progress=state.progress)

    state.store.apply(result)
    state.score, state.best_score = apply_delta(state.score, state.best_score, result.score_delta)

    spawned = None
    position = spawn_one(state.store, rng)
    if position is not None:
        spawned = state.store.insert(position)

    if state.store.is_full() and is_game_over(state.store, state.size):
        state.progress = GameProgressState.GAME_OVER
        logger.info("Game over with score %d (best %d).", state.score, state.best_score)

    logger.debug(
        "Shift %s: %d merged, +%d points, spawned %s.",
        direction.name, len(result.removed), result.score_delta, spawned,
    )
    return TurnResult(
        moved=True,
        removed=result.removed,
        score_delta=result.score_delta,
        spawned=spawned,
        progress=state.progress,
    )
