import logging
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

import tilemerge_core as core

logger = logging.getLogger(__name__)

MAX_BOARD_SIZE = 16
RATE_LIMIT = "100/minute"

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="Tile Merge Game API",
    description="A stateless API for the sliding-tile merge game. "\
                "Keep your game state (tiles, score, best score) on the client side.",
    version="1.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Pydantic Models for API requests and responses ---

class TileData(BaseModel):
    """A single live tile as exchanged with clients."""
    id: int = Field(..., ge=0, description="Tile identity, stable across shifts.")
    x: int = Field(..., ge=0, description="Column of the tile.")
    y: int = Field(..., ge=0, description="Row of the tile.")
    value: int = Field(..., ge=2, description="Tile value, a power of two.")

    @classmethod
    def from_tile(cls, tile: core.Tile) -> "TileData":
        return cls(id=tile.id, x=tile.position.x, y=tile.position.y, value=tile.value)

    def to_tile(self) -> core.Tile:
        return core.Tile(self.id, core.Position(self.x, self.y), self.value)


class NewGameSettings(BaseModel):
    """Settings for creating (or resetting to) a new game."""
    size: Optional[int] = Field(
        default=core.DEFAULT_BOARD_SIZE,
        ge=2,
        le=MAX_BOARD_SIZE,
        description="Size of the N x N game board (e.g., 4 for a 4x4 board)."
    )
    best_score: int = Field(
        default=0,
        ge=0,
        description="Best score so far in this session; carried into the new game."
    )


class GameStateData(BaseModel):
    """Represents the complete state of a game instance."""
    tiles: List[TileData] = Field(..., description="The live tiles.")
    score: int = Field(..., ge=0, description="Current score of the game.")
    best_score: int = Field(..., ge=0, description="Best score in this session.")
    progress: core.GameProgressState = Field(
        ...,
        description="Current progress state of the game (IN_PROGRESS, GAME_OVER)."
    )
    board_size: int = Field(..., ge=2, le=MAX_BOARD_SIZE, description="The dimension N of the N x N board.")


class MoveRequestData(BaseModel):
    """Data required to make a move."""
    tiles: List[TileData] = Field(..., description="Live tiles before the move.")
    score: int = Field(..., ge=0, description="Current score before the move.")
    best_score: int = Field(default=0, ge=0, description="Best score before the move.")
    board_size: int = Field(..., ge=2, le=MAX_BOARD_SIZE, description="The dimension N of the N x N board.")
    direction: core.Direction = Field(
        ...,
        description="Direction of the move (up, down, left, right)."
    )


class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and move effectiveness."""
    move_was_effective: bool = Field(
        ...,
        description="True if the move slid or merged at least one tile, False otherwise."
    )
    removed: List[int] = Field(default_factory=list, description="Ids of tiles absorbed by merges.")
    score_delta: int = Field(default=0, ge=0, description="Points gained by this move.")
    spawned: Optional[TileData] = Field(default=None, description="The tile added after the move, if any.")
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was not effective or the game ended."
    )


class BoardGeometryData(BaseModel):
    """Physical layout of a board, for renderers."""
    board_size: int
    physical_size: float
    offsets: List[float] = Field(..., description="Pixel offset of each column/row centre from the board centre.")


def _state_data(state: core.GameState) -> dict:
    return dict(
        tiles=[TileData.from_tile(tile) for tile in sorted(state.store, key=lambda t: t.id)],
        score=state.score,
        best_score=state.best_score,
        progress=state.progress,
        board_size=state.size,
    )

# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New Game")
@limiter.limit(RATE_LIMIT)
async def start_new_game(request: Request, settings: NewGameSettings):
    """
    Initializes a new game on an N x N board with two base tiles.

    - **size**: Dimension of the N x N board (e.g., 4 for 4x4). Default is 4.
    - **best_score**: Best score from earlier games; kept as-is, so this also serves as reset.

    Returns the initial game state with score 0 and progress IN_PROGRESS.
    """
    try:
        size = settings.size if settings.size is not None else core.DEFAULT_BOARD_SIZE
        state = core.new_game(size, settings.best_score)
        return GameStateData(**_state_data(state))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Unexpected error in /game/new")
        raise HTTPException(status_code=500, detail=f"An unexpected error occurred during game creation: {str(e)}")


@app.post("/game/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit(RATE_LIMIT)
async def make_move(request: Request, request_data: MoveRequestData):
    """
    Processes a player's move.

    The API will:
    1. Slide and merge the tiles in the chosen direction.
    2. If anything moved, add one base tile on a random empty cell.
    3. Check for game over once the board is full.

    Returns the updated game state, whether the move was effective, and the per-move details
    a renderer needs (removed tile ids, spawned tile, score delta).
    """
    try:
        store = core.TileStore.from_tiles(
            request_data.board_size, [tile.to_tile() for tile in request_data.tiles]
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid board in request: {str(e)}")

    state = core.GameState(
        store=store,
        score=request_data.score,
        best_score=max(request_data.best_score, request_data.score),
    )
    if store.is_full() and core.is_game_over(store, store.size):
        state.progress = core.GameProgressState.GAME_OVER

    try:
        turn = core.play_turn(state, request_data.direction)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")
    except Exception as e:
        logger.exception("Unexpected error in /game/move")
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the move: {str(e)}")

    message_for_client: Optional[str] = None
    if not turn.moved:
        message_for_client = "Move was not effective; no tile could slide or merge."
    if turn.progress == core.GameProgressState.GAME_OVER:
        message_for_client = "Game Over. No more valid moves."

    return MoveResponseData(
        **_state_data(state),
        move_was_effective=turn.moved,
        removed=sorted(turn.removed),
        score_delta=turn.score_delta,
        spawned=TileData.from_tile(turn.spawned) if turn.spawned else None,
        message=message_for_client,
    )


@app.get("/board/geometry", response_model=BoardGeometryData, summary="Physical Board Layout")
@limiter.limit(RATE_LIMIT)
async def board_geometry(request: Request, size: int = Query(core.DEFAULT_BOARD_SIZE, ge=2, le=MAX_BOARD_SIZE)):
    """Returns the board's physical size and the centre offset of every cell index."""
    board = core.Board(size)
    return BoardGeometryData(
        board_size=size,
        physical_size=board.physical_size,
        offsets=[board.cell_position_to_physical(index) for index in range(size)],
    )
