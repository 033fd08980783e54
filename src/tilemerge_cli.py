# tilemerge_cli.py
# This file is intended to be run to play the tile merge game on the CLI

import argparse
import logging
import random
from typing import List, Optional

from tilemerge_core import (
    DEFAULT_BOARD_SIZE,
    Direction,
    GameProgressState,
    GameState,
    Position,
    new_game,
    play_turn,
    reset_game,
)

logger = logging.getLogger(__name__)

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Play the sliding-tile merge game in the terminal.")
    parser.add_argument("--size", type=int, default=DEFAULT_BOARD_SIZE, help="Board dimension (N for an N x N board).")
    parser.add_argument("--seed", type=int, default=None, help="Seed for tile placement, for reproducible games.")
    parser.add_argument(
        "--log-level", type=str.upper, default="WARNING", choices=LOG_LEVELS, help="Logging level."
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(levelname)s %(name)s: %(message)s")
    rng = random.Random(args.seed)

    # 1. Initialize game
    try:
        state = new_game(args.size, rng=rng)
    except ValueError as e:
        print(f"Cannot start game: {e}")
        return 2
    display_board_state(state)

    # 2. Game Loop
    while True:
        move_input = input("Enter move (W/A/S/D or arrow name, R to restart, Q to quit): ").strip()

        if move_input.upper() == 'Q':
            print("Quitting game.")
            break

        if move_input.upper() == 'R':
            state = reset_game(state, rng)
            logger.debug("Game reset; best score %d kept.", state.best_score)
            display_board_state(state)
            continue

        if state.progress == GameProgressState.GAME_OVER:
            print("The game is over. Press R to restart or Q to quit.")
            continue

        try:
            chosen_direction = Direction.from_key(move_input)
        except ValueError:
            print("Invalid input. Use W, A, S, D.")
            continue

        # 3. Process the move
        turn = play_turn(state, chosen_direction, rng)
        if not turn.moved:
            print("Move did not change the board. Try a different direction.")
            continue
        if turn.score_delta:
            print(f"+{turn.score_delta}")

        display_board_state(state)
        if turn.progress == GameProgressState.GAME_OVER:
            print("No more moves possible. Press R to restart or Q to quit.")

    # 4. Game Ended
    print("\n--- Final Board State ---")
    display_board_state(state)
    return 0


# --- Display Function ---
def render_board(state: GameState) -> str:
    """Renders the grid with the top row (highest y) first; empty cells show as '.'."""
    lines = []
    for y in reversed(range(state.size)):
        row = []
        for x in range(state.size):
            tile = state.store.at(Position(x, y))
            row.append(str(tile.value) if tile else ".")
        lines.append("\t".join(row))
    return "\n".join(lines)


def display_board_state(state: GameState):
    """Prints the board, score, and game status to the console."""
    print(f"\nScore: {state.score}\tBest: {state.best_score}")
    status_message = {
        GameProgressState.IN_PROGRESS: f"Status: {state.progress.name}",
        GameProgressState.GAME_OVER: "GAME OVER!"
    }
    print(status_message.get(state.progress, f"Status: {state.progress.name} (Unknown)"))
    print(render_board(state))
    print("-" * (state.size * 6))


if __name__ == "__main__":
    raise SystemExit(main())
