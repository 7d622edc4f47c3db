#!/usr/bin/env python3
"""
PPO Training Script with Command Line Interface.

Trains one or more players on the bundled bandit game. Options can come from
a JSON file using the session option names (camelCase or snake_case) and be
overridden on the command line.

Usage:
    python scripts/train_ppo.py --max-games 500 --num-rollouts 4
    python scripts/train_ppo.py --config session.json --players 2 --trainable 0 1
"""

import argparse
import asyncio
import json
import signal
import sys
from dataclasses import replace
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mimicrl.envs import BanditEnvironment
from mimicrl.errors import ConfigurationError, MimicRLError
from mimicrl.logger import configure_logging, logger
from mimicrl.model import ModelManager, resolve_backend
from mimicrl.training.ppo import (AdaptiveScheduler, HostVisibility,
                                  SessionConfig, TrainingProgress,
                                  TrainingSession)
from mimicrl.training.ppo.utils import format_training_time


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="PPO training on the bandit game",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("--config", type=str, help="Path to a JSON session configuration")

    game_group = parser.add_argument_group("Game")
    game_group.add_argument("--players", type=int, default=1, help="Number of player seats")
    game_group.add_argument(
        "--observation-size", type=int, default=4, help="Observation length per player"
    )
    game_group.add_argument(
        "--continuous-actions", type=int, default=1, help="Continuous action indices"
    )
    game_group.add_argument("--episode-length", type=int, default=16, help="Steps per game")

    session_group = parser.add_argument_group("Session (overrides config)")
    session_group.add_argument("--trainable", type=int, nargs="+", help="Trainable seats")
    session_group.add_argument("--max-games", type=int, help="Games to play before stopping")
    session_group.add_argument("--num-rollouts", type=int, help="Concurrent environments")
    session_group.add_argument("--learning-rate", type=float, help="Optimizer learning rate")
    session_group.add_argument("--seed", type=int, help="Seed for agents and shuffling")
    session_group.add_argument(
        "--device", type=str, choices=["auto", "cpu", "cuda", "mps"], help="Training device"
    )

    output_group = parser.add_argument_group("Output")
    output_group.add_argument("--model-dir", type=str, default="model", help="Checkpoint directory")
    output_group.add_argument(
        "--backend", type=str, choices=["file", "memory"], default="file", help="Model storage"
    )
    output_group.add_argument("--log-level", type=str, default="INFO", help="Log level")
    output_group.add_argument(
        "--background",
        action="store_true",
        help="Yield to the event loop less often (no interactive host)",
    )
    output_group.add_argument(
        "--quick-test", action="store_true", help="Run a short session with tiny budgets"
    )

    return parser.parse_args()


def create_config_from_args(args) -> SessionConfig:
    """Create session configuration from the JSON file and command line arguments."""
    options = {}
    if args.config:
        with open(args.config) as f:
            options = json.load(f)

    config = SessionConfig.from_dict(options)

    overrides = {}
    if args.trainable:
        overrides["trainable_players"] = tuple(args.trainable)
    if args.max_games:
        overrides["max_games"] = args.max_games
    if args.num_rollouts:
        overrides["num_rollouts"] = args.num_rollouts
    if args.seed is not None:
        overrides["seed"] = args.seed
    if args.device:
        overrides["device"] = args.device
    if args.learning_rate:
        hyperparameters = replace(config.ppo, learning_rate=args.learning_rate)
        overrides["algorithm"] = replace(config.algorithm, hyperparameters=hyperparameters)
    if args.quick_test:
        overrides["max_games"] = 8
        overrides["num_rollouts"] = 2
        overrides["auto_save_interval"] = 4

    return replace(config, **overrides)


def report(progress: TrainingProgress) -> None:
    win = "n/a" if progress.win_rate is None else f"{progress.win_rate:.1%}"
    print(
        f"[{progress.iteration:4d}] games={progress.games_completed:6d} "
        f"reward={progress.reward_stats['mean']:7.3f} win={win:>6} "
        f"entropy={progress.policy_entropy:.3f} "
        f"time={format_training_time(progress.training_time)}"
    )


async def run(session: TrainingSession) -> bool:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, session.stop)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl+C raises instead
        pass
    return await session.start()


def main():
    """Main entry point for PPO training."""
    args = parse_args()
    configure_logging(args.log_level)

    try:
        config = create_config_from_args(args)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}")
        sys.exit(2)

    def env_factory():
        return BanditEnvironment(
            num_players=args.players,
            observation_size=args.observation_size,
            num_continuous=args.continuous_actions,
            episode_length=args.episode_length,
        )

    visibility = HostVisibility.BACKGROUND if args.background else HostVisibility.FOREGROUND
    manager = ModelManager(resolve_backend(args.backend, args.model_dir))
    session = TrainingSession(
        config,
        env_factory,
        persistence=manager,
        on_progress=report,
        scheduler=AdaptiveScheduler(visibility),
    )

    try:
        session.initialize()
        asyncio.run(run(session))
    except MimicRLError as exc:
        logger.error(f"Training failed: {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nTraining interrupted by user")
        sys.exit(130)

    print(
        f"\nFinished ({session.stop_reason}) after {session.games_completed} games "
        f"in {format_training_time(session.training_time)}"
    )
    if args.backend == "file":
        print(f"Models saved to {args.model_dir}: {', '.join(manager.list_slots())}")
        print(f"Session record: {session.session_id}")


if __name__ == "__main__":
    main()
