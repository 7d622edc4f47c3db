#!/usr/bin/env python3
"""
Behaviour Cloning Training Script

Pre-trains a policy agent from recorded demonstrations before PPO. With
``--record-expert`` a scripted expert first plays the bandit game and its
demonstrations are stored under the dataset name.

Usage:
    python scripts/train_bc.py --record-expert 50 --dataset bandit_expert
    python scripts/train_bc.py --dataset bandit_expert --epochs 20 --slot player_0
"""

import argparse
import asyncio
import random
import sys
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from mimicrl.envs import BanditEnvironment
from mimicrl.errors import MimicRLError
from mimicrl.logger import configure_logging, logger
from mimicrl.model import ModelManager, resolve_backend
from mimicrl.policy import NetworkArchitecture, PolicyAgent
from mimicrl.training.bc import (BCConfig, BCTrainer, DemonstrationCollector,
                                 DemonstrationStorage)
from mimicrl.training.ppo.utils import format_training_time


def parse_args():
    """Parse command line arguments for training configuration."""
    parser = argparse.ArgumentParser(
        description="Pre-train a policy agent using behaviour cloning",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    data_group = parser.add_argument_group("Data Configuration")
    data_group.add_argument("--dataset", type=str, default="expert", help="Dataset name")
    data_group.add_argument(
        "--data-dir", type=str, default="demonstrations", help="Demonstration directory"
    )
    data_group.add_argument(
        "--record-expert",
        type=int,
        default=0,
        help="Record this many scripted expert episodes before training",
    )
    data_group.add_argument("--episode-length", type=int, default=16, help="Steps per episode")

    train_group = parser.add_argument_group("Training Configuration")
    train_group.add_argument("--batch-size", type=int, default=32, help="Training batch size")
    train_group.add_argument(
        "--learning-rate", "--lr", type=float, default=1e-3, help="Learning rate for optimizer"
    )
    train_group.add_argument("--epochs", type=int, default=10, help="Training epochs")
    train_group.add_argument(
        "--loss-type",
        type=str,
        choices=["mixed", "mse", "crossentropy"],
        default="mixed",
        help="Loss between policy outputs and demonstrated actions",
    )
    train_group.add_argument(
        "--validation-split", type=float, default=0.2, help="Held-out tail fraction"
    )
    train_group.add_argument("--seed", type=int, help="Seed for shuffling")

    model_group = parser.add_argument_group("Model Configuration")
    model_group.add_argument("--model-dir", type=str, default="model", help="Model directory")
    model_group.add_argument("--slot", type=str, default="current_model", help="Model slot")
    model_group.add_argument(
        "--hidden-layers", type=int, nargs="+", default=[64, 64], help="Hidden layer widths"
    )
    model_group.add_argument("--log-level", type=str, default="INFO", help="Log level")

    return parser.parse_args()


def record_expert(storage: DemonstrationStorage, name: str, episodes: int, length: int) -> None:
    """Let a scripted expert play the bandit game and store its demonstrations."""
    env = BanditEnvironment(episode_length=length)
    collector = DemonstrationCollector()
    rng = random.Random(0)

    for episode in range(episodes):
        state = env.reset()
        collector.start_episode(f"expert_{episode}")
        while not state.done:
            observation = state.observations[0]
            action = [1.0] + [rng.gauss(0.0, 0.1) for _ in range(env.num_continuous)]
            collector.record_step(observation, action)
            state = env.step([action], dt=1.0 / 60.0)
        collector.end_episode(metadata={"total_reward": env.total_rewards[0]})

    dataset = storage.create_dataset(
        collector.episodes(),
        observation_size=env.get_observation_size(),
        action_size=env.get_action_size(),
        action_spaces=env.get_action_spaces(),
    )
    storage.save_dataset(name, dataset)


def main():
    """Main training function."""
    args = parse_args()
    configure_logging(args.log_level)

    storage = DemonstrationStorage(args.data_dir)
    if args.record_expert > 0:
        record_expert(storage, args.dataset, args.record_expert, args.episode_length)

    try:
        dataset = storage.load_dataset(args.dataset)
    except FileNotFoundError as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    manager = ModelManager(resolve_backend("file", args.model_dir))
    if manager.has_model(args.slot):
        agent = manager.load_model(args.slot)
        logger.info(f"Continuing from model in slot {args.slot}")
    else:
        if dataset.action_spaces is None or dataset.observation_size is None:
            print("Error: dataset does not record its observation and action layout")
            sys.exit(1)
        agent = PolicyAgent(
            observation_size=dataset.observation_size,
            action_size=len(dataset.action_spaces),
            action_spaces=dataset.action_spaces,
            architecture=NetworkArchitecture(hidden_layers=tuple(args.hidden_layers)),
        )

    config = BCConfig(
        learning_rate=args.learning_rate,
        batch_size=args.batch_size,
        epochs=args.epochs,
        loss_type=args.loss_type,
        validation_split=args.validation_split,
        seed=args.seed,
        show_progress=True,
    )

    try:
        stats = asyncio.run(BCTrainer(config).train(dataset, agent))
    except MimicRLError as exc:
        logger.error(f"Behaviour cloning failed: {exc}")
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nTraining interrupted by user")
        sys.exit(130)

    model_id = manager.save_model(
        agent,
        metadata={
            "source": "behaviour_cloning",
            "dataset": args.dataset,
            "train_loss": stats.train_loss,
            "val_loss": stats.val_loss,
            "epochs": stats.epochs_completed,
        },
        slot=args.slot,
    )

    print(f"\nTrained on {stats.num_train_samples} samples in {format_training_time(stats.training_time)}")
    print(f"Saved {model_id} to {args.model_dir}/{args.slot}.pth")


if __name__ == "__main__":
    main()
