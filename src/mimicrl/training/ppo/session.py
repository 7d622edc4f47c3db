"""
Training session orchestration.

A session owns the lifecycle (idle, initializing, running, paused,
stopped) and drives the collect -> train loop. Collection and optimization
never overlap: every iteration trains on a closed snapshot of trajectories
and the next collection starts only after all trainers finished.

Pause and stop are cooperative. They take effect at the next yield point
(between environment steps or between mini-batches), never in the middle of
an environment step or a gradient step.
"""

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Protocol

import numpy as np
import torch

from ...envs.base import GameEnvironment
from ...errors import ConfigurationError
from ...logger import logger
from ...policy.agent import PolicyAgent
from ...policy.controllers import (PlayerController, PolicyController,
                                   RandomController)
from .collect_rollout import RolloutCollector, RolloutResult
from .config import SessionConfig
from .ppo_trainer import PPOTrainer
from .scheduler import Scheduler
from .update_policy import UpdateStats
from .utils import get_device, reward_statistics, training_header


class LifecycleState(Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"  # Agents built, waiting for start()
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ModelPersistence(Protocol):
    """Stores agents and session records, e.g. ``mimicrl.model.ModelManager``."""

    def save_model(
        self, agent: PolicyAgent, metadata: Optional[Dict[str, Any]] = None, slot: str = ...
    ) -> str:
        ...

    def save_training_session(self, data: Mapping[str, Any]) -> str:
        ...


@dataclass
class TrainingProgress:
    """Metrics delivered after every training iteration."""

    iteration: int
    games_completed: int
    reward_stats: Dict[str, float]
    average_game_length: float
    win_rate: Optional[float]
    completion_rate: float
    policy_entropy: float
    policy_loss: float
    value_loss: float
    kl_divergence: float
    clip_fraction: float
    training_time: float
    per_player: Dict[int, UpdateStats] = field(default_factory=dict)


class TrainingSession:
    """Runs PPO self-play for one or more trainable players.

    Args:
        config: Session configuration
        env_factory: Builds one fresh environment per rollout
        controllers: Controllers for non-trainable seats (random by default)
        persistence: Receives checkpoints every ``auto_save_interval`` games
        on_progress: Called with a ``TrainingProgress`` after each iteration
        scheduler: Yield strategy for the collection and optimization loops
    """

    def __init__(
        self,
        config: SessionConfig,
        env_factory: Callable[[], GameEnvironment],
        controllers: Optional[Mapping[int, PlayerController]] = None,
        persistence: Optional[ModelPersistence] = None,
        on_progress: Optional[Callable[[TrainingProgress], None]] = None,
        scheduler: Optional[Scheduler] = None,
    ):
        self.config = config
        self.env_factory = env_factory
        self.supplied_controllers = dict(controllers or {})
        self.persistence = persistence
        self.on_progress = on_progress
        self.scheduler = scheduler or Scheduler()
        self.logger = logger.bind(component="session")

        self.state = LifecycleState.IDLE
        self.games_completed = 0
        self.iteration = 0
        self.training_time = 0.0

        self.environments: List[GameEnvironment] = []
        self.controllers: List[PlayerController] = []
        self.agents: Dict[int, PolicyAgent] = {}
        self.trainers: Dict[int, PPOTrainer] = {}
        self.collector: Optional[RolloutCollector] = None

        self.rollout_buffer: Optional[RolloutResult] = None  # Last closed snapshot
        self.metrics: List[TrainingProgress] = []
        self.stop_reason: Optional[str] = None
        self.session_id = f"session_{uuid.uuid4().hex[:12]}"

        self._resume_event: Optional[asyncio.Event] = None
        self._saved_games_bucket = 0

    @property
    def trainable_players(self):
        return self.config.trainable_players

    def _refuse(self, action: str, required: str) -> bool:
        self.logger.warning(
            f"Cannot {action}: session is {self.state.value}, needs to be {required}"
        )
        return False

    def initialize(self) -> bool:
        """Build environments, agents, trainers and controllers.

        Calling it again after a successful initialization is a no-op.

        Raises:
            ConfigurationError: environment layout conflicts with the config
        """
        if self.state is LifecycleState.STOPPED:
            return self._refuse("initialize", "idle")
        if self.state is not LifecycleState.IDLE:
            return True

        self.state = LifecycleState.INITIALIZING
        try:
            self._build()
        except Exception:
            self.state = LifecycleState.IDLE
            raise

        self.logger.info(training_header(self.config))
        return True

    def _build(self) -> None:
        config = self.config
        environments = [self.env_factory() for _ in range(config.num_rollouts)]
        template = environments[0]

        num_players = template.get_num_players()
        observation_size = template.get_observation_size()
        action_size = template.get_action_size()
        action_spaces = template.get_action_spaces()
        for env in environments[1:]:
            if (
                env.get_num_players() != num_players
                or env.get_observation_size() != observation_size
                or env.get_action_size() != action_size
            ):
                raise ConfigurationError("env_factory produced environments of different shapes")

        for player in config.trainable_players:
            if not (0 <= player < num_players):
                raise ConfigurationError(
                    f"trainable player {player} outside 0..{num_players - 1}"
                )
            if player in self.supplied_controllers:
                raise ConfigurationError(
                    f"player {player} is trainable and cannot take an external controller"
                )

        device = get_device(config.device)
        agents = {}
        trainers = {}
        for player in config.trainable_players:
            seed = None if config.seed is None else config.seed + player
            # Weight initialization draws from the global CPU generator
            with torch.random.fork_rng(devices=[], enabled=seed is not None):
                if seed is not None:
                    torch.default_generator.manual_seed(seed)
                agent = PolicyAgent(
                    observation_size=observation_size,
                    action_size=action_size,
                    action_spaces=action_spaces,
                    architecture=config.network_architecture,
                    seed=seed,
                    device=device,
                )
            ppo = config.ppo
            if ppo.seed is not None:
                ppo = replace(ppo, seed=ppo.seed + player)
            elif seed is not None:
                ppo = replace(ppo, seed=seed)
            agents[player] = agent
            trainers[player] = PPOTrainer(agent, ppo, player_index=player)

        controllers: List[PlayerController] = []
        for player in range(num_players):
            if player in agents:
                controllers.append(PolicyController(agents[player]))
            elif player in self.supplied_controllers:
                controllers.append(self.supplied_controllers[player])
            else:
                seed = None if config.seed is None else config.seed + 1000 + player
                controllers.append(RandomController(action_spaces, seed=seed))

        self.collector = RolloutCollector(
            environments=environments,
            controllers=controllers,
            trainable_players=config.trainable_players,
            games_target=config.target_games_per_iteration,
            time_delta=config.time_delta,
            max_steps_per_game=config.max_steps_per_game,
            max_transitions=config.max_transitions_per_iteration,
        )
        self.environments = environments
        self.controllers = controllers
        self.agents = agents
        self.trainers = trainers

    async def _yield_point(self) -> bool:
        """Suspend, wait out any pause, and report whether work may continue."""
        await self.scheduler.yield_now()
        while self.state is LifecycleState.PAUSED:
            await self._resume_event.wait()
        return self.state is LifecycleState.RUNNING

    def _finished(self) -> Optional[str]:
        if self.games_completed >= self.config.max_games:
            return "max_games_reached"
        if (
            self.config.max_iterations is not None
            and self.iteration >= self.config.max_iterations
        ):
            return "max_iterations_reached"
        return None

    async def start(self) -> bool:
        """Run collect -> train iterations until finished or stopped.

        Returns False without doing anything when the session is not ready
        to start. Errors from the environment or trainers stop the session
        and propagate.
        """
        if self.state is LifecycleState.IDLE:
            return self._refuse("start", "initialized")
        if self.state is not LifecycleState.INITIALIZING:
            return self._refuse("start", "initialized and not yet started")

        self.state = LifecycleState.RUNNING
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        start_time = time.time()

        try:
            while self.state is not LifecycleState.STOPPED:
                if not await self._yield_point():
                    break
                reason = self._finished()
                if reason is not None:
                    self.stop_reason = reason
                    break
                await self._run_iteration(start_time)
        except Exception as exc:
            self.state = LifecycleState.STOPPED
            self.stop_reason = "error"
            self.training_time = time.time() - start_time
            self.logger.error(f"Training halted: {exc}")
            raise

        self.state = LifecycleState.STOPPED
        if self.stop_reason is None:
            self.stop_reason = "stopped"
        self.training_time = time.time() - start_time
        self._save_checkpoint(final=True)

        self.logger.info(
            f"Session finished ({self.stop_reason}) after {self.iteration} iterations, "
            f"{self.games_completed} games, {self.training_time:.2f}s"
        )
        return True

    async def _run_iteration(self, start_time: float) -> None:
        result = await self.collector.collect(self._yield_point)
        self.games_completed += result.games_completed
        self.rollout_buffer = result
        if result.aborted or self.state is LifecycleState.STOPPED:
            return

        per_player: Dict[int, UpdateStats] = {}
        for player in self.trainable_players:
            per_player[player] = await self.trainers[player].train(
                result.trajectories[player], self._yield_point
            )
        if self.state is LifecycleState.STOPPED:
            return

        self.iteration += 1
        progress = self._build_progress(result, per_player, time.time() - start_time)
        self.metrics.append(progress)
        self._log_progress(progress)
        if self.on_progress is not None:
            self.on_progress(progress)
        self._save_checkpoint()

    def _build_progress(
        self,
        result: RolloutResult,
        per_player: Dict[int, UpdateStats],
        elapsed: float,
    ) -> TrainingProgress:
        trajectories = result.all_trajectories()
        rewards = [t.total_reward for t in trajectories]

        win_rate = None
        results = [
            outcome[player]
            for outcome in result.outcomes
            for player in self.trainable_players
        ]
        if results:
            win_rate = sum(1 for r in results if r == "win") / len(results)

        completion_rate = (
            result.games_completed / result.episodes_finished
            if result.episodes_finished > 0
            else 0.0
        )

        trained = [stats for stats in per_player.values() if stats.num_updates > 0]

        def average(key: str) -> float:
            if not trained:
                return 0.0
            return float(np.mean([getattr(stats, key) for stats in trained]))

        return TrainingProgress(
            iteration=self.iteration,
            games_completed=self.games_completed,
            reward_stats=reward_statistics(rewards),
            average_game_length=float(np.mean(result.game_lengths)) if result.game_lengths else 0.0,
            win_rate=win_rate,
            completion_rate=completion_rate,
            policy_entropy=average("entropy"),
            policy_loss=average("policy_loss"),
            value_loss=average("value_loss"),
            kl_divergence=average("kl_divergence"),
            clip_fraction=average("clip_fraction"),
            training_time=elapsed,
            per_player=per_player,
        )

    def _log_progress(self, progress: TrainingProgress) -> None:
        win = "n/a" if progress.win_rate is None else f"{progress.win_rate:.3f}"
        self.logger.info(
            f"Iteration {progress.iteration}: games={progress.games_completed} "
            f"reward={progress.reward_stats['mean']:.3f} length={progress.average_game_length:.1f} "
            f"win={win} entropy={progress.policy_entropy:.4f} "
            f"p_loss={progress.policy_loss:.4f} v_loss={progress.value_loss:.4f} "
            f"kl={progress.kl_divergence:.6f} clip={progress.clip_fraction:.3f}"
        )

    def _save_checkpoint(self, final: bool = False) -> None:
        """Save agents and the session record when a save boundary was crossed."""
        if self.persistence is None:
            return

        interval = self.config.auto_save_interval
        if not final:
            if interval == 0:
                return
            bucket = self.games_completed // interval
            if bucket <= self._saved_games_bucket:
                return
            self._saved_games_bucket = bucket

        phase = "completed" if final else "training"
        slots = []
        for player, agent in self.agents.items():
            slot = f"player_{player}"
            self.persistence.save_model(
                agent,
                metadata={
                    "player_index": player,
                    "games_completed": self.games_completed,
                    "iteration": self.iteration,
                    "phase": phase,
                    "session_id": self.session_id,
                },
                slot=slot,
            )
            slots.append(slot)

        self.persistence.save_training_session(
            {
                "id": self.session_id,
                "iteration": self.iteration,
                "games_completed": self.games_completed,
                "phase": phase,
                "stop_reason": self.stop_reason,
                "config": asdict(self.config),
                "model_slots": slots,
                "progress": asdict(self.metrics[-1]) if self.metrics else None,
            }
        )
        self.logger.debug(
            f"Checkpoint saved at {self.games_completed} games{' (final)' if final else ''}"
        )

    def pause(self) -> bool:
        """Request a pause; honoured at the next yield point."""
        if self.state is not LifecycleState.RUNNING:
            return self._refuse("pause", "running")
        self.state = LifecycleState.PAUSED
        self._resume_event.clear()
        self.logger.info("Pause requested")
        return True

    def resume(self) -> bool:
        if self.state is not LifecycleState.PAUSED:
            return self._refuse("resume", "paused")
        self.state = LifecycleState.RUNNING
        self._resume_event.set()
        self.logger.info("Resumed")
        return True

    def stop(self) -> bool:
        """Stop for good. A stopped session cannot be started again."""
        if self.state is LifecycleState.STOPPED:
            return self._refuse("stop", "not already stopped")
        self.state = LifecycleState.STOPPED
        self.stop_reason = self.stop_reason or "stopped"
        if self._resume_event is not None:
            self._resume_event.set()
        self.logger.info("Stop requested")
        return True
