"""
Rollout collection across several environment instances.

Every instance runs as its own coroutine on the caller's event loop and
suspends at the yield point after each environment step, so instances
interleave one step at a time without sharing state. The collector never
trains; it only hands back closed trajectories grouped by player.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ...envs.base import EnvState, GameEnvironment
from ...errors import ConfigurationError, EnvironmentStepError, ShapeMismatch
from ...logger import logger
from ...policy.controllers import PlayerController, PolicyController
from ...policy.data_types import ActOutput
from .rollout_buffer import Trajectory, Transition
from .scheduler import YieldPoint, make_yield_point


@dataclass
class RolloutResult:
    """Everything gathered by one ``collect`` call."""

    trajectories: Dict[int, List[Trajectory]]
    games_completed: int = 0  # Episodes the environment reported as done
    episodes_finished: int = 0  # Done plus truncated by max_steps_per_game
    transitions: int = 0
    game_lengths: List[int] = field(default_factory=list)
    outcomes: List[List[str]] = field(default_factory=list)
    aborted: bool = False

    def all_trajectories(self) -> List[Trajectory]:
        return [t for trajectories in self.trajectories.values() for t in trajectories]


class RolloutCollector:
    """Drives environments through the player controllers.

    Args:
        environments: One independent environment per rollout
        controllers: One controller per player seat
        trainable_players: Seats whose transitions are recorded
        games_target: Episodes to finish across all rollouts before stopping
        time_delta: Simulation step passed to ``step``
        max_steps_per_game: Truncate episodes longer than this
        max_transitions: Stop once this many transitions were recorded
    """

    def __init__(
        self,
        environments: Sequence[GameEnvironment],
        controllers: Sequence[PlayerController],
        trainable_players: Sequence[int],
        games_target: int,
        time_delta: float = 1.0 / 60.0,
        max_steps_per_game: Optional[int] = None,
        max_transitions: Optional[int] = None,
    ):
        if len(environments) == 0:
            raise ConfigurationError("at least one environment is required")
        if games_target <= 0:
            raise ConfigurationError("games_target must be positive")

        num_players = environments[0].get_num_players()
        if len(controllers) != num_players:
            raise ConfigurationError(
                f"{len(controllers)} controllers supplied for {num_players} players"
            )
        for player in trainable_players:
            if not (0 <= player < num_players):
                raise ConfigurationError(
                    f"trainable player {player} outside 0..{num_players - 1}"
                )
            if not isinstance(controllers[player], PolicyController):
                raise ConfigurationError(
                    f"trainable player {player} needs a PolicyController"
                )

        self.environments = list(environments)
        self.controllers = list(controllers)
        self.trainable_players = tuple(trainable_players)
        self.num_players = num_players
        self.action_size = environments[0].get_action_size()
        self.games_target = games_target
        self.time_delta = time_delta
        self.max_steps_per_game = max_steps_per_game
        self.max_transitions = max_transitions
        self.logger = logger.bind(component="collector")

    def _budget_reached(self, result: RolloutResult) -> bool:
        if result.episodes_finished >= self.games_target:
            return True
        return self.max_transitions is not None and result.transitions >= self.max_transitions

    def _new_trajectories(self, rollout_id: int, episode: int) -> Dict[int, Trajectory]:
        return {
            player: Trajectory(player_index=player, episode_id=f"r{rollout_id}-e{episode}")
            for player in self.trainable_players
        }

    def _reset(self, env: GameEnvironment, rollout_id: int) -> EnvState:
        try:
            return env.reset()
        except Exception as exc:
            raise EnvironmentStepError("reset", rollout_id) from exc

    def _step(self, env: GameEnvironment, actions: List[List[float]], rollout_id: int) -> EnvState:
        try:
            return env.step(actions, self.time_delta)
        except Exception as exc:
            raise EnvironmentStepError("step", rollout_id) from exc

    def _decide(self, state: EnvState):
        """Ask every seat for an action; keep PPO outputs for trainable seats."""
        actions = []
        outputs: Dict[int, ActOutput] = {}
        for player in range(self.num_players):
            observation = state.observations[player]
            if player in self.trainable_players:
                output = self.controllers[player].act(observation)
                outputs[player] = output
                action = output.action
            else:
                action = list(self.controllers[player].decide(observation))
            if len(action) != self.action_size:
                raise ShapeMismatch(f"player {player} action", self.action_size, len(action))
            actions.append(action)
        return actions, outputs

    def _close(
        self,
        result: RolloutResult,
        open_trajectories: Dict[int, Trajectory],
        state: EnvState,
    ) -> None:
        for player, trajectory in open_trajectories.items():
            if state.outcome is not None:
                trajectory.outcome = state.outcome[player]
            if len(trajectory) > 0:
                result.trajectories[player].append(trajectory)

    def _truncate(
        self,
        result: RolloutResult,
        open_trajectories: Dict[int, Trajectory],
        state: EnvState,
    ) -> None:
        """Close trajectories early, bootstrapping from V(s) of the last observation."""
        for player, trajectory in open_trajectories.items():
            if len(trajectory) == 0:
                continue
            agent = self.controllers[player].agent
            trajectory.truncate(agent.predict_value(state.observations[player]))
            result.trajectories[player].append(trajectory)

    async def _run_rollout(
        self,
        rollout_id: int,
        env: GameEnvironment,
        result: RolloutResult,
        yield_point: YieldPoint,
        halt: asyncio.Event,
    ) -> None:
        episode = 0
        steps_in_game = 0
        state = self._reset(env, rollout_id)
        open_trajectories = self._new_trajectories(rollout_id, episode)

        while True:
            if halt.is_set():
                return
            if self._budget_reached(result):
                self._truncate(result, open_trajectories, state)
                return

            actions, outputs = self._decide(state)
            next_state = self._step(env, actions, rollout_id)
            steps_in_game += 1

            # Record with the outputs captured before stepping
            for player in self.trainable_players:
                output = outputs[player]
                open_trajectories[player].append(
                    Transition(
                        observation=list(state.observations[player]),
                        action=list(output.action),
                        log_prob=output.log_prob,
                        value=output.value,
                        reward=float(next_state.rewards[player]),
                        done=bool(next_state.done),
                        player_index=player,
                    )
                )
            result.transitions += len(self.trainable_players)

            if next_state.done:
                self._close(result, open_trajectories, next_state)
                result.games_completed += 1
                result.episodes_finished += 1
                result.game_lengths.append(steps_in_game)
                if next_state.outcome is not None:
                    result.outcomes.append(list(next_state.outcome))
                self.logger.debug(
                    f"Rollout {rollout_id} finished game {episode} in {steps_in_game} steps"
                )
                if self._budget_reached(result):
                    return
                episode += 1
                steps_in_game = 0
                state = self._reset(env, rollout_id)
                open_trajectories = self._new_trajectories(rollout_id, episode)
            elif self.max_steps_per_game is not None and steps_in_game >= self.max_steps_per_game:
                self._truncate(result, open_trajectories, next_state)
                result.episodes_finished += 1
                result.game_lengths.append(steps_in_game)
                episode += 1
                steps_in_game = 0
                state = self._reset(env, rollout_id)
                open_trajectories = self._new_trajectories(rollout_id, episode)
            else:
                state = next_state

            if not await yield_point():
                result.aborted = True
                halt.set()
                return

    async def collect(self, yield_point: Optional[YieldPoint] = None) -> RolloutResult:
        """Run every environment until the collection budget is reached.

        If ``yield_point`` returns False the collection is abandoned and
        ``aborted`` is set; open trajectories are dropped.

        Raises:
            EnvironmentStepError: the environment failed; all rollouts halt
            ShapeMismatch: a controller produced a wrongly sized action
        """
        yield_point = yield_point or make_yield_point()
        result = RolloutResult(trajectories={p: [] for p in self.trainable_players})
        halt = asyncio.Event()

        async def run(rollout_id: int, env: GameEnvironment) -> None:
            try:
                await self._run_rollout(rollout_id, env, result, yield_point, halt)
            except Exception:
                halt.set()
                raise

        outcomes = await asyncio.gather(
            *(run(i, env) for i, env in enumerate(self.environments)),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        self.logger.debug(
            f"Collected {result.transitions} transitions from "
            f"{result.episodes_finished} episodes ({result.games_completed} completed games)"
        )
        return result
