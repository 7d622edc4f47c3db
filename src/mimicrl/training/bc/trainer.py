"""
Behaviour cloning: supervised pre-training of a policy from demonstrations.

Only the policy network moves. The value network and the continuous
log-std are left exactly as they were.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import torch
import torch.nn.functional as F
import torch.optim as optim
from tqdm import tqdm

from ...errors import ShapeMismatch
from ...logger import logger
from ...policy.agent import PolicyAgent
from ..ppo.scheduler import YieldPoint
from .config import BCConfig
from .demonstration import DemonstrationDataset

ProgressCallback = Callable[[int, float, Optional[float]], None]


@dataclass
class BCTrainingStats:
    """Loss history of one behaviour cloning run."""

    train_loss: float = 0.0
    val_loss: Optional[float] = None
    epochs_completed: int = 0
    num_samples: int = 0
    num_train_samples: int = 0
    num_val_samples: int = 0
    training_time: float = 0.0
    cancelled: bool = False
    history: List[Dict[str, Optional[float]]] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return asdict(self)


class BCTrainer:
    """Behaviour cloning trainer."""

    def __init__(self, config: Optional[BCConfig] = None):
        self.config = config or BCConfig()
        self.logger = logger.bind(component="bc_trainer")

        self.generator = torch.Generator()
        if self.config.seed is None:
            self.generator.seed()
        else:
            self.generator.manual_seed(self.config.seed)

    def prepare_data(
        self, dataset: DemonstrationDataset, agent: PolicyAgent
    ) -> Optional[Tuple[Tuple[torch.Tensor, torch.Tensor], Optional[Tuple[torch.Tensor, torch.Tensor]]]]:
        """Flatten every episode and split off the tail as validation data.

        Returns None when the dataset holds no steps.
        """
        observations = []
        actions = []
        for episode in dataset.episodes:
            for step in episode.steps:
                if len(step.observation) != agent.observation_size:
                    raise ShapeMismatch(
                        "observation", agent.observation_size, len(step.observation)
                    )
                if len(step.action) != agent.action_size:
                    raise ShapeMismatch("action", agent.action_size, len(step.action))
                observations.append(step.observation)
                actions.append(step.action)

        if len(observations) == 0:
            return None

        obs = torch.tensor(observations, dtype=torch.float32, device=agent.device)
        acts = torch.tensor(actions, dtype=torch.float32, device=agent.device)

        val_size = int(len(observations) * self.config.validation_split)
        if val_size == 0:
            return (obs, acts), None

        train_size = len(observations) - val_size
        return (obs[:train_size], acts[:train_size]), (obs[train_size:], acts[train_size:])

    def compute_loss(
        self, agent: PolicyAgent, params: torch.Tensor, targets: torch.Tensor
    ) -> torch.Tensor:
        """Loss between raw policy outputs and demonstrated actions."""
        loss_type = self.config.loss_type

        if loss_type == "mse":
            return F.mse_loss(params, targets)
        if loss_type == "crossentropy":
            return F.binary_cross_entropy_with_logits(params, targets)

        # mixed: BCE on discrete indices, MSE on continuous means, averaged per index
        mask = agent.action_model.discrete_mask.to(params.device)
        bce = F.binary_cross_entropy_with_logits(params, targets, reduction="none")
        mse = (params - targets) ** 2
        per_index = torch.where(mask, bce, mse).mean(dim=0)
        return per_index.mean()

    def _validation_loss(
        self, agent: PolicyAgent, data: Tuple[torch.Tensor, torch.Tensor]
    ) -> float:
        observations, actions = data
        with torch.no_grad():
            params = agent.policy_network(observations)
            return self.compute_loss(agent, params, actions).item()

    async def train(
        self,
        dataset: DemonstrationDataset,
        agent: PolicyAgent,
        on_progress: Optional[ProgressCallback] = None,
        yield_point: Optional[YieldPoint] = None,
    ) -> BCTrainingStats:
        """Fit ``agent.policy_network`` to the demonstrated actions.

        Args:
            dataset: Demonstrations recorded with the agent's layout
            agent: Agent to pre-train in place
            on_progress: Called as ``(epoch, train_loss, val_loss)`` after each epoch
            yield_point: Awaited every ``yield_every_batches`` batches and after
                each epoch; returning False ends training early

        Returns:
            Final losses and per-epoch history
        """
        config = self.config
        prepared = self.prepare_data(dataset, agent)
        if prepared is None:
            self.logger.warning("Demonstration dataset is empty, nothing to train on")
            return BCTrainingStats()
        (train_obs, train_acts), val_data = prepared

        stats = BCTrainingStats(
            num_samples=train_obs.size(0) + (0 if val_data is None else val_data[0].size(0)),
            num_train_samples=train_obs.size(0),
            num_val_samples=0 if val_data is None else val_data[0].size(0),
        )
        self.logger.info(
            f"Behaviour cloning on {stats.num_train_samples} samples "
            f"({stats.num_val_samples} held out for validation)"
        )

        optimizer = optim.AdamW(
            agent.policy_network.parameters(),
            lr=config.learning_rate,
            weight_decay=config.weight_decay,
        )

        start_time = time.time()
        num_samples = train_obs.size(0)
        batches_done = 0
        agent.train()

        for epoch in range(config.epochs):
            permutation = torch.randperm(num_samples, generator=self.generator)
            total_loss = 0.0
            num_batches = 0

            progress_bar = tqdm(
                range(0, num_samples, config.batch_size),
                desc=f"BC Epoch {epoch + 1}/{config.epochs}",
                leave=False,
                ncols=100,
                disable=not config.show_progress,
            )
            for start in progress_bar:
                indices = permutation[start : start + config.batch_size].to(train_obs.device)
                batch_obs = train_obs[indices]
                batch_acts = train_acts[indices]

                params = agent.policy_network(batch_obs)
                loss = self.compute_loss(agent, params, batch_acts)

                optimizer.zero_grad()
                loss.backward()
                if config.gradient_clipping is not None:
                    torch.nn.utils.clip_grad_norm_(
                        agent.policy_network.parameters(), config.gradient_clipping
                    )
                optimizer.step()

                total_loss += loss.item()
                num_batches += 1
                batches_done += 1
                progress_bar.set_postfix({"loss": f"{loss.item():.4f}"})

                if yield_point is not None and batches_done % config.yield_every_batches == 0:
                    if not await yield_point():
                        stats.cancelled = True
                        break

            if num_batches == 0:
                break

            train_loss = total_loss / num_batches
            val_loss = None if val_data is None else self._validation_loss(agent, val_data)

            stats.train_loss = train_loss
            stats.val_loss = val_loss
            stats.epochs_completed = epoch + 1
            stats.history.append({"epoch": epoch + 1, "train_loss": train_loss, "val_loss": val_loss})

            val_str = "n/a" if val_loss is None else f"{val_loss:.4f}"
            self.logger.info(
                f"Epoch {epoch + 1}/{config.epochs} train_loss={train_loss:.4f} val_loss={val_str}"
            )

            if on_progress is not None:
                on_progress(epoch + 1, train_loss, val_loss)

            if stats.cancelled:
                break
            if yield_point is not None and not await yield_point():
                stats.cancelled = True
                break

        agent.eval()
        stats.training_time = time.time() - start_time
        if stats.cancelled:
            self.logger.warning(f"Behaviour cloning stopped after {stats.epochs_completed} epochs")
        return stats
