"""Training algorithms: PPO (reinforcement learning) and behaviour cloning."""
