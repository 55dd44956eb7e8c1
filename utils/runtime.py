"""Paths under ~/.taskloop/.

- config: settings file (written by config.py on first import)
- models.yaml: provider profiles (llm.model_manager)
- logs/: one file per run, only with --verbose
- trajectories/: default home of utils.trajectory output
"""

import os

RUNTIME_DIR = os.path.join(os.path.expanduser("~"), ".taskloop")


def get_models_file() -> str:
    return os.path.join(RUNTIME_DIR, "models.yaml")


def get_log_dir() -> str:
    return os.path.join(RUNTIME_DIR, "logs")


def get_trajectory_dir() -> str:
    """Directory used when Config.TRAJECTORY_DIR is unset."""
    return os.path.join(RUNTIME_DIR, "trajectories")
