"""JSON trajectory persistence.

One file per execution. The whole document is rewritten after every step
(temp file + ``os.replace``) so a crashed run still leaves valid JSON behind.
"""

import asyncio
import json
import os
from datetime import datetime
from typing import Any, Dict, Optional

import aiofiles
import aiofiles.os

from agent.state import AgentExecution, AgentStep
from utils import get_logger
from utils.runtime import get_trajectory_dir

logger = get_logger(__name__)


class TrajectoryRecorder:
    """Trajectory sink writing steps and the execution summary to a JSON file."""

    def __init__(self, path: Optional[str] = None):
        """Initialize the recorder.

        Args:
            path: Output file (default: trajectory_<timestamp>.json under
                Config.TRAJECTORY_DIR or ~/.taskloop/trajectories/)
        """
        if path is None:
            from config import Config

            directory = Config.TRAJECTORY_DIR or get_trajectory_dir()
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            path = os.path.join(directory, f"trajectory_{timestamp}.json")
        self.path = path
        self._lock = asyncio.Lock()
        self._data: Dict[str, Any] = {
            "created_at": datetime.now().isoformat(),
            "execution": None,
            "steps": [],
        }

    @property
    def data(self) -> Dict[str, Any]:
        return self._data

    async def record_step(self, step: AgentStep) -> None:
        async with self._lock:
            self._data["steps"].append(step.to_dict())
            await self._save()

    async def record_execution(self, execution: AgentExecution) -> None:
        async with self._lock:
            self._data["execution"] = execution.to_dict()
            await self._save()
        logger.info(f"Trajectory saved to {self.path}")

    async def _save(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            await aiofiles.os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        content = json.dumps(self._data, indent=2, ensure_ascii=False, default=str)
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(content)
        await asyncio.to_thread(os.replace, tmp_path, self.path)
