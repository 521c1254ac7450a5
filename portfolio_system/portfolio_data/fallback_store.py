"""
Static data store - read-only JSON documents used both as enrichment for live
projects and as the fallback data set when Project Server is unavailable.
Documents are loaded once per process; callers get deep copies.
"""

import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from portfolio_system.core.config import IntegrationConfig

logger = logging.getLogger(__name__)


class StaticDataStore:
    """`load('projects')` -> parsed contents of <data_dir>/projects.json"""

    def __init__(self, data_dir: Optional[str] = None):
        self.data_dir = Path(data_dir or IntegrationConfig.DATA_DIR)
        self._documents: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def load(self, name: str) -> Any:
        with self._lock:
            if name not in self._documents:
                path = self.data_dir / f"{name}.json"
                if not path.is_file():
                    raise FileNotFoundError(f"No static data document '{name}' in {self.data_dir}")
                with open(path, 'r', encoding='utf-8') as f:
                    self._documents[name] = json.load(f)
                logger.debug(f"Loaded static document {path}")
            document = self._documents[name]
        return copy.deepcopy(document)
