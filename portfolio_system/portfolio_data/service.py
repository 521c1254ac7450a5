#!/usr/bin/env python3
"""
Portfolio Data Service
Single facade over live Project Server data and the static data set.

Read-through policy for projects:
    cache hit -> return
    miss      -> live fetch (tasks fan out over a thread pool) -> merge -> cache
    failure   -> static data, NOT cached, so the next call retries live

Empty live results count as failure. Risks, PM scores and objectives are not
modelled by Project Server and always come from the static store.
"""

import copy
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from portfolio_system.core.error_handler import ErrorCategory, ErrorHandler, ErrorSeverity
from portfolio_system.core.section_logger import ErrorCodes, cache_logger
from portfolio_system.core.ttl_cache import TTLCache
from portfolio_system.portfolio_data import aggregates
from portfolio_system.portfolio_data.fallback_store import StaticDataStore
from portfolio_system.portfolio_data.merge import merge_project_data

logger = logging.getLogger(__name__)

PROJECTS_KEY = 'projects'


class PortfolioDataService:
    """Read accessors and cache administration for portfolio data"""

    def __init__(self, ps_client=None, store: Optional[StaticDataStore] = None,
                 cache: Optional[TTLCache] = None, enabled: bool = True,
                 error_handler: Optional[ErrorHandler] = None, max_workers: int = 8):
        self.ps_client = ps_client
        self.store = store or StaticDataStore()
        self.cache = cache or TTLCache()
        self.ps_enabled = enabled and ps_client is not None
        self.error_handler = error_handler or ErrorHandler()
        self.max_workers = max_workers
        self.last_sync: Optional[str] = None

    @classmethod
    def from_config(cls, config, ps_client=None, **kwargs) -> 'PortfolioDataService':
        return cls(
            ps_client=ps_client,
            store=StaticDataStore(config.DATA_DIR),
            cache=TTLCache(default_ttl=config.CACHE_TTL_SECONDS),
            enabled=config.ps_live(),
            max_workers=config.TASK_FETCH_WORKERS,
            **kwargs,
        )

    # =========================================================================
    # LIVE FETCH
    # =========================================================================

    def _fetch_live_projects(self) -> Optional[List[Dict[str, Any]]]:
        remote_projects = self.ps_client.list_projects()
        if not remote_projects:
            return None

        enrichment = self.store.load('projects')

        # Independent reads; results come back in project order
        workers = max(1, min(self.max_workers, len(remote_projects)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            task_lists = list(pool.map(lambda p: self.ps_client.list_tasks(p.id), remote_projects))

        now = datetime.now(timezone.utc)
        merged = [
            merge_project_data(project, tasks, enrichment, now=now).to_dict()
            for project, tasks in zip(remote_projects, task_lists)
        ]
        self.last_sync = now.isoformat()
        return merged

    # =========================================================================
    # READ ACCESSORS
    # =========================================================================

    def get_projects(self) -> List[Dict[str, Any]]:
        """Merged projects; callers get a copy, the cached list is never handed out"""
        cached = self.cache.get(PROJECTS_KEY)
        if cached is not None:
            return copy.deepcopy(cached)

        if self.ps_enabled:
            try:
                projects = self._fetch_live_projects()
                if projects:
                    self.cache.set(PROJECTS_KEY, projects)
                    cache_logger.log_info(ErrorCodes.CACHE_POPULATED, f"Cached {len(projects)} live projects")
                    return copy.deepcopy(projects)
                cache_logger.log_warning(ErrorCodes.CACHE_FALLBACK, "Project Server returned no projects")
            except Exception as e:
                self.error_handler.handle_error(
                    e, ErrorCategory.PS_READ, ErrorSeverity.HIGH_DEGRADE,
                    context="PS fetch failed, falling back to static data",
                    operation="get_projects",
                    suppress_duplicate_minutes=1,
                )

        return self.store.load('projects')

    def get_project_by_id(self, project_id: str) -> Optional[Dict[str, Any]]:
        """Match on the dashboard id or the Project Server GUID"""
        for project in self.get_projects():
            if project.get('id') == project_id or project.get('psId') == project_id:
                return project
        return None

    def get_risks(self) -> List[Dict[str, Any]]:
        return self.store.load('risks')

    def get_project_managers(self) -> List[Dict[str, Any]]:
        return self.store.load('projectManagers')

    def get_strategic_objectives(self) -> List[Dict[str, Any]]:
        return self.store.load('strategicObjectives')

    # Aggregates take whatever get_projects decided; they never touch the cache

    def get_portfolio(self) -> Dict[str, Any]:
        return aggregates.portfolio_summary(self.get_projects(), self.get_strategic_objectives())

    def get_strategy(self) -> Dict[str, Any]:
        return aggregates.strategy_summary(self.get_projects(), self.get_strategic_objectives())

    def get_alerts(self) -> List[Dict[str, Any]]:
        return aggregates.build_alerts(self.get_projects(), self.get_risks(), self.get_project_managers())

    def get_pm_scores(self) -> Dict[str, Any]:
        return aggregates.pm_scores(self.get_project_managers())

    def get_risks_with_summary(self) -> Dict[str, Any]:
        return aggregates.risk_summary(self.get_risks())

    def get_project_context(self) -> Dict[str, Any]:
        """Everything the assistant needs to answer portfolio questions"""
        return {
            'projects': self.get_projects(),
            'risks': self.get_risks(),
            'pms': self.get_project_managers(),
            'objectives': self.get_strategic_objectives(),
        }

    # =========================================================================
    # CACHE ADMINISTRATION
    # =========================================================================

    def invalidate_cache(self, key: Optional[str] = None):
        self.cache.invalidate(key)
        cache_logger.log_info(ErrorCodes.CACHE_INVALIDATED, f"Invalidated {key or 'all keys'}")

    def is_live(self) -> bool:
        return self.ps_enabled

    def get_status(self) -> Dict[str, Any]:
        return {
            'psEnabled': self.ps_enabled,
            'lastSync': self.last_sync,
            'cachedKeys': self.cache.keys(),
            'recentErrors': self.error_handler.get_recent_errors(5),
            'errorSummary': self.error_handler.get_error_summary(),
        }
