"""Process-wide service container handed to request handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request

from subtitler.core.settings import PATHS, AppPaths
from subtitler.schemas.config import AppConfig
from subtitler.services.admission import AdmissionController
from subtitler.services.circuit_breaker import CircuitBreaker
from subtitler.services.config_store import load_config
from subtitler.services.job_store import JobStore
from subtitler.services.pipeline import SubtitlePipeline

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: JobStore
    admission: AdmissionController
    breaker: CircuitBreaker
    pipeline: SubtitlePipeline
    paths: AppPaths

    def load_config(self) -> AppConfig:
        return load_config(self.paths.config_path)

    def apply_config(self, cfg: AppConfig) -> None:
        """Push breaker and admission limits from a saved config into the live objects."""
        self.breaker.reconfigure(cfg.breaker.failure_threshold, cfg.breaker.cooldown_s)
        self.admission.cooldown_s = cfg.admission.cooldown_s
        self.admission.history_ttl_s = cfg.admission.history_ttl_s
        logger.info(
            "Applied config: breaker threshold=%d cooldown=%.0fs, admission cooldown=%.0fs",
            self.breaker.threshold,
            self.breaker.cooldown_s,
            self.admission.cooldown_s,
        )


def build_services(paths: AppPaths = PATHS, config: Optional[AppConfig] = None) -> Services:
    cfg = config or load_config(paths.config_path)
    store = JobStore()
    breaker = CircuitBreaker(cfg.breaker.failure_threshold, cfg.breaker.cooldown_s)
    admission = AdmissionController(cfg.admission.cooldown_s, cfg.admission.history_ttl_s)
    config_loader: Callable[[], AppConfig] = lambda: load_config(paths.config_path)
    pipeline = SubtitlePipeline(store, breaker, paths=paths, config_loader=config_loader)
    return Services(store=store, admission=admission, breaker=breaker, pipeline=pipeline, paths=paths)


def get_services(request: Request) -> Services:
    return request.app.state.services
