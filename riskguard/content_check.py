"""Content checking service combining detectors, the rule engine and a result cache."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections.abc import Iterable, Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional, Protocol

import redis

from riskguard.config import Config
from riskguard.detectors.ai import AIDetector
from riskguard.detectors.base import Detector, SensitiveWordDetector
from riskguard.detectors.harassment import HarassmentDetector
from riskguard.detectors.nlp import NLPDetector
from riskguard.detectors.semantic import SemanticDetector
from riskguard.detectors.semantic_nlp import DetectorUnavailableError, SemanticNLPDetector
from riskguard.detectors.spam import SpamDetector
from riskguard.model import (
    BatchCheckResult,
    CheckContext,
    CheckRequest,
    CheckResult,
    ContextItem,
    ResultType,
    RiskItem,
    hash_string,
)
from riskguard.rule_engine import RuleEngine, RuleEngineError
from riskguard.sensitive_words import SensitiveWords

DEFAULT_LOCAL_LLM_API = "http://localhost:11434/api/chat"
SEMANTIC_THRESHOLD = 0.3
_MAX_BATCH_WORKERS = 32
_CACHE_ERRORS = (redis.RedisError, OSError, ValueError, TypeError, KeyError)


class ContentCheckError(Exception):
    """Base class of content check errors."""


class EmptyContentError(ContentCheckError):
    """Raised when the content to check is empty."""


class InvalidRequestError(ContentCheckError):
    """Raised when a request cannot be processed as given."""


class _ResultCache(Protocol):
    def get(self, name: str) -> Any: ...

    def set(self, name: str, value: Any, ex: Optional[int] = None) -> Any: ...


def generate_suggestion(result: ResultType, risks: list[RiskItem]) -> str:
    """Return the user-facing advice for ``result``."""
    if result is ResultType.REJECT:
        if risks:
            return f"内容包含违规信息，原因：{risks[0].description}"
        return "内容未通过审核，请修改后重试"
    if result is ResultType.REVIEW:
        return "内容需要人工审核，请等待审核结果"
    if result is ResultType.WARNING:
        return "内容存在风险，建议修改"
    return "内容审核通过"


class ContentCheckService:
    """Runs every detector over content, applies the rules and decides a result."""

    def __init__(
        self,
        cfg: Config,
        *,
        rule_engine: RuleEngine,
        detectors: Mapping[str, Detector],
        sensitive_words: Optional[SensitiveWords] = None,
        cache: Optional[_ResultCache] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cfg = cfg
        self.rule_engine = rule_engine
        self.detectors = dict(detectors)
        self.sensitive_words = sensitive_words
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)
        self._update_stop: Optional[threading.Event] = None
        self._update_thread: Optional[threading.Thread] = None

    def __enter__(self) -> ContentCheckService:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def check_content(
        self,
        content: str,
        user_id: str = "",
        scene: str = "",
        extra_data: Optional[Mapping[str, str]] = None,
    ) -> CheckResult:
        """Check one piece of content, using the cache when possible."""
        if not content:
            raise EmptyContentError("content is empty")

        request_id = f"req_{time.time_ns()}_{user_id}"
        cache_key = f"content_check:{hash_string(content)}"

        cached = self._get_cached_result(cache_key)
        if cached is not None:
            self.logger.debug("Cache hit for content check: %s", cache_key)
            cached.request_id = request_id
            cached.cost_time = 0
            return cached

        start = time.monotonic()
        result = self._do_content_check(content, user_id, scene, [], extra_data)
        result.request_id = request_id
        result.cost_time = _elapsed_ms(start)

        if result.result is not ResultType.REJECT:
            self._cache_result(cache_key, result, self.cfg.content_check.cache_ttl)
        return result

    def check_content_with_context(
        self,
        content: str,
        user_id: str = "",
        scene: str = "",
        context_items: Optional[Iterable[ContextItem]] = None,
        extra_data: Optional[Mapping[str, str]] = None,
    ) -> CheckResult:
        """Check content in the light of earlier messages; never cached."""
        if not content:
            raise EmptyContentError("content is empty")

        request_id = f"req_ctx_{time.time_ns()}_{user_id}"
        start = time.monotonic()
        result = self._do_content_check(
            content, user_id, scene, list(context_items or []), extra_data
        )
        result.request_id = request_id
        result.cost_time = _elapsed_ms(start)
        return result

    def batch_check_content(
        self, items: Iterable[CheckRequest], batch_id: str
    ) -> BatchCheckResult:
        """Check several items in parallel; results keep the order of ``items``.

        At most ``batch_check_max_size`` items are checked. An item that fails
        gets a passing result whose ``extra`` carries an error marker.
        """
        items = list(items)
        if not items:
            raise InvalidRequestError("invalid request")

        limit = self.cfg.content_check.batch_check_max_size
        if len(items) > limit:
            items = items[: max(limit, 0)]

        start = time.monotonic()
        results: list[CheckResult] = []
        if items:
            with ThreadPoolExecutor(max_workers=min(_MAX_BATCH_WORKERS, len(items))) as pool:
                futures = [
                    pool.submit(
                        self.check_content, item.content, item.user_id, item.scene, item.extra_data
                    )
                    for item in items
                ]
                for index, future in enumerate(futures):
                    try:
                        results.append(future.result())
                    except ContentCheckError as exc:
                        self.logger.error("Batch check error at index %d: %s", index, exc)
                        results.append(
                            CheckResult(
                                result=ResultType.PASS,
                                risk_score=0.0,
                                request_id=f"batch_{batch_id}_idx_{index}",
                                extra={"error": "处理失败"},
                            )
                        )

        return BatchCheckResult(
            batch_id=batch_id, results=results, total_cost_time=_elapsed_ms(start)
        )

    def stream_check_content(self, requests: Iterable[CheckRequest]) -> Iterator[CheckResult]:
        """Check each incoming request and yield its result as it is ready."""
        for req in requests:
            yield self.check_content(req.content, req.user_id, req.scene, req.extra_data)

    def start_sensitive_word_updates(self, interval: float) -> None:
        """Reload the sensitive words every ``interval`` seconds in the background."""
        if interval <= 0:
            raise ValueError("non-positive interval for sensitive word updates")
        if self.sensitive_words is None:
            raise ValueError("no sensitive word list to update")
        self._stop_updates()
        stop = threading.Event()
        thread = threading.Thread(
            target=self._update_loop,
            args=(stop, interval),
            name="sensitive-word-updates",
            daemon=True,
        )
        self._update_stop = stop
        self._update_thread = thread
        thread.start()

    def close(self) -> None:
        """Stop background updates and release the cache connection."""
        self._stop_updates()
        close = getattr(self.cache, "close", None)
        if callable(close):
            try:
                close()
            except _CACHE_ERRORS as exc:
                self.logger.warning("Failed to close cache: %s", exc)

    def _stop_updates(self) -> None:
        if self._update_stop is not None:
            self._update_stop.set()
        if self._update_thread is not None:
            self._update_thread.join(timeout=5)
        self._update_stop = None
        self._update_thread = None

    def _update_loop(self, stop: threading.Event, interval: float) -> None:
        while not stop.wait(interval):
            if self.sensitive_words is None:
                return
            self.sensitive_words.update()
            self.logger.info("Sensitive words updated successfully")

    def _do_content_check(
        self,
        content: str,
        user_id: str,
        scene: str,
        context_items: list[ContextItem],
        extra_data: Optional[Mapping[str, str]],
    ) -> CheckResult:
        ctx = CheckContext(
            content=content,
            user_id=user_id,
            scene=scene,
            context_items=context_items,
            extra_data=dict(extra_data or {}),
        )

        all_risks: list[RiskItem] = []
        total_score = 0.0
        max_score = 0.0

        for name, detector in self.detectors.items():
            try:
                risks = detector.detect(ctx)
            except Exception as exc:  # a failing detector must not stop the check
                self.logger.warning("Detector %s failed: %s", name, exc)
                continue
            for risk in risks:
                all_risks.append(risk)
                total_score += risk.score
                max_score = max(max_score, risk.score)

        try:
            engine_result = self.rule_engine.evaluate(ctx, all_risks)
        except RuleEngineError as exc:
            self.logger.error("Rule engine evaluation failed: %s", exc)
        else:
            for risk in engine_result.risks:
                existing = next(
                    (item for item in all_risks if item.risk_type == risk.risk_type), None
                )
                if existing is None:
                    all_risks.append(risk)
                elif risk.score > existing.score:
                    existing.score = risk.score
                    existing.description = risk.description
                max_score = max(max_score, risk.score)

            if engine_result.has_explicit_result:
                return CheckResult(
                    result=engine_result.result,
                    risk_score=engine_result.score,
                    risks=all_risks,
                    suggestion=engine_result.suggestion,
                )

        threshold = float(self.cfg.content_check.risk_score_threshold)
        if max_score >= threshold:
            result = ResultType.REJECT
        elif max_score >= threshold * 0.7:
            result = ResultType.REVIEW
        elif max_score >= threshold * 0.5:
            result = ResultType.WARNING
        else:
            result = ResultType.PASS

        return CheckResult(
            result=result,
            risk_score=max_score,
            risks=all_risks,
            suggestion=generate_suggestion(result, all_risks),
            extra={"total_score": f"{total_score:.2f}"},
        )

    def _get_cached_result(self, key: str) -> Optional[CheckResult]:
        if self.cache is None:
            return None
        try:
            data = self.cache.get(key)
        except _CACHE_ERRORS as exc:
            self.logger.debug("Cache lookup failed for %s: %s", key, exc)
            return None
        if data is None:
            return None
        try:
            return CheckResult.from_dict(json.loads(data))
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            self.logger.debug("Ignoring malformed cache entry %s: %s", key, exc)
            return None

    def _cache_result(self, key: str, result: CheckResult, ttl: int) -> None:
        if self.cache is None:
            self.logger.debug("Cache not available, skipping cache")
            return
        data = json.dumps(result.to_dict(), ensure_ascii=False)
        try:
            self.cache.set(key, data, ex=ttl if ttl > 0 else None)
        except _CACHE_ERRORS as exc:
            self.logger.error("Failed to cache check result: %s", exc)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def create_content_check_service(
    cfg: Config, logger: Optional[logging.Logger] = None
) -> ContentCheckService:
    """Build the service with every detector the configuration asks for."""
    logger = logger or logging.getLogger(__name__)

    cache = redis.Redis(
        host=cfg.redis.host or "localhost",
        port=cfg.redis.port or 6379,
        password=cfg.redis.password or None,
        db=cfg.redis.db,
    )
    try:
        cache.ping()
    except redis.RedisError as exc:
        logger.warning("Failed to connect to Redis: %s, will proceed without cache", exc)

    try:
        rule_engine = RuleEngine(cfg.rule_engine.default_rules_path, logger)
    except RuleEngineError as exc:
        raise ContentCheckError(f"failed to initialize rule engine: {exc}") from exc

    sensitive_words = SensitiveWords(logger)

    detectors: dict[str, Detector] = {
        "sensitive": SensitiveWordDetector(sensitive_words),
        "spam": SpamDetector(),
        "harassment": HarassmentDetector(),
        "semantic": SemanticDetector(cfg.content_check.context_history_size, SEMANTIC_THRESHOLD),
    }

    nlp_cfg = cfg.nlp_service
    if nlp_cfg.enabled:
        endpoint = f"http://localhost:{nlp_cfg.server_port}"
        try:
            detectors["nlp"] = NLPDetector(endpoint, nlp_cfg.threshold, nlp_cfg.context_size)
        except (DetectorUnavailableError, ValueError) as exc:
            logger.warning("Failed to initialize NLP detector: %s", exc)
        else:
            logger.info("NLP detector initialized successfully")

    if cfg.content_check.use_ml_model:
        try:
            detectors["ai"] = AIDetector(
                cfg.ai_service.url, cfg.ai_service.api_key, cfg.ai_service.timeout / 1000
            )
        except ValueError as exc:
            logger.warning("Failed to initialize AI detector: %s", exc)

    if nlp_cfg.use_local_llm:
        api = nlp_cfg.local_llm_api or DEFAULT_LOCAL_LLM_API
        try:
            detectors["semantic_nlp"] = SemanticNLPDetector(
                api, nlp_cfg.threshold, nlp_cfg.context_size
            )
        except DetectorUnavailableError as exc:
            logger.warning("Failed to initialize local semantic NLP detector: %s", exc)
        else:
            logger.info("Local semantic NLP detector initialized successfully")

    service = ContentCheckService(
        cfg,
        rule_engine=rule_engine,
        detectors=detectors,
        sensitive_words=sensitive_words,
        cache=cache,
        logger=logger,
    )

    interval = cfg.content_check.sensitive_words_update_interval
    if interval > 0:
        service.start_sensitive_word_updates(interval)
    else:
        logger.warning("Sensitive word updates disabled: interval is %s", interval)

    return service