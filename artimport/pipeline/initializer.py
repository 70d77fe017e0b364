"""Resolve a job's query into its ordered candidate object ids.

Flow: primary search (one per department) → one broad fallback search when
nothing matched → post-hoc filtering for criteria the search endpoint cannot
express → ``max_items`` truncation.

Post-hoc filtering costs one detail fetch per candidate, so it is sampled: the
first ``sample_size`` candidates are checked, and only when more than
``match_threshold`` of them match does filtering continue over the rest, never
examining more than ``max_candidates`` ids in total.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from artimport.catalog.met_client import CatalogError, SearchCriteria
from artimport.jobs.models import ImportJob, JobQuery, JobSource
from artimport.pipeline.enrichment import is_eligible
from artimport.ratelimit import RateLimitExceeded

logger = logging.getLogger(__name__)

# Job metadata key holding an interrupted post-filter scan
FILTER_CHECKPOINT_KEY = "post_filter"

# Period name fragments → (date_begin, date_end); None end means open-ended
TIME_PERIOD_RANGES: tuple[tuple[tuple[str, ...], int, int | None], ...] = (
    (("1900-present", "20th century"), 1900, None),
    (("19th century", "1800"), 1800, 1899),
    (("baroque", "rococo", "1600-1750"), 1600, 1750),
    (("renaissance", "1400-1600"), 1400, 1600),
    (("medieval", "500-1400"), 500, 1400),
)


def period_date_range(time_periods: list[str]) -> tuple[int | None, int | None]:
    """Smallest date range covering every recognised period name."""
    begins: list[int] = []
    ends: list[int | None] = []
    for period in time_periods:
        lowered = period.lower()
        for fragments, begin, end in TIME_PERIOD_RANGES:
            if any(f in lowered for f in fragments):
                begins.append(begin)
                ends.append(end)
                break
    if not begins:
        return None, None
    end = None if any(e is None for e in ends) else max(e for e in ends if e is not None)
    return min(begins), end


@dataclass
class PostFilter:
    """Criteria checked against full records after the search."""

    classifications: list[str] = field(default_factory=list)
    mediums: list[str] = field(default_factory=list)
    regions: list[str] = field(default_factory=list)
    require_public_domain: bool = True
    require_image: bool = True

    @property
    def is_active(self) -> bool:
        return bool(self.classifications or self.mediums or self.regions)

    def matches(self, record: dict[str, Any]) -> bool:
        if self.require_public_domain or self.require_image:
            if not is_eligible(record, self.require_public_domain, self.require_image):
                return False
        if self.classifications:
            classification = (record.get("classification") or "").lower()
            if not any(c.lower() == classification for c in self.classifications):
                return False
        if self.mediums:
            medium = (record.get("medium") or "").lower()
            if not any(m.lower() in medium for m in self.mediums):
                return False
        if self.regions:
            place = " ".join(
                str(record.get(key) or "")
                for key in ("culture", "country", "region", "geographyType", "city")
            ).lower()
            if not any(r.lower() in place for r in self.regions):
                return False
        return True


@dataclass
class FilterProgress:
    """Resumable post-filter state: candidate order, scan position, matches so far."""

    candidates: list[int]
    examined: int = 0
    matched: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "candidates": list(self.candidates),
            "examined": self.examined,
            "matched": list(self.matched),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FilterProgress":
        return cls(
            candidates=[int(i) for i in data.get("candidates", [])],
            examined=int(data.get("examined", 0)),
            matched=[int(i) for i in data.get("matched", [])],
        )


class JobInitializer:
    def __init__(
        self,
        catalog,
        sample_size: int = 20,
        match_threshold: float = 0.3,
        max_candidates: int = 100,
    ):
        self._catalog = catalog
        self.sample_size = sample_size
        self.match_threshold = match_threshold
        self.max_candidates = max_candidates

    def normalize_query(self, job: ImportJob) -> JobQuery:
        """Fold category time periods into an explicit date range."""
        query = job.query.model_copy(deep=True)
        if job.source == JobSource.CATEGORY and query.time_periods:
            begin, end = period_date_range(query.time_periods)
            if query.date_begin is None:
                query.date_begin = begin
            if query.date_end is None:
                query.date_end = end
        query.keywords = query.keywords.strip()
        return query

    def build_criteria(self, query: JobQuery) -> list[SearchCriteria]:
        base = SearchCriteria(
            q=query.keywords or "*",
            has_images=query.has_images,
            date_begin=query.date_begin,
            date_end=query.date_end,
            is_on_view=query.is_on_view,
            is_highlight=query.is_highlight,
        )
        if not query.department_ids:
            return [base]
        return [
            replace(base, department_id=department_id)
            for department_id in query.department_ids
        ]

    def build_post_filter(self, query: JobQuery) -> PostFilter:
        return PostFilter(
            classifications=list(query.artwork_types),
            mediums=list(query.mediums),
            regions=list(query.regions),
            require_public_domain=query.is_public_domain,
            require_image=query.has_images,
        )

    def resolve(self, job: ImportJob) -> list[int]:
        """Candidate ids for ``job``; also normalizes ``job.query`` in place.

        A throttle during post-filtering leaves a checkpoint in
        ``job.metadata`` so the next attempt resumes the scan instead of
        repeating the search and the detail fetches already paid for.
        """
        query = self.normalize_query(job)
        job.query = query
        limit = job.options.max_items

        checkpoint = job.metadata.get(FILTER_CHECKPOINT_KEY)
        if checkpoint:
            progress = FilterProgress.from_dict(checkpoint)
            logger.info(
                "Resuming post-filter for job %s at candidate %d of %d",
                job.job_id,
                progress.examined,
                len(progress.candidates),
            )
            object_ids = self._filter_checkpointed(job, progress, self.build_post_filter(query), limit)
        else:
            object_ids = self._search_all(self.build_criteria(query))
            if not object_ids:
                logger.warning("No objects found for job %s. Using fallback search.", job.job_id)
                object_ids = self._catalog.search(SearchCriteria(q="*", has_images=True))
                if object_ids:
                    logger.info("Fallback search found %d objects", len(object_ids))
            else:
                post_filter = self.build_post_filter(query)
                if post_filter.is_active:
                    object_ids = self._filter_checkpointed(
                        job, FilterProgress(object_ids), post_filter, limit
                    )

        if limit is not None and len(object_ids) > limit:
            object_ids = object_ids[:limit]
        return object_ids

    def _search_all(self, criteria_list: list[SearchCriteria]) -> list[int]:
        seen: set[int] = set()
        merged: list[int] = []
        for criteria in criteria_list:
            for object_id in self._catalog.search(criteria):
                if object_id not in seen:
                    seen.add(object_id)
                    merged.append(object_id)
        return merged

    def _filter_checkpointed(
        self,
        job: ImportJob,
        progress: FilterProgress,
        post_filter: PostFilter,
        limit: int | None,
    ) -> list[int]:
        try:
            matched = self.continue_post_filter(progress, post_filter, limit)
        except RateLimitExceeded:
            job.metadata[FILTER_CHECKPOINT_KEY] = progress.to_dict()
            logger.info(
                "Post-filter for job %s throttled after %d of %d candidates",
                job.job_id,
                progress.examined,
                len(progress.candidates),
            )
            raise
        job.metadata.pop(FILTER_CHECKPOINT_KEY, None)
        return matched

    def apply_post_filter(
        self, candidates: list[int], post_filter: PostFilter, limit: int | None = None
    ) -> list[int]:
        return self.continue_post_filter(FilterProgress(list(candidates)), post_filter, limit)

    def continue_post_filter(
        self, progress: FilterProgress, post_filter: PostFilter, limit: int | None = None
    ) -> list[int]:
        """Advance ``progress`` through the sample, then the rest if the sample matched well.

        ``progress`` is updated after every examined candidate, so when a
        ``RateLimitExceeded`` escapes it points at the candidate to retry.
        """
        candidates = progress.candidates
        sample_end = min(self.sample_size, len(candidates))
        scan_end = min(max(self.max_candidates, sample_end), len(candidates))

        def reached_limit() -> bool:
            return limit is not None and len(progress.matched) >= limit

        while progress.examined < sample_end:
            if reached_limit():
                return progress.matched
            self._examine(progress, post_filter)
        if reached_limit():
            return progress.matched

        sample = set(candidates[:sample_end])
        sample_matches = sum(1 for object_id in progress.matched if object_id in sample)
        match_rate = sample_matches / sample_end if sample_end else 0.0
        if match_rate <= self.match_threshold:
            logger.info(
                "Post-filter match rate %.0f%% within first %d candidates; not scanning further",
                match_rate * 100,
                sample_end,
            )
            return progress.matched

        while progress.examined < scan_end and not reached_limit():
            self._examine(progress, post_filter)
        return progress.matched

    def _examine(self, progress: FilterProgress, post_filter: PostFilter) -> None:
        object_id = progress.candidates[progress.examined]
        if self._matches(object_id, post_filter):
            progress.matched.append(object_id)
        progress.examined += 1

    def _matches(self, object_id: int, post_filter: PostFilter) -> bool:
        try:
            record = self._catalog.get_details(object_id)
        except CatalogError as e:
            logger.warning("Skipping object %s during filtering: %s", object_id, e)
            return False
        return record is not None and post_filter.matches(record)
