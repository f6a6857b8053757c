"""Translate many pipeline documents in parallel."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass

from ci_translate.config import TranslatorSettings
from ci_translate.interfaces import PipelineValidator, VendorClassifier
from ci_translate.translator import TranslationResult, translate
from ci_translate.vendors import Vendor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchItem:
    """One source document of a batch."""

    name: str
    text: str
    source_vendor: Vendor | str | None = None


@dataclass(frozen=True)
class BatchOutcome:
    """Result of one batch item: a translation or the reason there is none."""

    item: BatchItem
    result: TranslationResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Whether the item translated without errors."""
        return self.result is not None and self.result.ok


def translate_many(
    items: Sequence[BatchItem],
    target_vendor: Vendor | str = Vendor.BUILDKITE,
    settings: TranslatorSettings | None = None,
    classifier: VendorClassifier | None = None,
    validator: PipelineValidator | None = None,
    max_workers: int | None = None,
) -> list[BatchOutcome]:
    """Translate independent documents concurrently.

    Translations share nothing but the read-only rule registry, so they
    run in a thread pool. A document whose vendor cannot be resolved gets
    an outcome with ``error`` set; it does not stop the others.

    Returns
    -------
        One outcome per item, in input order.

    """
    outcomes: list[BatchOutcome | None] = [None] * len(items)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {
            pool.submit(
                translate,
                item.text,
                item.source_vendor,
                target_vendor,
                settings=settings,
                classifier=classifier,
                validator=validator,
                source_name=item.name,
            ): index
            for index, item in enumerate(items)
        }

        for future in as_completed(futures):
            index = futures[future]
            item = items[index]
            try:
                result = future.result()
            except ValueError as e:
                logger.warning("%s: %s", item.name, e)
                outcomes[index] = BatchOutcome(item=item, error=str(e))
                continue
            logger.debug(
                "%s: %d error(s), %d warning(s)",
                item.name,
                len(result.errors),
                len(result.warnings),
            )
            outcomes[index] = BatchOutcome(item=item, result=result)

    return [outcome for outcome in outcomes if outcome is not None]
