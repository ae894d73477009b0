"""Counter ledger: per-period increments for observed event categories."""

from __future__ import annotations

from dataclasses import replace

from src.model.models import Category, ContentCategory, PageType, UsageState

__all__ = [
    "add_seconds",
    "category_for_page",
    "count_category_for_content",
    "increment",
    "seconds_category_for_content",
]

PAGE_CATEGORIES: dict[PageType, Category] = {
    PageType.SEARCH: Category.SEARCH,
    PageType.SHORTS: Category.SHORTS_VISIT,
    PageType.WATCH: Category.WATCH_VISIT,
}

DURATION_CATEGORIES = frozenset(
    {
        Category.WATCH_SECONDS,
        Category.SHORTS_SECONDS,
        Category.DISTRACTING_SECONDS,
        Category.PRODUCTIVE_SECONDS,
    }
)

_CONTENT_COUNTS: dict[ContentCategory, Category] = {
    ContentCategory.DISTRACTING: Category.DISTRACTING_COUNT,
    ContentCategory.PRODUCTIVE: Category.PRODUCTIVE_COUNT,
    ContentCategory.NEUTRAL: Category.NEUTRAL_COUNT,
}

_CONTENT_SECONDS: dict[ContentCategory, Category] = {
    ContentCategory.DISTRACTING: Category.DISTRACTING_SECONDS,
    ContentCategory.PRODUCTIVE: Category.PRODUCTIVE_SECONDS,
}


def category_for_page(page_type: PageType) -> Category | None:
    """HOME / OTHER はカウントしない."""
    return PAGE_CATEGORIES.get(page_type)


def count_category_for_content(category: ContentCategory) -> Category:
    return _CONTENT_COUNTS[category]


def seconds_category_for_content(category: ContentCategory) -> Category | None:
    # neutral の視聴時間は閾値ラダーでは使わない
    return _CONTENT_SECONDS.get(category)


def increment(state: UsageState, category: Category, amount: int = 1) -> UsageState:
    """Read the current value, add ``amount`` and return the updated state."""
    if amount < 0:
        msg = f"counter increments must be non-negative, got {amount}"
        raise ValueError(msg)
    counters = dict(state.counters)
    counters[category] = counters.get(category, 0) + amount
    return replace(state, counters=counters)


def add_seconds(state: UsageState, category: Category, seconds: int) -> UsageState:
    """Accumulate a duration into one of the ``*Seconds`` counters."""
    if category not in DURATION_CATEGORIES:
        msg = f"{category.value} is not a duration counter"
        raise ValueError(msg)
    return increment(state, category, seconds)
