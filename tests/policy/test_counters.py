import pytest

from src.model.models import Category, ContentCategory, PageType, UsageState
from src.policy.counters import (
    add_seconds,
    category_for_page,
    count_category_for_content,
    increment,
    seconds_category_for_content,
)


class TestCounterLedger:
    """カウンタ加算のテスト"""

    def test_increment_adds_one(self):
        state = increment(UsageState(), Category.SEARCH)
        state = increment(state, Category.SEARCH)
        assert state.count(Category.SEARCH) == 2

    def test_increment_does_not_mutate_input(self):
        original = UsageState()
        increment(original, Category.SEARCH)
        assert original.count(Category.SEARCH) == 0

    def test_negative_increment_rejected(self):
        with pytest.raises(ValueError, match="non-negative"):
            increment(UsageState(), Category.SEARCH, -1)

    def test_add_seconds_accumulates(self):
        state = add_seconds(UsageState(), Category.WATCH_SECONDS, 90)
        state = add_seconds(state, Category.WATCH_SECONDS, 30)
        assert state.count(Category.WATCH_SECONDS) == 120

    def test_add_seconds_rejects_visit_counter(self):
        with pytest.raises(ValueError, match="not a duration counter"):
            add_seconds(UsageState(), Category.WATCH_VISIT, 10)

    @pytest.mark.parametrize(
        ("page_type", "expected"),
        [
            (PageType.SEARCH, Category.SEARCH),
            (PageType.SHORTS, Category.SHORTS_VISIT),
            (PageType.WATCH, Category.WATCH_VISIT),
            (PageType.HOME, None),
            (PageType.OTHER, None),
        ],
    )
    def test_category_for_page(self, page_type, expected):
        assert category_for_page(page_type) == expected

    def test_content_categories(self):
        assert count_category_for_content(ContentCategory.NEUTRAL) == Category.NEUTRAL_COUNT
        assert (
            seconds_category_for_content(ContentCategory.DISTRACTING)
            == Category.DISTRACTING_SECONDS
        )
        assert seconds_category_for_content(ContentCategory.NEUTRAL) is None
