"""Tests for work-item planning."""

import pytest

from productgen.exceptions import (
    InvalidSelector,
    NoMatchingProducts,
    NoTasksEnabled,
    NoWorkRemaining,
)
from productgen.services.planner import WorkItem, enabled_tasks, plan_work

TASKS = {
    "product_description": {"enabled": True, "skip_if_generated": False},
    "product_seo": {"enabled": True, "skip_if_generated": True},
    "product_short_description": {"enabled": False},
}


class TestEnabledTasks:

    def test_keeps_configured_order_and_drops_disabled(self):
        tasks = enabled_tasks(TASKS)
        assert list(tasks) == ["product_description", "product_seo"]
        assert tasks["product_seo"].skip_if_generated is True

    def test_skip_if_already_done_is_an_alias(self):
        tasks = enabled_tasks({"product_seo": {"enabled": True, "skip_if_already_done": True}})
        assert tasks["product_seo"].skip_if_generated is True

    def test_generate_content_off_disables_everything(self):
        assert enabled_tasks(TASKS, {"generate_content": False}) == {}

    def test_bad_temperature_falls_back_to_default(self):
        tasks = enabled_tasks({"product_seo": {"enabled": True, "temperature": "hot"}})
        assert tasks["product_seo"].temperature == 0.7


class TestPlanWork:

    @pytest.mark.asyncio
    async def test_three_products_with_one_skip(self, db, make_product, mark_done):
        """Product 2 already has SEO copy, so 5 of 6 pairs are planned."""
        p1 = await make_product("One")
        p2 = await make_product("Two")
        p3 = await make_product("Three")
        await mark_done(p2.id, "product_seo")

        plan = await plan_work(db, {}, TASKS)

        assert plan.work_items == [
            WorkItem(p1.id, "product_description"),
            WorkItem(p1.id, "product_seo"),
            WorkItem(p2.id, "product_description"),
            WorkItem(p3.id, "product_description"),
            WorkItem(p3.id, "product_seo"),
        ]
        assert plan.stats.product_count == 3
        assert plan.stats.template_count == 2
        assert plan.stats.total_generations == 5
        assert plan.stats.preview_products[1] == {
            "id": p2.id,
            "name": "Two",
            "templates": ["product_description"],
        }

    @pytest.mark.asyncio
    async def test_record_without_skip_policy_is_planned_again(self, db, make_product, mark_done):
        product = await make_product()
        await mark_done(product.id, "product_description")

        plan = await plan_work(db, {}, {"product_description": {"enabled": True}})

        assert plan.work_items == [WorkItem(product.id, "product_description")]

    @pytest.mark.asyncio
    async def test_preview_is_bounded(self, db, make_product):
        for i in range(4):
            await make_product(f"P{i}")

        plan = await plan_work(db, {}, TASKS, preview_limit=2)

        assert len(plan.stats.preview_products) == 2
        assert plan.stats.product_count == 4

    @pytest.mark.asyncio
    async def test_no_tasks_enabled(self, db, make_product):
        await make_product()
        with pytest.raises(NoTasksEnabled):
            await plan_work(db, {}, {"product_seo": {"enabled": False}})

    @pytest.mark.asyncio
    async def test_no_matching_products(self, db, make_product):
        await make_product(categories=["Kitchen"])
        with pytest.raises(NoMatchingProducts):
            await plan_work(db, {"categories": ["Garden"]}, TASKS)

    @pytest.mark.asyncio
    async def test_no_work_remaining(self, db, make_product, mark_done):
        product = await make_product()
        await mark_done(product.id, "product_seo")
        with pytest.raises(NoWorkRemaining):
            await plan_work(db, {}, {"product_seo": {"enabled": True, "skip_if_generated": True}})

    @pytest.mark.asyncio
    async def test_invalid_selector(self, db):
        with pytest.raises(InvalidSelector):
            await plan_work(db, "", TASKS)


class TestWorkItem:

    def test_from_dict_coerces_types(self):
        assert WorkItem.from_dict({"product_id": "3", "task_id": "product_seo"}) == WorkItem(3, "product_seo")

    def test_to_dict(self):
        assert WorkItem(3, "product_seo").to_dict() == {"product_id": 3, "task_id": "product_seo"}
