"""
Tests for the SQLite repository.
"""

from storage.models import EveningMessageData, EveningState


async def create_post(storage, cmid=500, user_id=111):
    return await storage.create_interactive_post(cmid, user_id, EveningMessageData(), "breathing", is_dm_mode=True)


class TestInteractivePosts:

    async def test_new_post_waits_for_negative(self, storage):
        post = await create_post(storage)
        assert post.state == EveningState.WAITING_NEGATIVE
        assert post.current_state == EveningState.WAITING_NEGATIVE.value

    async def test_flags_are_monotonic(self, storage):
        await create_post(storage)
        await storage.mark_task_completed(500, 1)
        await storage.mark_task_completed(500, 1)
        post = await storage.mark_task_completed(500, 2)

        assert post.task1_completed and post.task2_completed
        assert post.state == EveningState.WAITING_PRACTICE
        assert post.current_state == EveningState.WAITING_PRACTICE.value

        # Повторная отметка ничего не сбрасывает
        post = await storage.mark_task_completed(500, 1)
        assert post.task2_completed

    async def test_incomplete_posts_newest_first(self, storage):
        await create_post(storage, cmid=1)
        await create_post(storage, cmid=2)
        await create_post(storage, cmid=3)
        for n in (1, 2, 3):
            await storage.mark_task_completed(3, n)

        posts = await storage.get_user_incomplete_posts(111)
        assert [p.channel_message_id for p in posts] == [2, 1]

    async def test_trophy_only_once(self, storage):
        await create_post(storage)
        assert await storage.set_trophy("interactive_posts", 500) is True
        assert await storage.set_trophy("interactive_posts", 500) is False


class TestDailyPosts:

    async def test_claim_is_unique_per_day_and_type(self, storage):
        assert await storage.claim_daily_post(111, "2026-10-19", "angry") is True
        assert await storage.claim_daily_post(111, "2026-10-19", "angry") is False
        assert await storage.claim_daily_post(111, "2026-10-19", "evening") is True
        assert await storage.claim_daily_post(111, "2026-10-20", "angry") is True

    async def test_release_allows_retry(self, storage):
        await storage.claim_daily_post(111, "2026-10-19", "evening")
        await storage.release_daily_post(111, "2026-10-19", "evening")
        assert await storage.claim_daily_post(111, "2026-10-19", "evening") is True


class TestMessageLinks:

    async def test_save_is_idempotent(self, storage):
        first = await storage.save_message_link(1, 10, "user", post_type="evening", channel_message_id=500)
        await storage.mark_link_processed(first.id)
        second = await storage.save_message_link(1, 10, "user", post_type="evening", channel_message_id=500)

        assert second.id == first.id
        assert second.processed is True

    async def test_preview_update(self, storage):
        await storage.save_message_link(1, 10, "user", message_preview="старое")
        await storage.update_link_preview(1, 10, "новое")
        link = await storage.get_message_link(1, 10)
        assert link.message_preview == "новое"


class TestJoySources:

    async def test_order_and_delete(self, storage):
        assert await storage.add_joy_sources(111, ["чай", "кот", "море"]) == 3
        sources = await storage.get_joy_sources(111)
        assert [s.text for s in sources] == ["чай", "кот", "море"]

        deleted = await storage.delete_joy_sources(111, [sources[1].id])
        assert deleted == 1
        assert [s.text for s in await storage.get_joy_sources(111)] == ["чай", "море"]

    async def test_delete_ignores_other_users(self, storage):
        await storage.add_joy_sources(222, ["чужое"])
        other = await storage.get_joy_sources(222)
        assert await storage.delete_joy_sources(111, [other[0].id]) == 0


class TestReset:

    async def test_soft_reset_keeps_joy(self, storage, make_user):
        await make_user(111)
        await create_post(storage)
        await storage.add_joy_sources(111, ["чай"])

        await storage.reset_user(111, full=False)

        assert await storage.get_interactive_post(500) is None
        assert len(await storage.get_joy_sources(111)) == 1
        assert (await storage.get_user(111)).name == "Аня"

    async def test_full_reset_wipes_profile_and_joy(self, storage, make_user):
        await make_user(111)
        await storage.add_joy_sources(111, ["чай"])

        await storage.reset_user(111, full=True)

        assert await storage.get_joy_sources(111) == []
        assert (await storage.get_user(111)).name is None
