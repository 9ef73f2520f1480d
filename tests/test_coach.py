"""Tests for src.core.coach — prompts, fallbacks and quota-guarded generation."""

from unittest.mock import AsyncMock, patch

import pytest

from src.core.coach import (
    PROMPTS,
    build_prompt,
    fallback_summary,
    generate,
    generate_with_quota,
)


class TestBuildPrompt:
    def test_every_kind_is_registered(self):
        assert set(PROMPTS) == {"praise", "scold", "summary", "stuck", "morning", "planning"}

    def test_praise_mentions_task(self):
        prompt = build_prompt("praise", task_name="Study Go")
        assert "Study Go" in prompt.user_message

    def test_scold_without_response(self):
        prompt = build_prompt("scold", task_name="Gym")
        assert '"no response"' in prompt.user_message

    def test_summary_tone_follows_success(self):
        good = build_prompt("summary", planned=3, completed=3, missed=0, success=True, streak=2)
        bad = build_prompt("summary", planned=3, completed=1, missed=2, success=False, streak=0)
        assert "Celebrate" in good.system
        assert "firm" in bad.system
        assert "missed 2" in bad.user_message

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown message kind"):
            build_prompt("poem")


def test_fallback_summary_contains_counts():
    text = fallback_summary(planned=4, completed=3, missed=1, success=True, streak=5)
    assert "Planned: 4" in text
    assert "Completed: 3" in text
    assert "Missed: 1" in text
    assert "Streak: 5" in text


class TestGenerate:
    @pytest.mark.asyncio
    async def test_passes_prompt_to_llm(self):
        with patch("src.core.coach.complete", new=AsyncMock(return_value="Nice work 💪")) as mock_llm:
            text = await generate("praise", task_name="Gym")
        assert text == "Nice work 💪"
        system, user_message = mock_llm.call_args.args
        assert "discipline coach" in system
        assert "Gym" in user_message


class TestGenerateWithQuota:
    @pytest.mark.asyncio
    async def test_success_consumes_one_unit(self, stores, user):
        with patch("src.core.coach.complete", new=AsyncMock(return_value="Go!")):
            text = await generate_with_quota(stores.ai_quota, user.id, "2025-03-10", "planning")
        assert text == "Go!"
        assert stores.ai_quota.used(user.id, "2025-03-10") == 1

    @pytest.mark.asyncio
    async def test_failure_rolls_back(self, stores, user):
        with patch("src.core.coach.complete", new=AsyncMock(side_effect=RuntimeError("timeout"))):
            text = await generate_with_quota(stores.ai_quota, user.id, "2025-03-10", "planning")
        assert text is None
        assert stores.ai_quota.used(user.id, "2025-03-10") == 0

    @pytest.mark.asyncio
    async def test_exhausted_budget_skips_generator(self, stores, user):
        for _ in range(stores.ai_quota.limit):
            stores.ai_quota.reserve(user.id, "2025-03-10")
        mock_llm = AsyncMock(return_value="unused")
        with patch("src.core.coach.complete", new=mock_llm):
            text = await generate_with_quota(stores.ai_quota, user.id, "2025-03-10", "planning")
        assert text is None
        mock_llm.assert_not_called()
        assert stores.ai_quota.used(user.id, "2025-03-10") == stores.ai_quota.limit
