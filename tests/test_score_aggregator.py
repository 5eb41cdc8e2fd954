"""
Classroom Realtime - Score Aggregator Tests
===========================================

Daily leaderboard counters and the admin dashboard push.
"""

from datetime import date

import pytest
import pytest_asyncio

from classroom_realtime.services.fanout import LocalOnlyBus
from classroom_realtime.services.score_aggregator import ScoreAggregator, daily_key


class Today:
    def __init__(self, day: date):
        self.day = day

    def __call__(self) -> date:
        return self.day


@pytest.fixture
def today():
    return Today(date(2026, 10, 19))


@pytest.fixture
def scores(fake_redis, directory, connections, today):
    return ScoreAggregator(fake_redis, directory, LocalOnlyBus(connections), today=today)


@pytest_asyncio.fixture
async def dashboard(connections, teacher, make_socket):
    """A teacher socket joined to the admin dashboard room."""
    ws = make_socket()
    conn = connections.connect(ws, teacher)
    await connections.join(conn, "admin:dashboard")
    return ws


# =============================================================================
# Updates
# =============================================================================

class TestUpdateScore:
    """Increments land in today's sorted set and reach the dashboard."""

    @pytest.mark.asyncio
    async def test_quiz_score_reaches_dashboard(self, scores, dashboard, student):
        """Test an update is reflected in the top list and pushed with its recent activity."""
        await scores.update_score(student.user_id, 50, "Quiz completed")

        top = await scores.get_top_performers(3)
        assert top[0].user_id == student.user_id
        assert top[0].score == 50
        assert top[0].username == "alice"

        update = dashboard.events("top_performers_update")[-1]["data"]
        assert update["recentActivity"] == {"username": "alice", "points": 50, "reason": "Quiz completed"}
        assert update["topPerformers"][0]["userId"] == student.user_id

    @pytest.mark.asyncio
    async def test_increments_accumulate(self, scores, student):
        """Test repeated updates add up."""
        await scores.update_score(student.user_id, 20)
        await scores.update_score(student.user_id, 15)
        top = await scores.get_top_performers()
        assert top[0].score == 35

    @pytest.mark.asyncio
    async def test_non_positive_points_ignored(self, scores, fake_redis, dashboard, student, today):
        """Test zero and negative deltas never lower a daily total."""
        await scores.update_score(student.user_id, 40)
        await scores.update_score(student.user_id, -100, "Penalty")
        await scores.update_score(student.user_id, 0)

        assert fake_redis.zsets[daily_key(today())][student.user_id] == 40
        pushes = dashboard.events("top_performers_update")
        assert len(pushes) == 1
        assert pushes[0]["data"]["topPerformers"][0]["score"] == 40

    @pytest.mark.asyncio
    async def test_key_gets_ttl(self, scores, fake_redis, student, today):
        """Test today's key expires after 48 hours."""
        await scores.update_score(student.user_id, 5)
        assert fake_redis.ttls[daily_key(today.day)] == 172_800

    @pytest.mark.asyncio
    async def test_no_reason_no_recent_activity(self, scores, dashboard, student):
        """Test recent activity is only attached when a reason is given."""
        await scores.update_score(student.user_id, 5)
        update = dashboard.events("top_performers_update")[-1]["data"]
        assert update["recentActivity"] is None

    @pytest.mark.asyncio
    async def test_unknown_user_defaults_to_student(self, scores, dashboard):
        """Test the recent activity username falls back to 'Student'."""
        await scores.update_score("ghost", 10, "Assignment")
        update = dashboard.events("top_performers_update")[-1]["data"]
        assert update["recentActivity"]["username"] == "Student"
        assert update["topPerformers"][0]["username"] == "Unknown"


# =============================================================================
# Ranking
# =============================================================================

class TestTopPerformers:
    """Ordering, limits and the daily reset."""

    @pytest.mark.asyncio
    async def test_descending_with_limit(self, scores, student, other_student, teacher):
        """Test results are highest first and capped at the limit."""
        await scores.update_score(student.user_id, 10)
        await scores.update_score(other_student.user_id, 30)
        await scores.update_score(teacher.user_id, 20)
        await scores.update_score("u4", 5)

        top = await scores.get_top_performers(3)
        assert [p.user_id for p in top] == [other_student.user_id, teacher.user_id, student.user_id]

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing(self, scores, student):
        """Test an explicit limit of 0 is not replaced by the default."""
        await scores.update_score(student.user_id, 10)
        assert await scores.get_top_performers(0) == []

    @pytest.mark.asyncio
    async def test_ties_follow_store_order(self, scores, student, other_student):
        """Test equal scores keep the sorted set's reverse member order."""
        await scores.update_score(student.user_id, 10)
        await scores.update_score(other_student.user_id, 10)
        top = await scores.get_top_performers()
        assert [p.user_id for p in top] == ["student-2", "student-1"]

    @pytest.mark.asyncio
    async def test_new_day_starts_at_zero(self, scores, student, today):
        """Test yesterday's totals are not visible after the UTC date changes."""
        await scores.update_score(student.user_id, 50)
        today.day = date(2026, 10, 20)

        assert await scores.get_top_performers() == []

        await scores.update_score(student.user_id, 5)
        top = await scores.get_top_performers()
        assert top[0].score == 5


# =============================================================================
# Failures
# =============================================================================

class TestScoreFailures:
    """Redis problems never reach the caller."""

    @pytest.mark.asyncio
    async def test_redis_error_absorbed(self, scores, fake_redis, dashboard, student):
        """Test an unreachable store is logged and nothing is raised or pushed."""
        fake_redis.fail = True
        await scores.update_score(student.user_id, 50, "Quiz completed")
        assert await scores.get_top_performers() == []
        assert dashboard.events("top_performers_update") == []

    @pytest.mark.asyncio
    async def test_disabled_without_redis(self, directory, connections, student):
        """Test a missing Redis client disables the leaderboard."""
        scores = ScoreAggregator(None, directory, LocalOnlyBus(connections))
        assert scores.enabled is False
        await scores.update_score(student.user_id, 10)
        assert await scores.get_top_performers() == []
