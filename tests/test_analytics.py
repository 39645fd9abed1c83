"""Tests for performance analytics."""
from datetime import date, datetime, timedelta
import pytest
from app.services.analytics import (
    ActivityPoint,
    SortMode,
    accuracy_trend,
    build_analytics,
    build_category_stats,
    compute_delusion,
    compute_urgency,
    current_streak,
    delusion_label,
    filter_by_name,
    load_analytics,
    sort_categories,
)

TODAY = date(2024, 10, 19)


def point(qid="q1", correct=False, rating=2, satisfaction=None, day=TODAY, category="Renal"):
    return ActivityPoint(
        question_id=qid,
        is_correct=correct,
        user_rating=rating,
        satisfaction_rating=satisfaction,
        attempted_at=datetime(day.year, day.month, day.day, 12, 0),
        category=category,
    )


class TestScores:

    def test_delusion_scales_confidence_to_percent(self):
        assert compute_delusion(4, 25.0) == 75.0
        assert compute_delusion(2, 50.0) == 0.0

    def test_urgency(self):
        assert compute_urgency(4, 25.0) == 3.0
        assert compute_urgency(1, 100.0) == -3.0

    @pytest.mark.parametrize("score,label", [
        (75, "Highly Delusional"),
        (30.5, "Highly Delusional"),
        (30, "Overconfident"),
        (11, "Overconfident"),
        (10, "Self-Aware"),
        (0, "Self-Aware"),
        (-15, "Self-Aware"),
        (-16, "Imposter Syndrome"),
    ])
    def test_labels(self, score, label):
        assert delusion_label(score) == label


class TestStreak:

    def test_counts_back_from_today(self):
        days = {TODAY, TODAY - timedelta(days=1), TODAY - timedelta(days=2), TODAY - timedelta(days=5)}
        assert current_streak(days, TODAY) == 3

    def test_no_activity_today_breaks_streak(self):
        assert current_streak({TODAY - timedelta(days=1)}, TODAY) == 0


class TestTrend:

    def test_last_seven_activity_days_oldest_first(self):
        points = []
        for offset in range(10):
            day = TODAY - timedelta(days=offset * 2)
            points.append(point(correct=True, day=day))
            points.append(point(correct=False, day=day))

        trend = accuracy_trend(points)

        assert len(trend) == 7
        assert trend[-1].day == TODAY
        assert trend[0].day == TODAY - timedelta(days=12)
        assert all(p.accuracy == 50.0 for p in trend)
        assert all(p.attempts == 2 for p in trend)

    def test_label_format(self):
        trend = accuracy_trend([point(day=date(2024, 10, 5))])
        assert trend[0].label == "Oct 5"


class TestCategoryStats:

    def test_overconfident_category(self):
        points = [point(qid=f"q{i}", correct=(i == 0), rating=4) for i in range(4)]
        stat = build_category_stats(points, {"Renal": 10})[0]

        assert stat.volume == 4
        assert stat.accuracy == 25.0
        assert stat.avg_confidence == 4.0
        assert stat.delusion_score == 75.0
        assert stat.delusion_label == "Highly Delusional"
        assert stat.is_priority
        assert stat.seen_count == 4
        assert stat.mastered_count == 1
        assert stat.mastery_ratio == pytest.approx(0.1)

    def test_repeat_attempts_count_once_for_seen_and_mastered(self):
        points = [
            point(qid="q1", correct=True),
            point(qid="q1", correct=True),
            point(qid="q1", correct=False),
        ]
        stat = build_category_stats(points, {"Renal": 2})[0]
        assert stat.volume == 3
        assert stat.seen_count == 1
        assert stat.mastered_count == 1

    def test_satisfaction_average_ignores_unrated(self):
        points = [point(satisfaction=1), point(satisfaction=3), point(satisfaction=None)]
        stat = build_category_stats(points, {})[0]
        assert stat.avg_satisfaction == 2.0

    def test_no_satisfaction(self):
        stat = build_category_stats([point()], {})[0]
        assert stat.avg_satisfaction is None

    def test_categories_normalized(self):
        points = [point(category=" Renal "), point(category="Renal"), point(category=None)]
        stats = {s.name: s for s in build_category_stats(points, {"Renal": 5, "General": 1})}
        assert stats["Renal"].volume == 2
        assert stats["General"].volume == 1

    def test_missing_total_falls_back_to_seen(self):
        stat = build_category_stats([point(qid="a"), point(qid="b")], {})[0]
        assert stat.total_in_db == 2


class TestSorting:

    @pytest.fixture
    def stats(self):
        points = [
            # Renal: 100%, confident, satisfied
            point(category="Renal", correct=True, rating=4, satisfaction=4),
            # Cardiology: 0%, confident, frustrated
            point(category="Cardiology", correct=False, rating=4, satisfaction=1),
            # Oncology: 50%, unsure, never rated satisfaction
            point(qid="o1", category="Oncology", correct=True, rating=1),
            point(qid="o2", category="Oncology", correct=False, rating=1),
        ]
        return build_category_stats(points, {"Renal": 1, "Cardiology": 1, "Oncology": 4})

    def names(self, stats):
        return [s.name for s in stats]

    def test_alpha(self, stats):
        assert self.names(sort_categories(stats, SortMode.ALPHA)) == ["Cardiology", "Oncology", "Renal"]

    def test_worst_and_best(self, stats):
        assert self.names(sort_categories(stats, SortMode.WORST)) == ["Cardiology", "Oncology", "Renal"]
        assert self.names(sort_categories(stats, SortMode.BEST)) == ["Renal", "Oncology", "Cardiology"]

    def test_urgency(self, stats):
        assert self.names(sort_categories(stats, SortMode.URGENCY))[0] == "Cardiology"

    def test_mastery(self, stats):
        assert self.names(sort_categories(stats, SortMode.MASTERY)) == ["Renal", "Oncology", "Cardiology"]

    def test_frustration_puts_unrated_last(self, stats):
        assert self.names(sort_categories(stats, SortMode.FRUSTRATION)) == ["Cardiology", "Renal", "Oncology"]

    def test_sort_returns_copy(self, stats):
        before = self.names(stats)
        sort_categories(stats, SortMode.ALPHA)
        assert self.names(stats) == before

    def test_name_filter(self, stats):
        assert self.names(filter_by_name(stats, "  CARD")) == ["Cardiology"]
        assert filter_by_name(stats, "") == stats


class TestBuildAnalytics:

    def test_empty_history(self):
        report = build_analytics([], {}, TODAY)
        assert report.total == 0
        assert report.streak == 0
        assert report.categories == []
        assert report.trend == []

    def test_report(self):
        points = [point(day=TODAY), point(day=TODAY - timedelta(days=1), correct=True)]
        report = build_analytics(points, {"Renal": 3}, TODAY)
        assert report.total == 2
        assert report.streak == 2
        assert len(report.trend) == 2


class TestLoadAnalytics:

    def test_reads_only_the_users_activity(self, test_db, test_user, make_question, make_activity):
        q1 = make_question(category="Renal")
        make_question(category="Renal")
        q3 = make_question(category=None)
        make_activity(q1, is_correct=True, rating=3)
        make_activity(q3, is_correct=False, rating=1)
        make_activity(q1, email="someone@else.com")

        report = load_analytics(test_db, test_user, today=datetime.utcnow().date())

        assert report.total == 2
        assert report.streak == 1
        stats = {s.name: s for s in report.categories}
        assert stats["Renal"].total_in_db == 2
        assert stats["Renal"].mastered_count == 1
        assert stats["General"].accuracy == 0.0
