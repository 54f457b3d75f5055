from types import SimpleNamespace

import pytest

from scoring import (
    MAX_RECOMMENDATIONS,
    RECOMMENDATION_THRESHOLD,
    calculate_match,
    recommend_jobs,
)


def make_job(job_id, required_skills, title=None):
    return SimpleNamespace(id=job_id, title=title or f"Job {job_id}", required_skills=required_skills)


class TestCalculateMatch:
    def test_empty_requirements_score_zero(self):
        assert calculate_match(["python", "sql"], []) == 0
        assert calculate_match([], []) == 0

    def test_no_candidate_skills_score_zero(self):
        assert calculate_match([], ["React"]) == 0

    def test_case_insensitive(self):
        assert calculate_match(["react"], ["React", "Node"]) == 50

    def test_substring_containment_counts(self):
        # "java" is covered by "javascript"
        assert calculate_match(["javascript"], ["java"]) == 100

    def test_requirement_inside_candidate_skill_and_reverse(self):
        assert calculate_match(["SQL"], ["PostgreSQL"]) == 100
        assert calculate_match(["PostgreSQL"], ["sql"]) == 100

    def test_partial_overlap_scenario(self):
        candidate = ["React", "TypeScript", "SQL"]
        required = ["React", "TypeScript", "Node.js", "PostgreSQL"]
        # "sql" is a substring of "postgresql", so three of four requirements are covered
        assert calculate_match(candidate, required) == 75

    def test_scenario_without_shared_substring(self):
        candidate = ["React", "TypeScript", "MySQL Workbench"]
        required = ["React", "TypeScript", "Node.js", "PostgreSQL"]
        assert calculate_match(candidate, required) == 50

    def test_one_candidate_skill_can_cover_several_requirements(self):
        assert calculate_match(["script"], ["JavaScript", "TypeScript"]) == 100

    def test_duplicate_candidate_skills_do_not_exceed_100(self):
        assert calculate_match(["react", "React", "REACT"], ["React"]) == 100

    @pytest.mark.parametrize(
        "covered,total,expected",
        [(1, 3, 33), (2, 3, 67), (1, 8, 13), (3, 8, 38), (1, 6, 17), (5, 6, 83)],
    )
    def test_rounds_half_up(self, covered, total, expected):
        required = [f"skill{i}x" for i in range(total)]
        candidate = required[:covered]
        assert calculate_match(candidate, required) == expected

    def test_result_always_within_bounds(self):
        required = ["Go", "Rust", "Python", "Kubernetes", "Terraform"]
        for candidate in ([], ["go"], ["python", "rust"], required, required * 3, ["o"]):
            assert 0 <= calculate_match(candidate, required) <= 100


class TestRecommendJobs:
    def test_empty_catalog(self):
        assert recommend_jobs(["python"], []) == []

    def test_nothing_clears_threshold(self):
        catalog = [make_job(1, ["Go", "Rust"]), make_job(2, [])]
        assert recommend_jobs(["python"], catalog) == []

    def test_threshold_is_inclusive(self):
        catalog = [
            make_job(1, ["a1", "a2", "a3", "b1", "b2"]),  # 3 of 5 -> 60
            make_job(2, ["a1", "b1", "b2"]),  # 1 of 3 -> 33
        ]
        recs = recommend_jobs(["a1", "a2", "a3"], catalog)
        assert [rec.job_id for rec in recs] == [1]
        assert recs[0].match_score == RECOMMENDATION_THRESHOLD

    def test_sorted_descending_and_truncated(self):
        catalog = [
            make_job(1, ["alpha"]),  # 100
            make_job(2, ["alpha", "bravo", "zulu"]),  # 67
            make_job(3, ["alpha", "zulu"]),  # 50
            make_job(4, ["alpha", "bravo"]),  # 100
            make_job(5, ["alpha", "bravo", "charlie", "zulu"]),  # 75
            make_job(6, ["alpha", "bravo", "charlie", "delta", "zulu"]),  # 80
            make_job(7, ["alpha", "bravo", "charlie", "zulu", "yankee"]),  # 60
            make_job(8, ["charlie"]),  # 100
        ]
        recs = recommend_jobs(["alpha", "bravo", "charlie", "delta"], catalog)
        assert len(recs) == MAX_RECOMMENDATIONS
        assert [rec.job_id for rec in recs] == [1, 4, 8, 6, 5]
        scores = [rec.match_score for rec in recs]
        assert scores == [100, 100, 100, 80, 75]
        assert all(score >= RECOMMENDATION_THRESHOLD for score in scores)

    def test_ties_keep_catalog_order(self):
        catalog = [
            make_job(7, ["python", "go"]),
            make_job(3, ["python"]),
            make_job(5, ["python", "rust"]),
            make_job(1, ["python"]),
        ]
        recs = recommend_jobs(["python"], catalog)
        assert [rec.job_id for rec in recs] == [3, 1]

    def test_excludes_applied_job(self):
        catalog = [make_job(1, ["python"]), make_job(2, ["python"])]
        recs = recommend_jobs(["python"], catalog, exclude_job_id=1)
        assert [rec.job_id for rec in recs] == [2]

    def test_recommendation_fields(self):
        recs = recommend_jobs(["react"], [make_job(4, ["React"], title="UI Developer")])
        assert recs[0].model_dump() == {"job_id": 4, "title": "UI Developer", "match_score": 100}

    def test_none_required_skills_treated_as_empty(self):
        assert recommend_jobs(["python"], [make_job(1, None)]) == []
