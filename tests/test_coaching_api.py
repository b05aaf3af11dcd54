from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

from red2blue import models
from red2blue.coaching import analyze_assessment, mastery_level, risk_level, streak_days, trend

SCORES = {"intensity_score": 55, "decision_making_score": 50, "diversions_score": 60, "execution_score": 45}


def _a(total=0, **scores):
    base = dict(SCORES)
    base.update(scores)
    return SimpleNamespace(total_score=total, **base)


def test_analysis_states():
    assert analyze_assessment(_a())["overall_state"] == "red_head"
    strong = _a(intensity_score=90, decision_making_score=80, diversions_score=85, execution_score=76)
    assert analyze_assessment(strong)["overall_state"] == "blue_head"
    middle = _a(intensity_score=70, decision_making_score=65, diversions_score=70, execution_score=65)
    assert analyze_assessment(middle)["overall_state"] == "transitional"


def test_analysis_is_deterministic_and_targets_weakest_area():
    first = analyze_assessment(_a())
    assert first == analyze_assessment(_a())
    assert first["opportunities"][0] == "Execution"
    assert first["recommended_techniques"][0] == "Performance Anchor"
    assert first["next_steps"][0] == "Use box breathing before every tee shot"


def test_risk_and_trend():
    assert risk_level(None) == "unknown"
    assert risk_level(_a()) == "high"
    assert risk_level(_a(intensity_score=80, decision_making_score=80, diversions_score=80, execution_score=80)) == "low"

    assert trend([_a(total=300), _a(total=280)]) == "improving"
    assert trend([_a(total=270), _a(total=280)]) == "declining"
    assert trend([_a(total=283), _a(total=280)]) == "stable"
    assert trend([_a(total=283)]) == "stable"


def test_free_user_gets_one_assessment(client, make_user, headers_for):
    h = headers_for(make_user("free"))

    r = client.post("/api/assessments", json=SCORES, headers=h)
    assert r.status_code == 201, r.text
    assert r.json()["assessment"]["total_score"] == 210
    assert r.json()["analysis"]["overall_state"] == "red_head"

    r = client.post("/api/assessments", json=SCORES, headers=h)
    assert r.status_code == 402
    assert r.json()["detail"]["min_tier"] == "premium"


def test_premium_assessments_unlimited_and_latest(client, make_user, headers_for):
    h = headers_for(make_user("premium"))
    for score in (40, 60, 80):
        body = {k: score for k in SCORES}
        assert client.post("/api/assessments", json=body, headers=h).status_code == 201

    listed = client.get("/api/assessments", headers=h).json()
    assert len(listed) == 3

    latest = client.get("/api/assessments/latest", headers=h).json()
    assert latest["assessment"]["total_score"] == 320
    assert latest["analysis"]["overall_state"] == "blue_head"


def test_assessment_score_bounds(client, make_user, headers_for):
    h = headers_for(make_user("premium"))
    assert client.post("/api/assessments", json={**SCORES, "execution_score": 101}, headers=h).status_code == 422


def test_assessments_require_sign_in(client):
    assert client.get("/api/assessments").status_code == 401
    assert client.get("/api/assessments/latest").status_code == 401


def test_latest_assessment_missing(client, make_user, headers_for):
    r = client.get("/api/assessments/latest", headers=headers_for(make_user()))
    assert r.status_code == 404


def test_progress_window(client, make_user, headers_for):
    h = headers_for(make_user())
    old = (datetime.utcnow() - timedelta(days=45)).isoformat()

    client.post("/api/progress", json={"overall_score": 200, "date": old}, headers=h)
    client.post("/api/progress", json={"overall_score": 250, "techniques_used": ["Box Breathing"]}, headers=h)

    recent = client.get("/api/progress?days=30", headers=h).json()
    assert [p["overall_score"] for p in recent] == [250]
    assert recent[0]["techniques_used"] == ["Box Breathing"]

    everything = client.get("/api/progress?days=60", headers=h).json()
    assert [p["overall_score"] for p in everything] == [200, 250]


def test_xcheck_and_control_circles(client, make_user, headers_for):
    h = headers_for(make_user())

    x = {"intensity": 60, "decision_making": 70, "diversions": 50, "execution": 65, "notes": "windy"}
    assert client.post("/api/tools/xchecks", json=x, headers=h).status_code == 201
    assert client.get("/api/tools/xchecks/latest", headers=h).json()["notes"] == "windy"

    circle = {"inner_items": ["breathing"], "middle_items": ["strategy"], "outer_items": ["weather"]}
    assert client.post("/api/tools/control-circles", json=circle, headers=h).status_code == 201
    latest = client.get("/api/tools/control-circles/latest", headers=h).json()
    assert latest["outer_items"] == ["weather"]
    assert len(client.get("/api/tools/control-circles", headers=h).json()) == 1


def test_records_are_private(client, make_user, headers_for):
    owner = headers_for(make_user())
    other = headers_for(make_user())

    x = {"intensity": 60, "decision_making": 70, "diversions": 50, "execution": 65}
    client.post("/api/tools/xchecks", json=x, headers=owner)

    assert client.get("/api/tools/xchecks", headers=other).json() == []
    assert client.get("/api/tools/xchecks/latest", headers=other).status_code == 404


def test_pre_shot_routine_default_then_saved(client, make_user, headers_for):
    h = headers_for(make_user())

    default = client.get("/api/tools/pre-shot-routines/active", headers=h).json()
    assert default["is_default"] is True
    assert default["routine"]["total_duration"] == 28

    routine = {
        "name": "My routine",
        "steps": [{"name": "Breathe", "duration": 8}, {"name": "Commit", "duration": 7}],
    }
    first = client.post("/api/tools/pre-shot-routines", json=routine, headers=h).json()
    assert first["total_duration"] == 15

    second = client.post("/api/tools/pre-shot-routines", json={**routine, "name": "Newer"}, headers=h).json()

    active = client.get("/api/tools/pre-shot-routines/active", headers=h).json()
    assert active["is_default"] is False
    assert active["routine"]["id"] == second["id"]

    routines = {r["id"]: r for r in client.get("/api/tools/pre-shot-routines", headers=h).json()}
    assert routines[first["id"]]["is_active"] is False


def test_goals_are_premium(client, make_user, headers_for):
    free = headers_for(make_user("free"))
    assert client.get("/api/goals", headers=free).status_code == 402

    premium = headers_for(make_user("premium"))
    goal = client.post("/api/goals", json={"title": "Break 80", "target_date": "2026-12-31"}, headers=premium)
    assert goal.status_code == 201
    assert goal.json()["is_completed"] is False

    done = client.patch(f"/api/goals/{goal.json()['id']}/complete", headers=premium)
    assert done.json()["is_completed"] is True
    assert len(client.get("/api/goals", headers=premium).json()) == 1


# -------------------------------------------------
# Technique practice
# -------------------------------------------------
def test_mastery_thresholds():
    assert [mastery_level(n) for n in (0, 9, 10, 19, 20)] == [
        "beginner",
        "beginner",
        "intermediate",
        "intermediate",
        "advanced",
    ]


def test_streak_ends_today_or_yesterday():
    today = datetime(2026, 6, 10).date()
    day = timedelta(days=1)

    assert streak_days([], today) == 0
    assert streak_days([today, today - day, today - 2 * day], today) == 3
    assert streak_days([today - day, today - 2 * day], today) == 2
    assert streak_days([today - 2 * day, today - 3 * day], today) == 0
    assert streak_days([today, today, today - 3 * day], today) == 1


def test_practice_sessions_roll_up_per_technique(client, seeded, make_user, headers_for):
    user = make_user()
    h = headers_for(user)
    breathing = seeded.query(models.Technique).filter_by(name="Box Breathing").one()
    anchor = seeded.query(models.Technique).filter_by(name="Performance Anchor").one()

    yesterday = (datetime.utcnow() - timedelta(days=1)).isoformat()
    r = client.post(
        "/api/progress/practice-session",
        json={"technique_id": breathing.id, "duration_minutes": 10, "practiced_at": yesterday},
        headers=h,
    )
    assert r.status_code == 201, r.text
    r = client.post("/api/progress/practice-session", json={"technique_id": breathing.id, "duration_minutes": 5}, headers=h)
    progress = r.json()["progress"]
    assert progress["practice_count"] == 2
    assert progress["total_minutes"] == 15
    assert progress["streak_days"] == 2
    assert progress["mastery_level"] == "beginner"

    client.post("/api/progress/practice-session", json={"technique_id": anchor.id, "duration_minutes": 3}, headers=h)

    rows = client.get(f"/api/progress/techniques/{user.id}", headers=h).json()
    assert [(p["technique_name"], p["practice_count"]) for p in rows] == [("Box Breathing", 2), ("Performance Anchor", 1)]


def test_practice_session_validation(client, seeded, make_user, headers_for):
    h = headers_for(make_user())
    assert client.post("/api/progress/practice-session", json={"technique_id": 999, "duration_minutes": 5}, headers=h).status_code == 404

    technique_id = seeded.query(models.Technique).first().id
    r = client.post("/api/progress/practice-session", json={"technique_id": technique_id, "duration_minutes": 0}, headers=h)
    assert r.status_code == 422


def test_technique_progress_visible_to_owner_and_coaches(client, make_user, headers_for):
    member = make_user()
    assert client.get(f"/api/progress/techniques/{member.id}", headers=headers_for(make_user())).status_code == 403
    coach = headers_for(make_user(role="coach"))
    assert client.get(f"/api/progress/techniques/{member.id}", headers=coach).json() == []
