import pytest

from performance import REVIEW_DIMENSIONS


@pytest.fixture
def teacher(client, admin_headers, teacher_payload):
    return client.post("/api/teachers", json=teacher_payload, headers=admin_headers).json()["data"]


@pytest.fixture
def record(client, admin_headers, teacher):
    response = client.post("/api/teacher-performance", json={
        "teacherEmail": teacher["email"],
        "subjects": "Physics",
        "joiningDate": "2020-06-01",
        "experience": 4,
        "qualification": "M.Sc Physics",
    }, headers=admin_headers)
    assert response.status_code == 201
    return response.json()["data"]


@pytest.fixture
def staff_headers(make_member, auth_headers):
    return auth_headers(make_member("teacher", "mr.lee@school.org"))


def test_create_record(record, teacher):
    assert record["teacherId"] == teacher["id"]
    assert record["subjects"] == ["Physics"]
    assert record["designation"] == "Senior Teacher"
    assert record["overallAttendancePercentage"] == 0.0
    assert record["averagePerformanceScore"] == 0.0


def test_create_record_twice(client, admin_headers, record, teacher):
    again = client.post("/api/teacher-performance", json={"teacherEmail": teacher["email"]}, headers=admin_headers)
    from_profile = client.post(f"/api/teacher-performance/create-from-teacher/{teacher['id']}",
                               headers=admin_headers)

    assert again.status_code == 409
    assert from_profile.status_code == 409


def test_create_record_for_unknown_teacher(client, admin_headers):
    response = client.post("/api/teacher-performance", json={"teacherEmail": "ghost@school.org"},
                           headers=admin_headers)

    assert response.status_code == 404


def test_create_from_teacher_profile(client, admin_headers, teacher):
    response = client.post(f"/api/teacher-performance/create-from-teacher/{teacher['id']}", headers=admin_headers)

    assert response.status_code == 201
    data = response.json()["data"]
    assert data["subjects"] == ["Physics"]
    assert data["qualification"] == "M.Sc Physics, B.Ed"


def test_teachers_without_performance(client, admin_headers, teacher_payload, record):
    other = {**teacher_payload, "email": "untracked@school.org", "name": "Untracked"}
    client.post("/api/teachers", json=other, headers=admin_headers)

    response = client.get("/api/teacher-performance/teachers/without-performance", headers=admin_headers)

    assert [t["email"] for t in response.json()["data"]] == ["untracked@school.org"]


def test_list_includes_basic_info(client, admin_headers, record):
    response = client.get("/api/teacher-performance", headers=admin_headers)

    assert response.json()["count"] == 1
    assert response.json()["data"][0]["teacherBasicInfo"]["subject"] == "Physics"


def test_update_info_mirrors_profile(client, db, admin_headers, record, teacher):
    response = client.put(f"/api/teacher-performance/{teacher['email']}/info", json={
        "teacherName": "Jane Q. Doe",
        "phoneNumber": "9000011111",
        "subjects": ["Physics", "Maths"],
    }, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["subjects"] == ["Physics", "Maths"]
    profile = db.get_teacher(teacher["id"])
    assert profile["name"] == "Jane Q. Doe"
    assert profile["phone"] == "9000011111"
    assert profile["subject"] == "Physics, Maths"
    user = db.get_user(profile["userId"])
    assert user["name"] == "Jane Q. Doe"
    assert user["phone"] == "9000011111"
    assert user["teacherSubjects"] == ["Physics", "Maths"]


# ==================== ATTENDANCE ====================

def test_attendance_counts_half_days(client, admin_headers, record, teacher, staff_headers):
    url = f"/api/teacher-performance/{teacher['email']}/attendance"

    response = client.put(url, json={
        "month": "August", "year": 2024, "workingDays": 22, "presentDays": 20, "leaveDays": 1, "halfDays": 1,
    }, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["entry"]["attendancePercentage"] == pytest.approx(20.5 / 22 * 100)
    assert response.json()["data"]["overallAttendancePercentage"] == pytest.approx(20 / 22 * 100)

    listing = client.get(url, headers=staff_headers)
    assert listing.json()["count"] == 1


def test_attendance_same_month_is_replaced(client, db, admin_headers, record, teacher):
    url = f"/api/teacher-performance/{teacher['email']}/attendance"
    client.put(url, json={"month": "August", "year": 2024, "workingDays": 20, "presentDays": 10},
               headers=admin_headers)
    client.put(url, json={"month": "September", "year": 2024, "workingDays": 20, "presentDays": 20},
               headers=admin_headers)
    client.put(url, json={"month": "August", "year": 2024, "workingDays": 20, "presentDays": 18},
               headers=admin_headers)

    stored = db.get_teacher_performance_by_email(teacher["email"])
    assert len(stored["monthlyAttendance"]) == 2
    assert stored["totalWorkingDays"] == 40
    assert stored["totalPresentDays"] == 38


@pytest.mark.parametrize("payload", [
    {"workingDays": 20, "presentDays": 21},
    {"workingDays": 22, "presentDays": 20, "leaveDays": 2, "halfDays": 1},
    {"workingDays": 0, "presentDays": 0},
    {"workingDays": 32, "presentDays": 0},
])
def test_attendance_rejects_impossible_months(client, db, admin_headers, record, teacher, payload):
    response = client.put(f"/api/teacher-performance/{teacher['email']}/attendance",
                          json={"month": "August", "year": 2024, **payload}, headers=admin_headers)

    assert response.status_code == 400
    assert db.get_teacher_performance_by_email(teacher["email"])["monthlyAttendance"] == []


def test_teachers_cannot_record_attendance(client, record, teacher, staff_headers):
    response = client.put(f"/api/teacher-performance/{teacher['email']}/attendance",
                          json={"month": "August", "year": 2024, "workingDays": 20, "presentDays": 20},
                          headers=staff_headers)

    assert response.status_code == 403


# ==================== REVIEWS ====================

def test_review_score_is_rubric_mean(client, admin_headers, record, teacher, staff_headers):
    url = f"/api/teacher-performance/{teacher['email']}/review"
    scores = {dimension: 8 for dimension in REVIEW_DIMENSIONS}
    scores["punctuality"] = 0

    response = client.post(url, json={"category": "principal", "month": "August", "year": 2024, "scores": scores},
                           headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["data"]["review"]["overallScore"] == pytest.approx(7.0)
    assert response.json()["data"]["averagePerformanceScore"] == pytest.approx(7.0)

    reviews = client.get(f"/api/teacher-performance/{teacher['email']}/reviews?category=principal",
                         headers=staff_headers)
    assert reviews.json()["count"] == 1


def test_one_review_per_category_and_month(client, admin_headers, record, teacher):
    url = f"/api/teacher-performance/{teacher['email']}/review"
    client.post(url, json={"category": "principal", "month": "August", "year": 2024}, headers=admin_headers)

    duplicate = client.post(url, json={"category": "principal", "month": "August", "year": 2024},
                            headers=admin_headers)
    other_category = client.post(url, json={"category": "colleague", "month": "August", "year": 2024},
                                 headers=admin_headers)

    assert duplicate.status_code == 409
    assert other_category.status_code == 200


def test_review_scores_out_of_range(client, admin_headers, record, teacher):
    response = client.post(f"/api/teacher-performance/{teacher['email']}/review", json={
        "category": "self", "month": "August", "year": 2024, "scores": {"punctuality": 12},
    }, headers=admin_headers)

    assert response.status_code == 400


# ==================== REMARKS & ASSIGNMENTS ====================

def test_remarks(client, admin_headers, record, teacher, staff_headers):
    url = f"/api/teacher-performance/{teacher['email']}/remark"
    client.post(url, json={"remark": "Ran the science fair", "category": "achievement"}, headers=admin_headers)
    client.post(url, json={"remark": "Late twice"}, headers=admin_headers)

    everything = client.get(f"/api/teacher-performance/{teacher['email']}/remarks", headers=staff_headers)
    achievements = client.get(f"/api/teacher-performance/{teacher['email']}/remarks?category=achievement",
                              headers=staff_headers)

    assert everything.json()["count"] == 2
    assert achievements.json()["data"][0]["remark"] == "Ran the science fair"


def test_assign_subject_once_per_class_and_year(client, admin_headers, record, teacher, staff_headers):
    url = f"/api/teacher-performance/{teacher['email']}/assign-subject"
    payload = {"subject": "Physics", "class": "10", "section": "A", "academicYear": "2024-2025"}

    first = client.post(url, json=payload, headers=admin_headers)
    duplicate = client.post(url, json=payload, headers=admin_headers)
    other_year = client.post(url, json={**payload, "academicYear": "2025-2026"}, headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["data"]["class"] == "10"
    assert duplicate.status_code == 409
    assert other_year.status_code == 200

    listing = client.get(f"/api/teacher-performance/{teacher['email']}/subject-assignments",
                         headers=staff_headers).json()
    assert [a["academicYear"] for a in listing["data"]] == ["2025-2026", "2024-2025"]


# ==================== SUMMARIES ====================

def test_statistics_and_dashboard(client, admin_headers, record, teacher, staff_headers):
    email = teacher["email"]
    client.put(f"/api/teacher-performance/{email}/attendance",
               json={"month": "August", "year": 2024, "workingDays": 20, "presentDays": 19}, headers=admin_headers)
    client.post(f"/api/teacher-performance/{email}/review",
                json={"category": "principal", "month": "August", "year": 2024,
                      "scores": {d: 6 for d in REVIEW_DIMENSIONS}}, headers=admin_headers)
    client.post(f"/api/teacher-performance/{email}/assign-subject",
                json={"subject": "Physics", "class": "9", "academicYear": "2024-2025"}, headers=admin_headers)

    statistics = client.get(f"/api/teacher-performance/{email}/statistics", headers=staff_headers).json()["data"]
    dashboard = client.get(f"/api/teacher-performance/{email}/dashboard", headers=staff_headers).json()["data"]

    assert statistics["attendance"]["overallPercentage"] == pytest.approx(95.0)
    assert statistics["performance"]["totalReviews"] == 1
    assert statistics["assignments"] == {"totalAssignments": 1, "activeAssignments": 1}
    assert dashboard["summary"]["performanceScore"] == pytest.approx(6.0)
    assert dashboard["teacherInfo"]["name"] == "Jane Doe"
    assert len(dashboard["recentAttendance"]) == 1


def test_missing_record(client, staff_headers):
    response = client.get("/api/teacher-performance/nobody@school.org", headers=staff_headers)

    assert response.status_code == 404


def test_delete_deactivates_record(client, db, admin_headers, record, teacher):
    response = client.delete(f"/api/teacher-performance/{teacher['email']}", headers=admin_headers)

    assert response.status_code == 200
    assert db.get_teacher_performance_by_email(teacher["email"])["isActive"] is False
