import pytest


@pytest.fixture
def admission_payload():
    return {
        "title": "Class 10 Admissions",
        "courseName": "Secondary",
        "forClass": "10",
        "stream": "Science",
        "academicYear": "2026-27",
        "dates": {
            "applicationStart": "2026-03-01",
            "applicationEnd": "2026-03-31",
            "examDate": "2026-04-10",
            "interviewDate": "2026-04-20",
            "admissionStart": "2026-05-01",
        },
        "fees": {"applicationFee": "500", "admissionFee": "", "monthlyFee": "2500"},
        "description": "Admissions for the secondary section",
        "eligibility": {"minAge": "14", "maxAge": "", "minPercentage": 60, "otherRequirements": ""},
    }


def test_create_admission(client, admin_headers, admission_payload):
    response = client.post("/api/admissions", json=admission_payload, headers=admin_headers)

    assert response.status_code == 201
    admission = response.json()["data"]
    assert admission["admissionCode"] == "ADM26100001"
    assert admission["stream"] is None
    assert admission["fees"] == {"applicationFee": 500, "admissionFee": 0, "monthlyFee": 2500}
    assert admission["eligibility"]["minAge"] == 14
    assert admission["eligibility"]["maxAge"] is None
    assert admission["seats"] == {"total": 50, "available": 50}
    assert admission["isActive"] is True


def test_admission_codes_count_per_class_and_year(client, admin_headers, admission_payload):
    client.post("/api/admissions", json=admission_payload, headers=admin_headers)
    second = client.post("/api/admissions", json=admission_payload, headers=admin_headers)
    nursery = client.post("/api/admissions", json={**admission_payload, "forClass": "Nursery"},
                          headers=admin_headers)
    class_two = client.post("/api/admissions", json={**admission_payload, "forClass": "2"},
                            headers=admin_headers)

    assert second.json()["data"]["admissionCode"] == "ADM26100002"
    assert nursery.json()["data"]["admissionCode"] == "ADM26NUR0001"
    assert class_two.json()["data"]["admissionCode"] == "ADM26020001"


def test_senior_classes_keep_stream(client, admin_headers, admission_payload):
    payload = {**admission_payload, "forClass": "12", "seats": {"total": 40}}

    response = client.post("/api/admissions", json=payload, headers=admin_headers)

    assert response.json()["data"]["stream"] == "Science"
    assert response.json()["data"]["seats"] == {"total": 40, "available": 40}


@pytest.mark.parametrize("change", [
    {"fees": {"applicationFee": "500"}},
    {"forClass": "13"},
    {"stream": "Arts"},
    {"title": ""},
])
def test_invalid_admission(client, admin_headers, admission_payload, change):
    response = client.post("/api/admissions", json={**admission_payload, **change}, headers=admin_headers)

    assert response.status_code == 400


def test_missing_dates(client, admin_headers, admission_payload):
    dates = dict(admission_payload["dates"])
    del dates["examDate"]

    response = client.post("/api/admissions", json={**admission_payload, "dates": dates}, headers=admin_headers)

    assert response.status_code == 400


def test_creating_requires_admin(client, make_member, auth_headers, admission_payload):
    unauthenticated = client.post("/api/admissions", json=admission_payload)
    as_teacher = client.post("/api/admissions", json=admission_payload,
                             headers=auth_headers(make_member("teacher", "mr.lee@school.org")))

    assert unauthenticated.status_code == 401
    assert as_teacher.status_code == 403


def test_public_listing_hides_inactive(client, admin_headers, admission_payload):
    first = client.post("/api/admissions", json=admission_payload, headers=admin_headers).json()["data"]
    client.post("/api/admissions", json={**admission_payload, "forClass": "5"}, headers=admin_headers)
    client.delete(f"/api/admissions/{first['id']}", headers=admin_headers)

    public = client.get("/api/admissions")
    everything = client.get("/api/admissions?includeInactive=true")
    class_five = client.get("/api/admissions?forClass=5")

    assert public.json()["count"] == 1
    assert everything.json()["count"] == 2
    assert class_five.json()["data"][0]["forClass"] == "5"
    assert client.get(f"/api/admissions/{first['id']}").json()["data"]["isActive"] is False


def test_update_admission(client, admin_headers, admission_payload):
    admission = client.post("/api/admissions", json=admission_payload, headers=admin_headers).json()["data"]

    response = client.put(f"/api/admissions/{admission['id']}", json={
        "title": "  Class 10 Admissions 2026  ",
        "fees": {"monthlyFee": "2700", "admissionFee": ""},
        "seats": {"available": 12},
        "dates": {"examDate": "2026-04-12"},
    }, headers=admin_headers)

    assert response.status_code == 200
    updated = response.json()["data"]
    assert updated["title"] == "Class 10 Admissions 2026"
    assert updated["fees"] == {"applicationFee": 500, "admissionFee": 0, "monthlyFee": 2700}
    assert updated["seats"] == {"total": 50, "available": 12}
    assert updated["dates"]["examDate"] == "2026-04-12"
    assert updated["dates"]["applicationStart"] == "2026-03-01"


def test_unknown_admission(client, admin_headers):
    assert client.get("/api/admissions/adm_missing").status_code == 404
    assert client.put("/api/admissions/adm_missing", json={}, headers=admin_headers).status_code == 404


def test_overflowing_fee_is_rejected(client, admin_headers, admission_payload):
    admission_payload["fees"]["monthlyFee"] = "1e400"

    response = client.post("/api/admissions", json=admission_payload, headers=admin_headers)

    assert response.status_code == 400
    public = client.get("/api/admissions")
    assert public.status_code == 200
    assert public.json()["count"] == 0
