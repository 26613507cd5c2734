"""
HTTP tests for the member import and analytics endpoints.

TestClient runs background tasks before handing back the response, so an
import started through the API has finished by the time the next request
is made.
"""

import json

import pytest


def _upload(content, file_name="members.csv"):
    return {"file": (file_name, content, "text/csv")}


def _start(client, content, mapping, **form):
    data = {"subaccount_id": "sub-a", "column_mapping": json.dumps(mapping), **form}
    return client.post("/member-imports", files=_upload(content), data=data)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_template_download(client):
    response = client.get("/member-imports/template")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "member-import-template.csv" in response.headers["content-disposition"]
    assert response.text.startswith("name,email,phone")


def test_preview(client):
    content = b"Full Name,Email,Join Date\nAsha,asha@example.com,25/12/2023\n"

    response = client.post("/member-imports/preview", files=_upload(content))

    assert response.status_code == 200
    body = response.json()
    assert body["headers"] == ["Full Name", "Email", "Join Date"]
    assert body["total_rows"] == 1
    assert body["suggested_mapping"] == {"0": "name", "1": "email", "2": "join_date"}
    assert body["date_samples"] == {"join_date": "25/12/2023"}
    assert body["detected_date_formats"] == ["dd/mm/yyyy"]
    assert len(body["date_formats"]) == 12
    assert body["required_fields"] == ["name"]


@pytest.mark.parametrize(
    ("file_name", "content"),
    [("members.txt", b"name\nAsha\n"), ("members.csv", b"name\n")],
)
def test_preview_rejects_bad_files(client, file_name, content):
    response = client.post("/member-imports/preview", files=_upload(content, file_name))

    assert response.status_code == 400


def test_start_import_runs_in_the_background(client, seed):
    content = b"name,email\nJohn,j@x.com\n,missing@x.com\n"

    response = _start(client, content, {"0": "name", "1": "email"}, uploaded_by="user-owner")

    assert response.status_code == 202
    job = response.json()["job"]
    assert job["status"] == "pending"
    assert job["total_rows"] == 2
    assert job["uploaded_by"] == "user-owner"

    status = client.get(f"/member-imports/{job['id']}", params={"subaccount_id": "sub-a"})
    assert status.status_code == 200
    finished = status.json()["job"]
    assert finished["status"] == "completed"
    assert finished["success_count"] == 1
    assert finished["error_count"] == 1
    assert "Row 2: Name is required" in finished["logs"]


@pytest.mark.parametrize(
    ("mapping", "form"),
    [
        ({"1": "email"}, {}),
        ({"0": "name", "1": "dob"}, {}),
        ({"0": "name"}, {"date_format": "yyyy.mm.dd"}),
    ],
)
def test_start_import_validation_errors(client, seed, mapping, form):
    response = _start(client, b"name,dob\nAsha,15/05/1990\n", mapping, **form)

    assert response.status_code == 400


@pytest.mark.parametrize("raw_mapping", ["{not json", "[1, 2]"])
def test_start_import_rejects_malformed_mapping(client, seed, raw_mapping):
    response = client.post(
        "/member-imports",
        files=_upload(b"name\nAsha\n"),
        data={"subaccount_id": "sub-a", "column_mapping": raw_mapping},
    )

    assert response.status_code == 400


def test_history_is_scoped_to_the_franchise(client, seed):
    _start(client, b"name\nAsha\nRavi\n", {"0": "name"})

    andheri = client.get("/member-imports", params={"subaccount_id": "sub-a"}).json()
    bandra = client.get("/member-imports", params={"subaccount_id": "sub-b"}).json()

    assert andheri["total_count"] == 1
    assert andheri["summary"]["completed"] == 1
    assert andheri["summary"]["members_imported"] == 2
    assert bandra["total_count"] == 0

    job_id = andheri["jobs"][0]["id"]
    assert client.get(f"/member-imports/{job_id}", params={"subaccount_id": "sub-b"}).status_code == 404


def test_unknown_job_is_404(client, seed):
    assert client.get("/member-imports/nope", params={"subaccount_id": "sub-a"}).status_code == 404
    assert client.post("/member-imports/nope/cancel", params={"subaccount_id": "sub-a"}).status_code == 404


def test_cancel_finished_job_returns_it_unchanged(client, seed):
    job = _start(client, b"name\nAsha\n", {"0": "name"}).json()["job"]

    response = client.post(f"/member-imports/{job['id']}/cancel", params={"subaccount_id": "sub-a"})

    assert response.status_code == 200
    assert response.json()["job"]["status"] == "completed"


def test_reprocess(client, seed):
    job = _start(client, b"name\nAsha\n", {"0": "name"}).json()["job"]

    response = client.post(f"/member-imports/{job['id']}/reprocess", params={"subaccount_id": "sub-a"})

    assert response.status_code == 202
    again = response.json()["job"]
    assert again["id"] != job["id"]
    finished = client.get(f"/member-imports/{again['id']}", params={"subaccount_id": "sub-a"}).json()["job"]
    assert finished["status"] == "completed"


class TestAnalyticsEndpoint:
    def test_single_franchise(self, client, seed):
        response = client.get(
            "/analytics",
            params={"subaccount_id": "sub-a", "date_from": "2024-01-01", "date_to": "2024-01-31"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["report"]["subaccount_ids"] == ["sub-a"]
        assert body["report"]["overview"]["total_revenue"] == 150
        assert body["currency"]["code"] == "INR"
        assert body["formatted_totals"] == {
            "total_revenue": "₹150",
            "total_expenses": "₹40",
            "net_profit": "₹110",
        }

    def test_owner_gets_all_franchises(self, client, seed):
        response = client.get(
            "/analytics",
            params={
                "subaccount_id": "sub-a",
                "account_id": "acc-1",
                "user_id": "user-owner",
                "date_from": "2024-01-01",
                "date_to": "2024-02-29",
            },
        )

        assert response.status_code == 200
        report = response.json()["report"]
        assert report["subaccount_ids"] == ["sub-a", "sub-b"]
        assert report["overview"]["total_revenue"] == 330

    def test_foreign_franchise_is_forbidden(self, client, seed):
        response = client.get(
            "/analytics",
            params={"subaccount_id": "sub-a", "account_id": "acc-1", "user_id": "user-owner", "franchise": "sub-x"},
        )

        assert response.status_code == 403

    def test_reversed_window_is_rejected(self, client, seed):
        response = client.get(
            "/analytics",
            params={"subaccount_id": "sub-a", "date_from": "2024-02-01", "date_to": "2024-01-01"},
        )

        assert response.status_code == 400
