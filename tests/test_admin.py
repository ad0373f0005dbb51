from unittest.mock import patch

from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

import crud
import models
from conftest import APPLICATION_PAYLOAD, JOB_PAYLOAD, as_identity, make_profile


def test_stats_count_active_jobs_users_and_applications(
    test_client: TestClient, db_session: Session, admin, employer, seeker
):
    headers = as_identity(employer.identity_id)
    first = test_client.post("/jobs/", json=JOB_PAYLOAD, headers=headers).json()
    second = test_client.post("/jobs/", json=dict(JOB_PAYLOAD, title="Closed role"), headers=headers).json()
    test_client.patch(f"/jobs/{second['id']}", json={"status": "closed"}, headers=headers)
    test_client.post(
        f"/jobs/{first['id']}/applications", json=APPLICATION_PAYLOAD, headers=as_identity(seeker.identity_id)
    )

    response = test_client.get("/admin/stats", headers=as_identity(admin.identity_id))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"active_jobs": 1, "total_users": 3, "total_applications": 1}


def test_stats_on_empty_store(test_client: TestClient, admin):
    response = test_client.get("/admin/stats", headers=as_identity(admin.identity_id))
    assert response.json() == {"active_jobs": 0, "total_users": 1, "total_applications": 0}


def test_admin_routes_need_admin_flag(test_client: TestClient, employer, seeker):
    for identity_id in (employer.identity_id, seeker.identity_id, "no-profile"):
        for path in ("/admin/stats", "/admin/users"):
            response = test_client.get(path, headers=as_identity(identity_id))
            assert response.status_code == status.HTTP_403_FORBIDDEN


def test_admin_flag_is_granted_on_the_profile(test_client: TestClient, db_session: Session, employer):
    headers = as_identity(employer.identity_id)
    assert test_client.get("/admin/stats", headers=headers).status_code == status.HTTP_403_FORBIDDEN

    crud.set_admin(db_session, employer.identity_id)

    assert test_client.get("/admin/stats", headers=headers).status_code == status.HTTP_200_OK
    assert crud.set_admin(db_session, "ghost") is None


def test_admin_lists_users_with_role_fields(test_client: TestClient, admin, seeker):
    response = test_client.get("/admin/users", headers=as_identity(admin.identity_id))

    assert response.status_code == status.HTTP_200_OK
    by_id = {user["identity_id"]: user for user in response.json()}
    assert set(by_id) == {admin.identity_id, seeker.identity_id}
    assert by_id[seeker.identity_id]["role"] == "job_seeker"
    assert "company_name" not in by_id[seeker.identity_id]
    assert by_id[admin.identity_id]["is_admin"] is True


def test_backend_failure_is_reported_as_fetch_error(test_client: TestClient, seeker):
    failure = OperationalError("SELECT * FROM jobs", {}, Exception("connection refused"))
    with patch("main.crud.list_jobs", side_effect=failure):
        response = test_client.get("/jobs/", headers=as_identity(seeker.identity_id))

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
    assert response.json() == {"detail": "Error fetching data"}


def test_batch_name_lookup(db_session: Session):
    make_profile(db_session, "one", name="Number One")
    make_profile(db_session, "two", role=models.ROLE_EMPLOYER, name="Number Two")

    names = crud.get_profile_names(db_session, ["one", "two", "three", "one"])

    assert names == {"one": "Number One", "two": "Number Two"}
    assert crud.get_profile_names(db_session, []) == {}
