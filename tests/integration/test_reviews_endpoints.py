"""
Integration tests for review endpoints and the derived doctor rating.
"""

import pytest

from vitalconnect.database import Review

from conftest import make_patient, make_user

REVIEWS = "/api/v1/reviews"


@pytest.fixture
def review(test_db, doctor, patient):
    item = Review(doctor_id=doctor.id, patient_id=patient.id, rating=4, comment="Very attentive")
    test_db.add(item)
    test_db.commit()
    test_db.refresh(item)
    return item


class TestWriteReviews:
    """Tests for creating reviews and the rating recomputation."""

    def test_two_reviews_average(self, client, test_db, doctor, patient_headers, other_patient_headers):
        first = client.post(REVIEWS, headers=patient_headers, json={"doctor_id": doctor.id, "rating": 5})
        second = client.post(REVIEWS, headers=other_patient_headers, json={"doctor_id": doctor.id, "rating": 3})
        assert first.status_code == 201
        assert second.status_code == 201

        test_db.refresh(doctor)
        assert doctor.rating == 4
        assert doctor.reviews_count == 2

    def test_duplicate_review_conflicts(self, client, test_db, doctor, patient_headers):
        client.post(REVIEWS, headers=patient_headers, json={"doctor_id": doctor.id, "rating": 5})
        response = client.post(REVIEWS, headers=patient_headers, json={"doctor_id": doctor.id, "rating": 1})

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_KEY"
        test_db.refresh(doctor)
        assert doctor.rating == 5
        assert doctor.reviews_count == 1

    def test_rating_out_of_range(self, client, doctor, patient_headers):
        response = client.post(REVIEWS, headers=patient_headers, json={"doctor_id": doctor.id, "rating": 6})
        assert response.status_code == 400
        assert "rating" in response.json()["field_errors"]

    def test_doctor_cannot_review(self, client, doctor, other_doctor_headers):
        response = client.post(REVIEWS, headers=other_doctor_headers, json={"doctor_id": doctor.id, "rating": 5})
        assert response.status_code == 403

    def test_unknown_doctor(self, client, patient_headers):
        response = client.post(REVIEWS, headers=patient_headers, json={"doctor_id": 999, "rating": 5})
        assert response.status_code == 404

    def test_author_edits_review(self, client, test_db, review, doctor, patient_headers):
        response = client.patch(f"{REVIEWS}/{review.id}", headers=patient_headers, json={"rating": 2})
        assert response.json()["data"]["review"]["rating"] == 2
        test_db.refresh(doctor)
        assert doctor.rating == 2

    def test_other_patient_cannot_edit(self, client, review, other_patient_headers):
        response = client.patch(f"{REVIEWS}/{review.id}", headers=other_patient_headers, json={"rating": 1})
        assert response.status_code == 403
        assert response.json()["message"] == "You can only edit your own reviews"

    def test_admin_deletes_review(self, client, test_db, review, doctor, admin_headers):
        assert client.delete(f"{REVIEWS}/{review.id}", headers=admin_headers).status_code == 204
        test_db.refresh(doctor)
        assert doctor.rating == 0
        assert doctor.reviews_count == 0


class TestReadReviews:
    """Tests for public review reads."""

    def test_list_is_public(self, client, review):
        response = client.get(REVIEWS)
        assert response.status_code == 200
        assert response.json()["data"]["reviews"][0]["comment"] == "Very attentive"

    def test_list_filters_by_rating(self, client, review):
        response = client.get(REVIEWS, params={"rating[gte]": "5"})
        assert response.json()["results"] == 0

    def test_doctor_reviews(self, client, review, doctor):
        response = client.get(f"{REVIEWS}/doctor/{doctor.id}")
        assert [item["id"] for item in response.json()["data"]["reviews"]] == [review.id]

    def test_doctor_reviews_are_not_cut_at_the_list_default(self, client, test_db, doctor):
        for n in range(12):
            user = make_user(test_db, f"Patient {n}", f"patient{n}@example.com", "patient")
            test_db.add(Review(doctor_id=doctor.id, patient_id=make_patient(test_db, user).id, rating=5))
        test_db.commit()

        assert client.get(f"{REVIEWS}/doctor/{doctor.id}").json()["results"] == 12
        assert client.get(REVIEWS, params={"doctor_id": doctor.id}).json()["results"] == 10

    def test_doctor_reviews_when_empty(self, client, doctor):
        response = client.get(f"{REVIEWS}/doctor/{doctor.id}")
        assert response.status_code == 404
        assert response.json()["message"] == "No reviews found for this doctor"

    def test_get_one(self, client, review):
        assert client.get(f"{REVIEWS}/{review.id}").json()["data"]["review"]["rating"] == 4
