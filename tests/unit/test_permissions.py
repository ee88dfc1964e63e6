"""
Unit tests for the access policy.

Tests the role/ownership rules per resource type, list scoping and
missing-profile handling.
"""

import pytest

from vitalconnect.database import Prescription, Review
from vitalconnect.errors import ForbiddenError, NotFoundError
from vitalconnect.permissions import AccessPolicy, Principal

from conftest import make_user


def principal_of(user) -> Principal:
    return Principal(id=user.id, role=user.role)


class TestAppointmentRules:
    """Tests for appointment view/modify/cancel decisions."""

    def test_admin_is_never_denied(self, test_db, admin_user, appointment):
        policy = AccessPolicy(test_db)
        admin = principal_of(admin_user)
        assert policy.can_view(admin, appointment)
        assert policy.can_modify(admin, appointment)
        assert policy.can_cancel(admin, appointment)

    def test_owning_doctor(self, test_db, doctor_user, appointment):
        policy = AccessPolicy(test_db)
        assert policy.can_view(principal_of(doctor_user), appointment)
        assert policy.can_modify(principal_of(doctor_user), appointment)
        assert policy.can_cancel(principal_of(doctor_user), appointment)

    def test_other_doctor_is_denied(self, test_db, other_doctor, other_doctor_user, appointment):
        policy = AccessPolicy(test_db)
        assert not policy.can_view(principal_of(other_doctor_user), appointment)
        assert not policy.can_modify(principal_of(other_doctor_user), appointment)

    def test_owning_patient_can_view_and_cancel_but_not_modify(self, test_db, patient_user, appointment):
        policy = AccessPolicy(test_db)
        owner = principal_of(patient_user)
        assert policy.can_view(owner, appointment)
        assert policy.can_cancel(owner, appointment)
        assert not policy.can_modify(owner, appointment)

    def test_other_patient_is_denied(self, test_db, other_patient, other_patient_user, appointment):
        policy = AccessPolicy(test_db)
        assert not policy.can_cancel(principal_of(other_patient_user), appointment)

    def test_ensure_raises_forbidden(self, test_db, other_patient, other_patient_user, appointment):
        policy = AccessPolicy(test_db)
        with pytest.raises(ForbiddenError):
            policy.ensure_can_cancel(principal_of(other_patient_user), appointment)

    def test_anonymous_is_denied(self, test_db, appointment):
        assert not AccessPolicy(test_db).can_view(None, appointment)


class TestProfileResolution:
    """Tests for missing profiles."""

    def test_doctor_without_profile_is_not_found(self, test_db, appointment):
        lonely = make_user(test_db, "Dr. New", "new@clinic.com", "doctor")
        with pytest.raises(NotFoundError) as exc_info:
            AccessPolicy(test_db).can_view(principal_of(lonely), appointment)
        assert exc_info.value.message == "Doctor profile not found"

    def test_patient_profile_lookup(self, test_db, patient, patient_user):
        assert AccessPolicy(test_db).patient_profile(principal_of(patient_user)).id == patient.id

    def test_patient_without_profile_is_not_found(self, test_db, patient_user):
        with pytest.raises(NotFoundError):
            AccessPolicy(test_db).patient_profile(principal_of(patient_user))


class TestOtherResources:
    """Tests for prescriptions, reviews and profiles."""

    def test_patient_cannot_modify_own_prescription(self, test_db, patient_user, appointment):
        prescription = Prescription(
            appointment_id=appointment.id, doctor_id=appointment.doctor_id, patient_id=appointment.patient_id
        )
        policy = AccessPolicy(test_db)
        assert policy.can_view(principal_of(patient_user), prescription)
        assert not policy.can_modify(principal_of(patient_user), prescription)

    def test_reviews_are_public_but_author_owned(self, test_db, doctor, patient, patient_user, other_patient, other_patient_user):
        review = Review(doctor_id=doctor.id, patient_id=patient.id, rating=5)
        policy = AccessPolicy(test_db)
        assert policy.can_view(None, review)
        assert policy.can_modify(principal_of(patient_user), review)
        assert not policy.can_modify(principal_of(other_patient_user), review)

    def test_doctor_cannot_modify_reviews_about_them(self, test_db, doctor, doctor_user, patient):
        review = Review(doctor_id=doctor.id, patient_id=patient.id, rating=1)
        assert not AccessPolicy(test_db).can_modify(principal_of(doctor_user), review)

    def test_doctor_profile_owner(self, test_db, doctor, doctor_user, other_doctor, other_doctor_user):
        policy = AccessPolicy(test_db)
        assert policy.can_modify(principal_of(doctor_user), doctor)
        assert not policy.can_modify(principal_of(other_doctor_user), doctor)

    def test_patient_profile_is_private(self, test_db, patient, other_patient, other_patient_user, doctor_user, doctor):
        policy = AccessPolicy(test_db)
        assert not policy.can_view(principal_of(other_patient_user), patient)
        assert not policy.can_view(principal_of(doctor_user), patient)


class TestScopeFilter:
    """Tests for list scoping."""

    def test_admin_unscoped(self, test_db, admin_user):
        assert AccessPolicy(test_db).scope_filter(principal_of(admin_user), "appointment") == {}

    def test_doctor_scoped_to_own_profile(self, test_db, doctor, doctor_user):
        assert AccessPolicy(test_db).scope_filter(principal_of(doctor_user), "appointment") == {"doctor_id": doctor.id}

    def test_patient_scoped_to_own_profile(self, test_db, patient, patient_user):
        assert AccessPolicy(test_db).scope_filter(principal_of(patient_user), "prescription") == {"patient_id": patient.id}

    def test_public_resource_unscoped(self, test_db, patient, patient_user):
        assert AccessPolicy(test_db).scope_filter(principal_of(patient_user), "review") == {}

    def test_profile_creation_requires_matching_role(self, test_db, patient_user):
        with pytest.raises(ForbiddenError):
            AccessPolicy(test_db).ensure_can_create_profile(principal_of(patient_user), "doctor")
