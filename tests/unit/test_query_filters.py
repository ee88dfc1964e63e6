"""
Unit tests for the query filter compiler.

Tests cover:
- Filter syntax (equality, range operators, dotted paths)
- Allow-list validation and value coercion
- Sort, projection and pagination defaults
- Forced (scoped) conditions
- Applying plans to real SQLAlchemy queries
"""

from datetime import date

import pytest

from vitalconnect.database import Doctor
from vitalconnect.errors import ValidationFailedError
from vitalconnect.query_filters import (
    Condition,
    DEFAULT_SORT,
    apply_plan,
    coerce_value,
    compile_query,
    fetch_page,
    parse_positive_int,
    project,
)
from vitalconnect.services.appointments import APPOINTMENT_QUERY
from vitalconnect.services.doctors import DOCTOR_QUERY
from vitalconnect.services.reviews import REVIEW_QUERY

from conftest import make_doctor, make_user


class TestFilterSyntax:
    """Tests for turning query keys into conditions."""

    def test_bare_key_is_equality(self):
        plan = compile_query({"specialization": "Cardiology"}, DOCTOR_QUERY)
        assert plan.conditions == (Condition("specialization", "eq", "Cardiology"),)

    def test_range_operator_on_numeric_field(self):
        plan = compile_query({"consultation_fee[gte]": "200"}, DOCTOR_QUERY)
        assert plan.filter == {"consultation_fee": {"gte": 200.0}}

    def test_two_bounds_on_same_field(self):
        plan = compile_query({"experience[gt]": "2", "experience[lte]": "10"}, DOCTOR_QUERY)
        assert plan.filter == {"experience": {"gt": 2, "lte": 10}}

    def test_dotted_path(self):
        plan = compile_query({"clinic.city": "Cairo"}, DOCTOR_QUERY)
        assert plan.filter == {"clinic.city": {"eq": "Cairo"}}

    def test_reserved_keys_are_not_filters(self):
        plan = compile_query({"page": "2", "sort": "rating", "limit": "5", "fields": "rating"}, DOCTOR_QUERY)
        assert plan.conditions == ()

    def test_date_values_are_coerced(self):
        plan = compile_query({"date[gte]": "2030-01-01"}, APPOINTMENT_QUERY)
        assert plan.filter == {"date": {"gte": date(2030, 1, 1)}}

    def test_lookup_becomes_match_condition(self):
        plan = compile_query({"name": "amal"}, DOCTOR_QUERY)
        assert plan.conditions == (Condition("name", "match", "amal"),)

    def test_search_term_is_kept_apart_from_filters(self):
        plan = compile_query({"q": "cairo", "specialization": "Cardiology"}, DOCTOR_QUERY)
        assert plan.search == "cairo"
        assert list(plan.filter) == ["specialization"]


class TestValidation:
    """Tests for allow-list enforcement."""

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"hashed_password": "x"}, DOCTOR_QUERY)
        assert "hashed_password" in exc_info.value.field_errors

    def test_unknown_operator_rejected(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"rating[ne]": "3"}, DOCTOR_QUERY)
        assert "rating[ne]" in exc_info.value.field_errors

    def test_range_operator_on_text_field_rejected(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"specialization[gte]": "A"}, DOCTOR_QUERY)
        assert "specialization[gte]" in exc_info.value.field_errors

    def test_uncoercible_value_rejected(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"rating[gte]": "high"}, DOCTOR_QUERY)
        assert "rating[gte]" in exc_info.value.field_errors

    def test_all_errors_reported_together(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"secret": "1", "rating[gte]": "x", "sort": "password"}, DOCTOR_QUERY)
        assert set(exc_info.value.field_errors) == {"secret", "rating[gte]", "sort"}

    def test_error_status_and_code(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"nope": "1"}, DOCTOR_QUERY)
        assert exc_info.value.status_code == 400
        assert exc_info.value.code == "VALIDATION_FAILED"

    def test_unknown_projection_field_rejected(self):
        with pytest.raises(ValidationFailedError) as exc_info:
            compile_query({"fields": "rating,hashed_password"}, DOCTOR_QUERY)
        assert "fields" in exc_info.value.field_errors


class TestSortAndPagination:
    """Tests for sort, projection and page/limit handling."""

    def test_default_sort_is_newest_first(self):
        assert compile_query({}, DOCTOR_QUERY).sort == DEFAULT_SORT

    def test_sort_directions(self):
        plan = compile_query({"sort": "-rating,experience"}, DOCTOR_QUERY)
        assert plan.sort == (("rating", "desc"), ("experience", "asc"))

    def test_skip_from_page_and_limit(self):
        plan = compile_query({"page": "3", "limit": "20"}, DOCTOR_QUERY)
        assert plan.skip == 40
        assert plan.limit == 20

    @pytest.mark.parametrize("raw", ["0", "-4", "abc", ""])
    def test_invalid_page_and_limit_fall_back(self, raw):
        plan = compile_query({"page": raw, "limit": raw}, REVIEW_QUERY)
        assert plan.page == 1
        assert plan.limit == 10

    def test_per_resource_default_limit(self):
        assert compile_query({}, DOCTOR_QUERY).limit == 100
        assert compile_query({}, REVIEW_QUERY).limit == 10

    def test_projection_preserves_order_and_dedupes(self):
        plan = compile_query({"fields": "rating,specialization,rating"}, DOCTOR_QUERY)
        assert plan.projection == ("rating", "specialization")

    def test_parse_positive_int(self):
        assert parse_positive_int("7", 1) == 7
        assert parse_positive_int(None, 5) == 5


class TestForcedConditions:
    """Tests for server-enforced scope."""

    def test_forced_condition_replaces_user_value(self):
        plan = compile_query({"doctor_id": "99", "status": "pending"}, APPOINTMENT_QUERY, forced={"doctor_id": 4})
        assert plan.filter == {"doctor_id": {"eq": 4}, "status": {"eq": "pending"}}

    def test_forced_condition_replaces_user_range(self):
        plan = compile_query({"patient_id[gte]": "1"}, APPOINTMENT_QUERY, forced={"patient_id": 2})
        assert plan.filter == {"patient_id": {"eq": 2}}

    def test_compilation_is_deterministic(self):
        raw = {"status": "pending", "date[gte]": "2030-01-01", "sort": "-date", "page": "2"}
        first = compile_query(raw, APPOINTMENT_QUERY, forced={"doctor_id": 1})
        second = compile_query(dict(reversed(list(raw.items()))), APPOINTMENT_QUERY, forced={"doctor_id": 1})
        assert first == second


class TestCoercion:
    def test_booleans(self):
        assert coerce_value("true", bool) is True
        assert coerce_value("0", bool) is False
        with pytest.raises(ValueError):
            coerce_value("maybe", bool)

    def test_numbers(self):
        assert coerce_value(" 4 ", int) == 4
        assert coerce_value("4.5", float) == 4.5


class TestProjection:
    def test_id_is_always_kept(self):
        document = {"id": 1, "rating": 4.5, "bio": "x"}
        assert project(document, ("rating",)) == {"id": 1, "rating": 4.5}

    def test_dotted_projection(self):
        document = {"id": 1, "clinic": {"city": "Cairo", "name": "Heart"}}
        assert project(document, ("clinic.city",)) == {"id": 1, "clinic": {"city": "Cairo"}}

    def test_no_projection_returns_everything(self):
        document = {"id": 1, "rating": 4.5}
        assert project(document, None) is document


class TestApplyPlan:
    """Tests running compiled plans against the database."""

    @pytest.fixture
    def cairo_doctors(self, test_db):
        specs = [
            ("Dr. A", "a@x.com", "Cairo", 4.2, "Cardiology"),
            ("Dr. B", "b@x.com", "Cairo", 4.8, "Neurology"),
            ("Dr. C", "c@x.com", "Giza", 4.9, "Cardiology"),
            ("Dr. D", "d@x.com", "Cairo", 3.1, "Dermatology"),
        ]
        doctors = []
        for name, email, city, rating, specialization in specs:
            user = make_user(test_db, name, email, "doctor")
            doctors.append(
                make_doctor(test_db, user, clinic_city=city, rating=rating, specialization=specialization)
            )
        return doctors

    def test_city_sorted_by_rating(self, test_db, cairo_doctors):
        plan = compile_query({"clinic.city": "Cairo", "sort": "-rating", "limit": "2"}, DOCTOR_QUERY)
        results = apply_plan(test_db.query(Doctor), plan, DOCTOR_QUERY).all()
        assert [doctor.rating for doctor in results] == [4.8, 4.2]

    def test_name_lookup(self, test_db, cairo_doctors):
        plan = compile_query({"name": "dr. c"}, DOCTOR_QUERY)
        results = apply_plan(test_db.query(Doctor), plan, DOCTOR_QUERY).all()
        assert [doctor.clinic_city for doctor in results] == ["Giza"]

    def test_search_is_and_combined_with_filters(self, test_db, cairo_doctors):
        plan = compile_query({"q": "cardio", "clinic.city": "Cairo"}, DOCTOR_QUERY)
        results = apply_plan(test_db.query(Doctor), plan, DOCTOR_QUERY).all()
        assert [doctor.rating for doctor in results] == [4.2]

    def test_search_escapes_like_wildcards(self, test_db, cairo_doctors):
        plan = compile_query({"q": "%"}, DOCTOR_QUERY)
        assert apply_plan(test_db.query(Doctor), plan, DOCTOR_QUERY).all() == []

    def test_fetch_page_counts_all_matches(self, test_db, cairo_doctors):
        plan = compile_query({"clinic.city": "Cairo", "limit": "1", "page": "2", "sort": "rating"}, DOCTOR_QUERY)
        page = fetch_page(test_db.query(Doctor), plan, DOCTOR_QUERY)
        assert page.total == 3
        assert len(page.items) == 1
        assert page.items[0].rating == 4.2
