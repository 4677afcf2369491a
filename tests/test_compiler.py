"""Tests for the schema compiler (field list -> validator/coercer)."""

import logging

import pytest

from typeforge.metadata.loader import DatatypeDefinition, FieldConstraints, FieldSpec
from typeforge.validation import Mode, SchemaCache, compile_fields, validate_and_coerce


def field(key, type="string", **kwargs):
    constraints = kwargs.pop("constraints", None) or FieldConstraints()
    return FieldSpec(key=key, type=type, constraints=constraints, **kwargs)


# =============================================================================
# Required / partial semantics
# =============================================================================


class TestRequired:
    def test_all_missing_required_fields_reported(self):
        fields = [
            field("title", required=True),
            field("body", required=True),
            field("rating", "number", required=True),
        ]
        outcome = validate_and_coerce(fields, Mode.CREATE, {})
        assert not outcome.ok
        assert outcome.errors == {
            "title": "required",
            "body": "required",
            "rating": "required",
        }

    def test_required_array_field_not_mandatory_on_create(self):
        fields = [field("tags", required=True, array=True)]
        outcome = validate_and_coerce(fields, Mode.CREATE, {})
        assert outcome.ok
        assert outcome.value == {}

    def test_update_never_requires_fields(self):
        fields = [field("title", required=True), field("rating", "number", required=True)]
        outcome = validate_and_coerce(fields, Mode.UPDATE, {"rating": 3})
        assert outcome.ok
        assert outcome.value == {"rating": 3}

    def test_none_counts_as_absent(self):
        fields = [field("title", required=True)]
        outcome = validate_and_coerce(fields, Mode.CREATE, {"title": None})
        assert outcome.errors == {"title": "required"}

    def test_collects_errors_across_kinds(self):
        fields = [field("title", required=True), field("rating", "number")]
        outcome = validate_and_coerce(fields, Mode.CREATE, {"rating": "abc"})
        assert outcome.errors == {"title": "required", "rating": "expected_number"}

    def test_non_dict_payload(self):
        outcome = validate_and_coerce([field("title")], Mode.CREATE, ["nope"])
        assert outcome.errors == {"payload": "expected_object"}


class TestUnknownKeys:
    def test_unknown_keys_dropped(self):
        outcome = validate_and_coerce([field("title")], Mode.CREATE, {"title": "a", "x": 1})
        assert outcome.value == {"title": "a"}

    def test_allow_unknown_passes_through(self):
        schema = compile_fields([field("title")], Mode.CREATE)
        outcome = schema.validate({"title": "a", "x": 1}, allow_unknown=True)
        assert outcome.value == {"title": "a", "x": 1}


class TestUniqueArray:
    def test_unique_array_rejected_before_storage(self):
        fields = [field("codes", unique=True, array=True)]
        outcome = validate_and_coerce(fields, Mode.CREATE, {"codes": ["a"]})
        assert outcome.errors == {"codes": "unique_array"}

    def test_unique_array_rejected_in_update_even_when_absent(self):
        fields = [field("codes", unique=True, array=True)]
        outcome = validate_and_coerce(fields, Mode.UPDATE, {})
        assert outcome.errors == {"codes": "unique_array"}


# =============================================================================
# Per-type rules
# =============================================================================


class TestString:
    def test_type_check(self):
        outcome = validate_and_coerce([field("s")], Mode.UPDATE, {"s": 5})
        assert outcome.errors == {"s": "expected_string"}

    def test_length_bounds(self):
        c = FieldConstraints(min_length=2, max_length=4)
        fields = [field("s", constraints=c)]
        assert validate_and_coerce(fields, Mode.UPDATE, {"s": "a"}).errors == {"s": "minLength"}
        assert validate_and_coerce(fields, Mode.UPDATE, {"s": "abcde"}).errors == {"s": "maxLength"}
        assert validate_and_coerce(fields, Mode.UPDATE, {"s": "abc"}).ok

    def test_pattern(self):
        fields = [field("s", constraints=FieldConstraints(pattern=r"^[a-z]+$"))]
        assert validate_and_coerce(fields, Mode.UPDATE, {"s": "abc"}).ok
        assert validate_and_coerce(fields, Mode.UPDATE, {"s": "ab1"}).errors == {"s": "pattern"}

    def test_invalid_pattern_ignored_with_warning(self, caplog):
        fields = [field("s", constraints=FieldConstraints(pattern="(["))]
        with caplog.at_level(logging.WARNING):
            outcome = validate_and_coerce(fields, Mode.UPDATE, {"s": "anything"})
        assert outcome.ok
        assert "invalid pattern" in caplog.text


class TestNumber:
    def test_numeric_strings_coerced(self):
        fields = [field("n", "number")]
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": "42"}).value == {"n": 42}
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": " 2.5 "}).value == {"n": 2.5}

    @pytest.mark.parametrize("raw", ["", "abc", True, [1], "nan"])
    def test_rejects_non_numeric(self, raw):
        outcome = validate_and_coerce([field("n", "number")], Mode.UPDATE, {"n": raw})
        assert outcome.errors == {"n": "expected_number"}

    def test_integer_constraint(self):
        fields = [field("n", "number", constraints=FieldConstraints(integer=True))]
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": 3.0}).value == {"n": 3}
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": 3.5}).errors == {"n": "integer"}

    def test_bounds(self):
        fields = [field("n", "number", constraints=FieldConstraints(min=0, max=5))]
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": -1}).errors == {"n": "min"}
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": 6}).errors == {"n": "max"}
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": 5}).ok


class TestBoolean:
    def test_accepts_bool_and_literals(self):
        fields = [field("b", "boolean")]
        assert validate_and_coerce(fields, Mode.UPDATE, {"b": True}).value == {"b": True}
        assert validate_and_coerce(fields, Mode.UPDATE, {"b": "false"}).value == {"b": False}

    @pytest.mark.parametrize("raw", ["yes", 1, "TRUE"])
    def test_rejects_other_values(self, raw):
        outcome = validate_and_coerce([field("b", "boolean")], Mode.UPDATE, {"b": raw})
        assert outcome.errors == {"b": "expected_boolean"}


class TestDate:
    def test_iso_string_normalized_to_utc(self):
        outcome = validate_and_coerce(
            [field("d", "date")], Mode.UPDATE, {"d": "2024-03-01T12:00:00+02:00"}
        )
        assert outcome.value == {"d": "2024-03-01T10:00:00+00:00"}

    def test_naive_date_string_treated_as_utc(self):
        outcome = validate_and_coerce([field("d", "date")], Mode.UPDATE, {"d": "2024-03-01"})
        assert outcome.value == {"d": "2024-03-01T00:00:00+00:00"}

    def test_epoch_millis(self):
        outcome = validate_and_coerce([field("d", "date")], Mode.UPDATE, {"d": 0})
        assert outcome.value == {"d": "1970-01-01T00:00:00+00:00"}

    def test_unparseable(self):
        outcome = validate_and_coerce([field("d", "date")], Mode.UPDATE, {"d": "not a date"})
        assert outcome.errors == {"d": "expected_date"}


class TestEnum:
    def test_exact_match(self):
        fields = [field("e", "enum", constraints=FieldConstraints(enum_values=("draft", "live")))]
        assert validate_and_coerce(fields, Mode.UPDATE, {"e": "live"}).ok
        assert validate_and_coerce(fields, Mode.UPDATE, {"e": "LIVE"}).errors == {"e": "enum"}

    def test_case_insensitive_returns_declared_value(self):
        c = FieldConstraints(enum_values=("Draft", "Live"), enum_case_insensitive=True)
        outcome = validate_and_coerce([field("e", "enum", constraints=c)], Mode.UPDATE, {"e": "live"})
        assert outcome.value == {"e": "Live"}


class TestRefAndArrays:
    def test_ref_requires_hex_id(self):
        fields = [field("r", "ref", ref_target="author")]
        assert validate_and_coerce(fields, Mode.UPDATE, {"r": "x"}).errors == {"r": "expected_id"}
        outcome = validate_and_coerce(fields, Mode.UPDATE, {"r": "A" * 24})
        assert outcome.value == {"r": "a" * 24}

    def test_ref_rejects_trailing_newline(self):
        fields = [field("r", "ref", ref_target="author")]
        outcome = validate_and_coerce(fields, Mode.UPDATE, {"r": "a" * 24 + "\n"})
        assert outcome.errors == {"r": "expected_id"}

    def test_array_element_failure(self):
        fields = [field("tags", array=True)]
        outcome = validate_and_coerce(fields, Mode.UPDATE, {"tags": ["ok", 3]})
        assert outcome.errors == {"tags": "invalid_element:expected_string"}

    def test_array_type_check(self):
        fields = [field("tags", array=True)]
        outcome = validate_and_coerce(fields, Mode.UPDATE, {"tags": "ok"})
        assert outcome.errors == {"tags": "expected_array"}

    def test_array_elements_coerced(self):
        fields = [field("n", "number", array=True)]
        assert validate_and_coerce(fields, Mode.UPDATE, {"n": ["1", 2]}).value == {"n": [1, 2]}


# =============================================================================
# Schema cache
# =============================================================================


class TestSchemaCache:
    def test_keyed_by_type_version_mode(self):
        cache = SchemaCache()
        v1 = DatatypeDefinition(key="post", version=1, fields=(field("title", required=True),))
        assert cache.get(v1, Mode.CREATE) is cache.get(v1, "create")
        assert cache.get(v1, Mode.CREATE) is not cache.get(v1, Mode.UPDATE)
        assert len(cache) == 2

    def test_version_bump_compiles_new_entry(self):
        cache = SchemaCache()
        v1 = DatatypeDefinition(key="post", version=1, fields=(field("title"),))
        v2 = DatatypeDefinition(
            key="post", version=2, fields=(field("title"), field("body", required=True))
        )
        first = cache.get(v1, Mode.CREATE)
        second = cache.get(v2, Mode.CREATE)
        assert first is not second
        assert first.validate({}).ok
        assert second.validate({}).errors == {"body": "required"}
        assert cache.get(v1, Mode.CREATE) is first
