import pytest

from upload_pipeline.topic.filters import FilterConstraint, SubscriptionFilter, matches


class TestFilterConstraint:
    def test_empty_attribute_rejected(self):
        with pytest.raises(ValueError):
            FilterConstraint("", frozenset({"a"}))

    def test_empty_allowed_values_rejected(self):
        with pytest.raises(ValueError, match="allows no values"):
            FilterConstraint("metadata_type", frozenset())

    def test_bare_string_values_rejected(self):
        with pytest.raises(TypeError, match="collection of strings"):
            FilterConstraint("metadata_type", "Caption")

    def test_values_normalized_to_frozenset(self):
        constraint = FilterConstraint("metadata_type", ["Caption", "Date"])
        assert constraint.allowed_values == frozenset({"Caption", "Date"})

    def test_satisfied_by(self):
        constraint = FilterConstraint("event_kind", frozenset({"UPLOAD_CREATED"}))
        assert constraint.satisfied_by({"event_kind": "UPLOAD_CREATED"})
        assert not constraint.satisfied_by({"event_kind": "UPLOAD_REMOVED"})
        assert not constraint.satisfied_by({})


class TestSubscriptionFilter:
    def test_empty_filter_matches_everything(self):
        assert SubscriptionFilter().matches({})
        assert SubscriptionFilter.match_all().matches({"anything": "at all"})

    def test_value_in_allowed_set(self):
        f = SubscriptionFilter.where(metadata_type=["Caption", "Date", "Photographer"])
        assert f.matches({"metadata_type": "Caption"})
        assert f.matches({"metadata_type": "Photographer", "extra": "ignored"})

    def test_value_outside_allowed_set(self):
        f = SubscriptionFilter.where(metadata_type=["Caption"])
        assert not f.matches({"metadata_type": "Location"})

    def test_missing_attribute_never_matches(self):
        f = SubscriptionFilter.where(metadata_type=["Caption"])
        assert not f.matches({"event_kind": "METADATA_SET"})

    def test_values_are_case_sensitive(self):
        f = SubscriptionFilter.where(metadata_type=["Caption"])
        assert not f.matches({"metadata_type": "caption"})

    def test_every_constraint_must_hold(self):
        f = SubscriptionFilter.where(event_kind=["UPLOAD_CREATED"], bucket=["photos"])
        assert f.matches({"event_kind": "UPLOAD_CREATED", "bucket": "photos"})
        assert not f.matches({"event_kind": "UPLOAD_CREATED", "bucket": "other"})

    def test_bare_string_rejected_by_where(self):
        with pytest.raises(TypeError, match="metadata_type"):
            SubscriptionFilter.where(metadata_type="Caption")

    def test_single_value_in_list_matches(self):
        f = SubscriptionFilter.where(metadata_type=["Caption"])
        assert f.describe() == {"metadata_type": ["Caption"]}
        assert f.matches({"metadata_type": "Caption"})

    def test_any_iterable_of_values_accepted(self):
        f = SubscriptionFilter.where(event_kind=(k for k in ("UPLOAD_CREATED", "UPLOAD_REMOVED")))
        assert f.matches({"event_kind": "UPLOAD_REMOVED"})

    def test_describe(self):
        f = SubscriptionFilter.where(metadata_type=["Date", "Caption"])
        assert f.describe() == {"metadata_type": ["Caption", "Date"]}

    def test_module_level_matches(self):
        f = SubscriptionFilter.where(event_kind=["UPLOAD_REMOVED"])
        assert matches(f, {"event_kind": "UPLOAD_REMOVED"})
        assert not matches(f, {"event_kind": "UPLOAD_CREATED"})
