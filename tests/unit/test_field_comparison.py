"""Unit tests for comparing extracted fields to expected ones."""

from formextract.processors.field_comparison import compare_fields, find_similar_labels, normalize_label
from tests.conftest import make_field


class TestCompareFields:
    def test_matched_missing_extra(self):
        expected = [make_field(label="Full Name"), make_field(label="Email address")]
        extracted = [make_field(label="full  name"), make_field(label="Signature")]

        result = compare_fields(expected, extracted)

        assert [m.expected.label for m in result.matched] == ["Full Name"]
        assert [f.label for f in result.missing] == ["Email address"]
        assert [f.label for f in result.extra] == ["Signature"]
        assert result.recall == 0.5

    def test_all_matches_collected(self):
        expected = [make_field(label="Date")]
        extracted = [make_field(label="Date", page_number=1), make_field(label="date", page_number=3)]
        result = compare_fields(expected, extracted)
        assert len(result.matched[0].extracted) == 2

    def test_empty_expected(self):
        result = compare_fields([], [make_field(label="X")])
        assert result.recall == 1.0
        assert len(result.extra) == 1


class TestSimilarLabels:
    def test_shared_significant_words(self):
        missing = [make_field(label="Emergency contact phone number")]
        extracted = [make_field(label="Phone number of emergency contact")]
        similar = find_similar_labels(missing, extracted)
        assert len(similar) == 1
        assert similar[0].common_words == ["emergency", "contact", "phone", "number"]

    def test_short_words_ignored(self):
        missing = [make_field(label="Is it a pet")]
        extracted = [make_field(label="Is it a dog")]
        assert find_similar_labels(missing, extracted) == []

    def test_needs_half_of_words(self):
        missing = [make_field(label="Primary insurance carrier policy holder name")]
        extracted = [make_field(label="Policy holder")]
        assert find_similar_labels(missing, extracted) == []

    def test_limit(self):
        missing = [make_field(label="Home street address")]
        extracted = [make_field(label=f"Home street address {n}") for n in range(20)]
        assert len(find_similar_labels(missing, extracted, limit=3)) == 3

    def test_normalize_label(self):
        assert normalize_label("  Date  OF Birth ") == "date of birth"
