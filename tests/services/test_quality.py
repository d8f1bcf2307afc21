"""Tests for QualityScorer."""

from crm_migration.models.schema import FieldMapping, ParsedField
from crm_migration.services.quality import QualityScorer, count_duplicate_rows


class TestQualityScorer:
    """Test suite for data-quality scoring."""

    def test_clean_data_scores_full(self):
        records = [{"name": "Acme"}, {"name": "Globex"}]
        score, warnings = QualityScorer().score(records, [ParsedField(name="name")])

        assert score == 100
        assert warnings == []

    def test_no_records_scores_zero(self):
        score, warnings = QualityScorer().score([], [])

        assert score == 0
        assert warnings == ["File contains no records"]

    def test_sparse_fields_are_penalized(self):
        records = [{"name": "Acme", "email": None, "phone": None}, {"name": "Globex", "email": None, "phone": "1"}]
        fields = [
            ParsedField(name="name"),
            ParsedField(name="email", null_rate=1.0),
            ParsedField(name="phone", null_rate=0.3),
        ]
        score, warnings = QualityScorer().score(records, fields)

        assert score == 100 - 10 - 5
        assert warnings == ['Field "email" is empty in 100% of records']

    def test_mixed_types_are_penalized(self):
        records = [{"code": 1}, {"code": "a"}]
        score, warnings = QualityScorer().score(records, [ParsedField(name="code", mixed_types=True)])

        assert score == 97
        assert 'Field "code" mixes values of different types' in warnings

    def test_duplicate_rows_are_penalized(self):
        records = [{"name": "Acme"}, {"name": "Acme"}, {"name": "Globex"}, {"name": "Initech"}]
        score, warnings = QualityScorer().score(records, [ParsedField(name="name")])

        assert score == 85
        assert "Found 1 duplicate records" in warnings

    def test_score_never_negative(self):
        records = [{"a": None}] * 10
        fields = [ParsedField(name=f"f{i}", null_rate=1.0, mixed_types=True) for i in range(20)]
        score, _ = QualityScorer().score(records, fields)

        assert score == 0

    def test_recommendations(self):
        fields = [ParsedField(name="name"), ParsedField(name="misc")]
        mappings = [FieldMapping(source_field="name", target_field="name", confidence=0.4)]
        recommendations = QualityScorer().recommendations(fields, mappings)

        assert len(recommendations) == 2


def test_count_duplicate_rows_ignores_key_order():
    assert count_duplicate_rows([{"a": 1, "b": 2}, {"b": 2, "a": 1}, {"a": 2}]) == 1
