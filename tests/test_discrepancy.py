"""Tests for the discrepancy calculator."""

from types import SimpleNamespace

import pytest

from receiving_sync.services.discrepancy import (
    LINE_FILTERS,
    combine,
    combine_by_item_number,
    discrepancy,
    index_expected,
    only_discrepancies,
    only_overages,
    only_shortages,
    summarize,
)


def expected(upc, qty, document_id=None, item_number="", description=""):
    return SimpleNamespace(
        upc=upc,
        qty_expected=qty,
        document_id=document_id,
        item_number=item_number,
        legacy_item_number=None,
        description=description,
    )


def received(upc, qty, document_id=None, scanned_by=()):
    return SimpleNamespace(
        upc=upc,
        qty_received=qty,
        document_id=document_id,
        scanned_by=scanned_by,
        scanned_by_username=None,
        scanned_by_name=None,
        last_updated=None,
    )


@pytest.mark.parametrize("q, e, d", [(70, 100, -30), (5, 0, 5), (10, 10, 0), (0, 3, -3)])
def test_discrepancy_is_received_minus_expected(q, e, d):
    assert discrepancy(q, e) == d


class TestCombine:
    """Combined expected + received view."""

    def test_never_scanned_item_is_shortage(self):
        lines = combine([expected("123", 100)], [])

        assert len(lines) == 1
        assert lines[0].qty_received == 0
        assert lines[0].discrepancy == -100
        assert lines[0].is_shortage

    def test_unexpected_scan_is_overage(self):
        lines = combine([expected("123", 100)], [received("999", 5)])

        unexpected = [line for line in lines if not line.expected]
        assert len(unexpected) == 1
        assert unexpected[0].upc == "999"
        assert unexpected[0].qty_expected == 0
        assert unexpected[0].discrepancy == 5

    def test_manifest_lines_first_then_unexpected(self):
        lines = combine(
            [expected("2", 1), expected("1", 1)],
            [received("9", 1), received("1", 1)],
        )

        assert [line.upc for line in lines] == ["2", "1", "9"]

    def test_each_key_appears_once(self):
        lines = combine(
            [expected("400", 10, "A"), expected("400", 5, "B"), expected("400", 2, "A")],
            [received("400", 3, "A"), received("400", 1, None)],
        )

        keys = [(line.upc, line.document_id) for line in lines]
        assert len(keys) == len(set(keys))
        assert keys == [("400", "A"), ("400", "B"), ("400", None)]
        # Duplicate manifest lines for one key are summed
        assert lines[0].qty_expected == 12

    def test_sum_of_discrepancies_matches_totals(self):
        lines = combine(
            [expected("1", 10), expected("2", 4), expected("3", 7, "D")],
            [received("1", 12), received("3", 2, "D"), received("8", 6)],
        )
        summary = summarize(lines)

        assert sum(line.discrepancy for line in lines) == summary.total_received - summary.total_expected
        assert summary.total_discrepancy == summary.total_received - summary.total_expected

    def test_document_ids_match_with_empty_string_as_none(self):
        lines = combine([expected("1", 3, None)], [received("1", 3, "")])

        assert len(lines) == 1
        assert lines[0].discrepancy == 0

    def test_provenance_copied(self):
        lines = combine([expected("1", 3)], [received("1", 1, scanned_by=["A", "B"])])

        assert lines[0].scanned_by == ("A", "B")


class TestSummary:
    def test_counts(self):
        lines = combine(
            [expected("over", 1), expected("short", 5), expected("match", 2)],
            [received("over", 3), received("short", 1), received("match", 2), received("extra", 1)],
        )
        summary = summarize(lines)

        assert summary.line_count == 4
        assert summary.overage_count == 2
        assert summary.shortage_count == 1
        assert summary.match_count == 1
        assert summary.unexpected_count == 1
        assert summary.total_expected == 8
        assert summary.total_received == 7
        assert summary.total_discrepancy == -1

    def test_empty(self):
        summary = summarize([])

        assert summary.line_count == 0
        assert summary.total_discrepancy == 0


class TestFilters:
    @pytest.fixture
    def lines(self):
        return combine(
            [expected("over", 1), expected("short", 5), expected("match", 2)],
            [received("over", 3), received("short", 1), received("match", 2)],
        )

    def test_filters(self, lines):
        assert [line.upc for line in only_discrepancies(lines)] == ["over", "short"]
        assert [line.upc for line in only_overages(lines)] == ["over"]
        assert [line.upc for line in only_shortages(lines)] == ["short"]

    def test_filter_registry(self, lines):
        assert LINE_FILTERS["all"](lines) == lines
        assert LINE_FILTERS["shortages"](lines) == only_shortages(lines)


class TestCombineByItemNumber:
    def test_folds_across_documents(self):
        lines = combine(
            [
                expected("400", 10, "A", item_number="1000001"),
                expected("400", 5, "B", item_number="1000001"),
                expected("401", 4, "A", item_number="1000002"),
            ],
            [received("400", 8, "A", ["X"]), received("400", 5, "B", ["Y"])],
        )

        folded = combine_by_item_number(lines)

        assert len(folded) == 2
        knife = folded[0]
        assert knife.item_number == "1000001"
        assert knife.document_id is None
        assert knife.qty_expected == 15
        assert knife.qty_received == 13
        assert knife.discrepancy == -2
        assert knife.scanned_by == ("X", "Y")

    def test_unexpected_lines_fold_by_upc(self):
        lines = combine([], [received("9", 1, "A"), received("9", 2, "B"), received("8", 1)])

        folded = combine_by_item_number(lines)

        assert [(line.upc, line.qty_received) for line in folded] == [("9", 3), ("8", 1)]


def test_index_expected_uses_first_line_for_descriptions():
    index = index_expected(
        [expected("1", 2, item_number="A", description="first"), expected("1", 3, description="second")]
    )

    assert index[("1", "")].qty_expected == 5
    assert index[("1", "")].description == "first"
