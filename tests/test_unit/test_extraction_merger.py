"""
Unit Tests for Merging Per-Page Extractions
"""
import pytest

from docsearch.errors import FileProcessingError
from docsearch.models.schemas import PageExtraction, TableCell
from docsearch.services.extraction_merger import merge_pages


def _page(**kwargs) -> PageExtraction:
    return PageExtraction(**kwargs)


class TestMergePages:

    def test_single_page_is_unchanged(self):
        page = _page(
            document_type="purchase_order",
            extracted_fields={"poNumber": "PO-9"},
            confidence=0.8,
            tables=[
                TableCell(row="72", column="Pieces", value="72"),
                TableCell(row="72", column="Pallets", value="9"),
                TableCell(row="72", column="Description", value="SAP Forms"),
            ],
            raw_text="Purchase order",
        )

        result = merge_pages([page])

        assert result.document_type == "purchase_order"
        assert result.extracted_fields == {"poNumber": "PO-9"}
        assert result.confidence == 0.8
        assert [c.row for c in result.tables] == ["72", "72", "72"]
        assert result.tables[2].value == "SAP Forms"
        assert result.raw_text == "Purchase order"
        assert result.page_count == 1

    def test_multi_page_labels_rows_and_text(self):
        pages = [
            _page(tables=[TableCell(row="72", column="Pieces", value="72")], raw_text="Header text"),
            _page(tables=[TableCell(row="5", column="Pieces", value="5")], raw_text="Footer text"),
        ]

        result = merge_pages(pages)

        assert [c.row for c in result.tables] == ["72 (Page 1/2)", "5 (Page 2/2)"]
        assert result.raw_text == "=== Page 1 ===\nHeader text\n\n=== Page 2 ===\nFooter text"
        assert result.page_count == 2

    def test_row_labels_keep_original_prefix(self):
        pages = [_page(tables=[TableCell(row="Total", column="Amount", value="10")]) for _ in range(3)]

        result = merge_pages(pages)

        for number, cell in enumerate(result.tables, start=1):
            assert cell.row.startswith("Total")
            assert cell.row == f"Total (Page {number}/3)"

    def test_scalars_take_last_supplied_value(self):
        pages = [
            _page(document_type="invoice", extracted_fields={"total": "1"}, confidence=0.9),
            _page(document_type="report", confidence=0.4),
            _page(),
        ]

        result = merge_pages(pages)

        assert result.document_type == "report"
        assert result.extracted_fields == {"total": "1"}
        assert result.confidence == 0.4

    def test_defaults_when_nothing_supplied(self):
        result = merge_pages([_page(), _page()])

        assert result.document_type == "other"
        assert result.extracted_fields == {}
        assert result.confidence == 0.0
        assert result.raw_text == ""
        assert result.tables == []

    def test_empty_pages_skip_text_blocks(self):
        result = merge_pages([_page(raw_text=""), _page(raw_text="Only page two")])

        assert result.raw_text == "=== Page 2 ===\nOnly page two"

    def test_no_pages(self):
        with pytest.raises(FileProcessingError):
            merge_pages([])

    def test_adding_pages_keeps_earlier_page_order(self):
        first = _page(
            tables=[
                TableCell(row="Widget", column="Qty", value="2"),
                TableCell(row="Gadget", column="Qty", value="1"),
                TableCell(row="Widget", column="Price", value="9.99"),
            ],
            raw_text="Line items",
        )
        second = _page(tables=[TableCell(row="Total", column="Price", value="34.49")], raw_text="Totals")

        alone = merge_pages([first])
        together = merge_pages([first, second])

        leading = together.tables[: len(alone.tables)]
        assert [(c.column, c.value) for c in leading] == [(c.column, c.value) for c in alone.tables]
        assert [c.row for c in leading] == [f"{c.row} (Page 1/2)" for c in alone.tables]
        assert together.raw_text.index(alone.raw_text) < together.raw_text.index("Totals")
        assert together.raw_text.startswith(f"=== Page 1 ===\n{alone.raw_text}")
