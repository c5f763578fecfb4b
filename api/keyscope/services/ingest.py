"""
Keyword export parsing.

Exports come as CSV or XLSX with loosely named headers ("Search volume",
"search_volume", "SearchVolume", ...). Headers are matched per field against
a synonym list: exact first, then case-insensitive, then with every
non-alphanumeric character stripped. Values are cleaned here; row-level
validation errors are raised as ValueError for the upload manager to collect.

Usage:
  from keyscope.services.ingest import read_keyword_file
  rows = read_keyword_file("/tmp/keyword_uploads/rk_202507.xlsx")
"""
import csv
import os
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import openpyxl
import structlog

logger = structlog.get_logger()

SUPPORTED_EXTENSIONS = (".csv", ".xlsx")
NULL_MARKERS = {"", "n/a", "na", "-", "--", "null", "none"}
# Upper bound of the INTEGER count columns
MAX_COUNT = 2_147_483_647

COLUMN_SYNONYMS = {
    "date": ["Date", "date", "Date Range", "date_range", "daterange", "period"],
    "category": ["Category", "category", "cat", "categories"],
    "sub_category_1": ["Sub Category 1", "sub_category_1", "subCategory1", "subcategory 1"],
    "sub_category_2": ["Sub Category 2", "sub_category_2", "subCategory2", "subcategory 2"],
    "rank": ["Rank", "rank", "ranking", "#", "position"],
    "keyword": ["Keyword", "keyword", "kw", "keywords"],
    "search_volume": ["Search volume", "search_volume", "searchVolume", "volume"],
    "product_click_score": ["Product click score", "product_click_score", "productClickScore", "click score"],
    # HPK exports call this column "Opportunity score"
    "sku_sales_score": [
        "SKU sales score", "sku_sales_score", "skuSalesScore", "sales score",
        "Opportunity score", "opportunity_score", "opp score",
    ],
    "available_products": ["Available products", "available_products", "availableProducts", "available"],
    "average_price": [
        "Avg. price", "average_price", "averagePrice", "avg_price",
        "Average Price", "Avg Price", "Price",
    ],
    "ctr_score": ["CTR score", "ctr_score", "ctrScore", "ctr"],
    "ctor_score": ["CTOR score", "ctor_score", "ctorScore", "ctor"],
}

_CURRENCY = re.compile(r"[$£€¥\s]")
_DECIMAL_COMMA = re.compile(r"^-?\d+,\d{1,2}$")


class UnsupportedFileError(ValueError):
    pass


# ─── Header resolution ───

def _squash(text: str) -> str:
    return re.sub(r"[^a-z0-9]", "", text.lower())


def resolve_columns(headers: Sequence[str]) -> Dict[str, str]:
    """Map each known field to the header that carries it."""
    headers = [h for h in headers if h]
    mapping = {}
    for field, synonyms in COLUMN_SYNONYMS.items():
        for matcher in (
            lambda h, s: h == s,
            lambda h, s: h.lower() == s.lower(),
            lambda h, s: _squash(s) != "" and _squash(h) == _squash(s),
        ):
            found = next((h for s in synonyms for h in headers if matcher(h, s)), None)
            if found is not None:
                mapping[field] = found
                break
    return mapping


# ─── Value cleaning ───

def _is_null(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() in NULL_MARKERS)


def clean_label(value) -> Optional[str]:
    """Trimmed text label; None for blanks and null markers."""
    if _is_null(value):
        return None
    return str(value).strip() or None


def parse_count(value, field: str = "value") -> int:
    """Non-negative integer count; blanks count as 0."""
    if _is_null(value):
        return 0
    if isinstance(value, bool):
        raise ValueError(f"{field}: not a number")
    if isinstance(value, int):
        number = value
    else:
        text = str(value).strip().replace(",", "").replace("_", "")
        try:
            parsed = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"{field}: not a number ({value!r})")
        if not parsed.is_finite() or parsed != parsed.to_integral_value():
            raise ValueError(f"{field}: not a whole number ({value!r})")
        number = int(parsed)
    if number < 0:
        raise ValueError(f"{field}: negative ({value!r})")
    if number > MAX_COUNT:
        raise ValueError(f"{field}: too large ({value!r})")
    return number


def parse_optional_int(value, field: str = "value") -> Optional[int]:
    if _is_null(value):
        return None
    return parse_count(value, field)


def parse_score(value, field: str = "value") -> Optional[str]:
    """Decimal text for a score or price; None when absent.

    Currency symbols and thousands separators are dropped, and a single
    decimal comma ("12,99") becomes a dot.
    """
    if _is_null(value):
        return None
    if isinstance(value, bool):
        raise ValueError(f"{field}: not a number")
    text = _CURRENCY.sub("", str(value))
    if _DECIMAL_COMMA.match(text):
        text = text.replace(",", ".")
    else:
        text = text.replace(",", "")
    try:
        number = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"{field}: not a number ({value!r})")
    if not number.is_finite():
        raise ValueError(f"{field}: not a number ({value!r})")
    if len(text) > 32:
        raise ValueError(f"{field}: too long")
    return text


# ─── File readers ───

def _read_csv(path: str) -> Tuple[List[str], List[Dict[str, Any]]]:
    with open(path, "r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        headers = [h.strip() if h else h for h in (reader.fieldnames or [])]
        reader.fieldnames = headers
        return headers, list(reader)


def _read_xlsx(path: str) -> Tuple[List[str], List[Dict[str, Any]]]:
    """openpyxl read-only mode keeps large workbooks out of memory."""
    wb = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        rows_iter = wb.active.iter_rows(values_only=True)
        header_row = next(rows_iter, None) or ()
        headers = [str(h).strip() if h is not None else None for h in header_row]
        records = [{h: v for h, v in zip(headers, values) if h} for values in rows_iter]
    finally:
        wb.close()
    return headers, records


def _is_blank(record: Dict[str, Any]) -> bool:
    return all(v is None or (isinstance(v, str) and not v.strip()) for v in record.values())


def map_records(records: Iterable[Dict[str, Any]], columns: Dict[str, str]) -> List[Dict[str, Any]]:
    """Re-key raw records by field name, skipping fully blank lines."""
    mapped = []
    for record in records:
        values = {field: record.get(header) for field, header in columns.items()}
        if _is_blank(values):
            continue
        mapped.append(values)
    return mapped


def read_keyword_file(path: str) -> List[Dict[str, Any]]:
    """Read a CSV/XLSX keyword export into raw field dicts (values uncleaned)."""
    ext = os.path.splitext(path)[1].lower()
    if ext == ".csv":
        headers, records = _read_csv(path)
    elif ext == ".xlsx":
        headers, records = _read_xlsx(path)
    else:
        raise UnsupportedFileError(f"Unsupported file format: {ext}. Use .xlsx or .csv")

    columns = resolve_columns(headers)
    if "keyword" not in columns:
        raise ValueError(f"No keyword column found in {os.path.basename(path)}")

    unmapped = [h for h in headers if h and h not in columns.values()]
    if unmapped:
        logger.info("ingest: ignoring unmapped columns", columns=unmapped)

    rows = map_records(records, columns)
    logger.info("ingest: file read", file=os.path.basename(path), rows=len(rows), columns=sorted(columns))
    return rows
