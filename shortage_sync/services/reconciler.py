"""
Record Reconciler
Maps upstream payloads onto store rows and defines the merge rules used on conflict.

Merge fields are written as COALESCE(new, stored) so a known value is never
blanked by a sparse payload. Authoritative fields always take the new value.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional

import structlog
from dateutil import parser as date_parser

from shortage_sync.models.statuses import CatalogStatus, ReportStatus, ReportType

logger = structlog.get_logger(__name__)

PRODUCT_CODE_LENGTH = 8

# Catalog job: every column it publishes is overwritten, except where null
CATALOG_MERGE_FIELDS = (
    "drug_code",
    "brand_name",
    "brand_name_fr",
    "active_ingredient",
    "strength",
    "strength_unit",
    "number_of_ais",
    "ai_group_no",
    "dosage_form",
    "route",
    "atc_code",
    "atc_description",
    "company",
)
CATALOG_AUTHORITATIVE_FIELDS = ("market_status", "catalog_last_updated")

# Reports job: on conflict only fills what the catalog provider never publishes
REPORT_ENTRY_MERGE_FIELDS = (
    "common_name",
    "common_name_fr",
    "active_ingredient_fr",
    "dosage_form_fr",
    "route_fr",
)

REPORT_MERGE_FIELDS = (
    "product_code",
    "brand_name",
    "brand_name_fr",
    "common_name",
    "common_name_fr",
    "ingredients",
    "ingredients_fr",
    "drug_strength",
    "dosage_form",
    "dosage_form_fr",
    "route",
    "route_fr",
    "packaging_size",
    "reason_en",
    "reason_fr",
    "atc_code",
    "atc_description",
    "company",
)
REPORT_AUTHORITATIVE_FIELDS = (
    "report_type",
    "status",
    "anticipated_start_date",
    "actual_start_date",
    "estimated_end_date",
    "actual_end_date",
    "anticipated_discontinuation_date",
    "discontinuation_date",
    "tier3",
    "late_submission",
    "decision_reversal",
    "api_created_date",
    "api_updated_date",
    "raw_json",
)

_KNOWN_STATUSES = {status.value for status in ReportStatus}


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an upstream date or timestamp into a UTC-aware datetime.

    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        return as_utc(date_parser.parse(str(value)))
    except (ValueError, OverflowError):
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def valid_product_code(code: Any) -> bool:
    """Product codes are exactly eight characters"""
    return isinstance(code, str) and len(code) == PRODUCT_CODE_LENGTH


def map_report_type(label: Any) -> str:
    if isinstance(label, dict):
        label = label.get("label")
    if label == "discontinuance":
        return ReportType.discontinuation.value
    return ReportType.shortage.value


def map_report_status(status: Any) -> str:
    if status in _KNOWN_STATUSES:
        return status
    logger.warning("unknown_report_status", status=status, mapped_to=ReportStatus.resolved.value)
    return ReportStatus.resolved.value


def map_report(payload: dict) -> dict:
    """Reports provider payload -> event_reports row"""
    report_type = map_report_type(payload.get("type"))
    if report_type == ReportType.discontinuation.value:
        reason = payload.get("discontinuance_reason") or {}
    else:
        reason = payload.get("shortage_reason") or {}

    return {
        "report_id": int(payload["id"]),
        "product_code": _text(payload.get("din")),
        "report_type": report_type,
        "status": map_report_status(payload.get("status")),
        "company": _text(payload.get("company_name")),
        "brand_name": _text(payload.get("en_drug_brand_name")),
        "brand_name_fr": _text(payload.get("fr_drug_brand_name")),
        "common_name": _text(payload.get("en_drug_common_name")),
        "common_name_fr": _text(payload.get("fr_drug_common_name")),
        "ingredients": _text(payload.get("en_ingredients")),
        "ingredients_fr": _text(payload.get("fr_ingredients")),
        "drug_strength": _text(payload.get("drug_strength")),
        "dosage_form": _text(payload.get("drug_dosage_form")),
        "dosage_form_fr": _text(payload.get("drug_dosage_form_fr")),
        "route": _text(payload.get("drug_route")),
        "route_fr": _text(payload.get("drug_route_fr")),
        "packaging_size": _text(payload.get("drug_package_quantity")),
        "atc_code": _text(payload.get("atc_number")),
        "atc_description": _text(payload.get("atc_description")),
        "reason_en": _text(reason.get("en_reason")),
        "reason_fr": _text(reason.get("fr_reason")),
        "anticipated_start_date": parse_datetime(payload.get("anticipated_start_date")),
        "actual_start_date": parse_datetime(payload.get("actual_start_date")),
        "estimated_end_date": parse_datetime(payload.get("estimated_end_date")),
        "actual_end_date": parse_datetime(payload.get("actual_end_date")),
        "anticipated_discontinuation_date": parse_datetime(payload.get("anticipated_discontinuation_date")),
        "discontinuation_date": parse_datetime(payload.get("discontinuation_date")),
        "tier3": bool(payload.get("tier_3") or False),
        "late_submission": bool(payload.get("late_submission") or False),
        "decision_reversal": bool(payload.get("decision_reversal") or False),
        "api_created_date": parse_datetime(payload.get("created_date")),
        "api_updated_date": parse_datetime(payload.get("updated_date")),
        "raw_json": payload,
    }


def map_report_entry(payload: dict) -> Optional[dict]:
    """
    Reports provider payload -> catalog_entries row, or None without a product code.

    The nested drug object wins over the report's own denormalized fields.
    """
    drug = payload.get("drug") or {}
    product_code = _text(payload.get("din")) or _text(drug.get("din"))
    if not product_code:
        return None

    ingredients = drug.get("drug_ingredients") or []
    first = ingredients[0] if ingredients else {}
    ingredient = first.get("ingredient") or {}
    company = drug.get("company") or {}

    return {
        "product_code": product_code,
        "drug_code": _int(drug.get("drug_code")),
        "brand_name": _text(drug.get("brand_name")) or _text(payload.get("en_drug_brand_name")),
        "brand_name_fr": _text(drug.get("brand_name_fr")) or _text(payload.get("fr_drug_brand_name")),
        "common_name": _text(payload.get("en_drug_common_name")),
        "common_name_fr": _text(payload.get("fr_drug_common_name")),
        "active_ingredient": _text(ingredient.get("en_name")),
        "active_ingredient_fr": _text(ingredient.get("fr_name")),
        "strength": _text(first.get("strength")),
        "strength_unit": _text(first.get("strength_unit")),
        "number_of_ais": _int(drug.get("number_of_ais")),
        "ai_group_no": _text(drug.get("ai_group_no")),
        "dosage_form": _text(payload.get("drug_dosage_form")),
        "dosage_form_fr": _text(payload.get("drug_dosage_form_fr")),
        "route": _text(payload.get("drug_route")),
        "route_fr": _text(payload.get("drug_route_fr")),
        "atc_code": _text(payload.get("atc_number")),
        "atc_description": _text(payload.get("atc_description")),
        "company": _text(company.get("name")) or _text(payload.get("company_name")),
        "market_status": _text(drug.get("current_status")),
        "current_status": CatalogStatus.available.value,
        "has_reports": True,
    }


def map_catalog_entry(listing_item: dict, details: dict) -> dict:
    """Catalog listing item plus its detail sub-resources -> catalog_entries row"""
    ingredients = details.get("ingredients") or []
    forms = details.get("forms") or []
    routes = details.get("routes") or []
    therapeutics = details.get("therapeutics") or []

    ingredient = ingredients[0] if ingredients else {}
    form = forms[0] if forms else {}
    route = routes[0] if routes else {}
    therapeutic = therapeutics[0] if therapeutics else {}

    return {
        "product_code": listing_item["drug_identification_number"],
        "drug_code": _int(listing_item.get("drug_code")),
        "brand_name": _text(listing_item.get("brand_name")),
        "brand_name_fr": _text(listing_item.get("brand_name_f")),
        "active_ingredient": _text(ingredient.get("ingredient_name")),
        "strength": _text(ingredient.get("strength")),
        "strength_unit": _text(ingredient.get("strength_unit")),
        "number_of_ais": _int(listing_item.get("number_of_ais")) or 1,
        "ai_group_no": _text(listing_item.get("ai_group_no")),
        "dosage_form": _text(form.get("pharmaceutical_form_name")),
        "route": _text(route.get("route_of_administration_name")),
        "atc_code": _text(therapeutic.get("tc_atc_number")),
        "atc_description": _text(therapeutic.get("tc_atc")),
        "company": _text(listing_item.get("company_name")),
        "market_status": details.get("status"),
        "catalog_last_updated": parse_datetime(listing_item.get("last_update_date")),
    }


def dedupe_by_key(records: Iterable[dict], key: Callable[[dict], Hashable], label: str = "records") -> List[dict]:
    """
    Keep the first record for each identifier; later duplicates are dropped.

    A single upsert statement cannot touch the same row twice, so this runs
    before every batch write.
    """
    seen: Dict[Hashable, bool] = {}
    unique = []
    dropped = 0
    for record in records:
        identifier = key(record)
        if identifier in seen:
            dropped += 1
            continue
        seen[identifier] = True
        unique.append(record)

    if dropped:
        logger.warning("duplicates_dropped", kind=label, dropped=dropped, kept=len(unique))
    return unique


def filter_listing(listing: Iterable[dict]) -> List[dict]:
    """Listing items with a valid product code, deduplicated by product code"""
    valid = []
    invalid = 0
    for item in listing:
        if valid_product_code(item.get("drug_identification_number")):
            valid.append(item)
        else:
            invalid += 1
    if invalid:
        logger.info("invalid_product_codes_skipped", skipped=invalid)
    return dedupe_by_key(valid, lambda item: item["drug_identification_number"], label="listing")
