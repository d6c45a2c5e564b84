from __future__ import annotations

from types import MappingProxyType

from ..models.mapping import (
    BudgetCategoryMapping,
    FieldMapping,
    FundingSourceTable,
    MappingTables,
    SourceLocation,
    ValueType,
)

"""Built-in PFMT mapping tables (PFMT v3.0 workbook layout).

Everything here is declarative. A different workbook layout is supported by
loading a YAML mapping file instead (see config.loader.load_mapping_tables);
none of the resolver/extraction code needs to change.
"""

DEFAULT_SHEET = "SP Fields"
SUMMARY_SHEET = "Summary (Rpt)"

# SP Fields sheet: column A holds the SPO field code, column B the value
SP_FIELDS_MAPPING = MappingProxyType({
    "B1": "cpd_number",  # project id
    "B2": "taf",  # SPOApprovedTPC
    "B3": "total_budget",  # SPOBudgetTotal
    "B4": "current_year_cashflow",  # SPOCashflowCurrentYearTotal
    "B5": "future_year_cashflow",  # SPOCashflowFutureYearTotal
    "B6": "eac",  # SPOEAC
    "B7": "current_year_target",  # SPOCurrentYearTargetTotal
    "B8": "current_year_proposed_target",  # SPOCurrentYearProposedTargetTotal
    "B9": "previous_years_targets",  # SPOPreviousYearsApprovedTargets
    "B10": "future_years_targets",  # SPOFutureYearsApprovedTargets
    "B11": "percent_complete_taf",  # SPOPercentCompleteTAFBudget
    "B12": "percent_complete_eac",  # SPOPercentCompleteEACBudget
    "B13": "total_cashflow",  # SPOTotalCashflow
    "B15": "total_expenditures",  # SPOTotalExpenditurestoDate
    "B16": "current_fiscal_year_actuals",  # SPOCurrentFiscalYearActuals
    "B17": "previous_years_cashflow",  # SPOCashflowPreviousYearsTotal
    "B18": "current_year_budget_target",  # SPOCurrentYearBudgetTarget
})

# project information spread over the report sheets
PROJECT_INFO_MAPPING = MappingProxyType({
    "Validations!C6": "project_name",
    "Validations!C9": "project_description",
    "Validations!C16": "geographic_region",
    "Target Tracking!B4": "pfmt_data_date",  # "As of" date
    "Prime Cont. Summary!B3": "prime_contractor",
    "Prime Cont. Summary!C2": "delivery_method",
})

# tried in order when the primary cell is blank or malformed
ALTERNATIVES = MappingProxyType({
    "project_name": ("Target Tracking!B3",),
    "project_description": ("Validations!D9",),
    "geographic_region": ("Validations!D16",),
})

# secondary chain for identity fields, consulted after the alternatives
ALTERNATIVE_MAPPINGS = MappingProxyType({
    "project_name": (
        "Summary (Rpt)!B2",
        "Summary (Rpt)!A1",
        "Budget Details (Rpt)!B1",
        "Budget Details (Rpt)!A1",
    ),
    "project_description": ("Validations!B33",),
})

FIELD_VALUE_TYPES = MappingProxyType({
    "cpd_number": ValueType.TEXT,
    "taf": ValueType.CURRENCY,
    "total_budget": ValueType.CURRENCY,
    "current_year_cashflow": ValueType.CURRENCY,
    "future_year_cashflow": ValueType.CURRENCY,
    "eac": ValueType.CURRENCY,
    "current_year_target": ValueType.CURRENCY,
    "current_year_proposed_target": ValueType.CURRENCY,
    "previous_years_targets": ValueType.CURRENCY,
    "future_years_targets": ValueType.CURRENCY,
    "percent_complete_taf": ValueType.PERCENTAGE,
    "percent_complete_eac": ValueType.PERCENTAGE,
    "total_cashflow": ValueType.CURRENCY,
    "total_expenditures": ValueType.CURRENCY,
    "current_fiscal_year_actuals": ValueType.CURRENCY,
    "previous_years_cashflow": ValueType.CURRENCY,
    "current_year_budget_target": ValueType.CURRENCY,
    "project_name": ValueType.TEXT,
    "project_description": ValueType.TEXT,
    "geographic_region": ValueType.TEXT,
    "pfmt_data_date": ValueType.TEXT,
    "prime_contractor": ValueType.TEXT,
    "delivery_method": ValueType.TEXT,
})

# (category key, summary sheet row); columns C/D/E hold label/budget/amendments
BUDGET_CATEGORY_ROWS = (
    ("administration", 6),
    ("professional_services", 7),
    ("construction", 8),
    ("fe_it", 9),
    ("land", 10),
    ("management_reserve", 11),
)

DEFAULT_VALUES = MappingProxyType({
    "project_category": "Infrastructure",
    "client_ministry": "Infrastructure",
    "project_type": "New Construction",
    "delivery_type": "Design-Bid-Build",
    "delivery_method": "Traditional",
    "building_type": "Office",
})

# canonical extraction names that differ from the project entity attribute
ENTITY_ALIASES = MappingProxyType({
    "taf": "approved_tpc",
    "total_expenditures": "amount_spent",
})

# "Field" / "Value" are the header captions of the key/value report sheets
BLANK_SENTINELS = frozenset({"--", "N/A", "Field", "Value"})

REQUIRED_SHEETS = (DEFAULT_SHEET,)

FUNDING_SOURCES = FundingSourceTable(
    sheet="SP Fund Src", label_column="A", amount_column="B", first_row=2, last_row=10
)


def _field_mapping(field: str, ref: str) -> FieldMapping:
    alternatives = tuple(
        SourceLocation.parse(alt, DEFAULT_SHEET) for alt in ALTERNATIVES.get(field, ())
    )
    return FieldMapping(
        field=field,
        primary=SourceLocation.parse(ref, DEFAULT_SHEET),
        value_type=FIELD_VALUE_TYPES[field],
        alternatives=alternatives,
    )


def _budget_category(key: str, row: int) -> BudgetCategoryMapping:
    def cell(column: str, suffix: str, value_type: ValueType) -> FieldMapping:
        return FieldMapping(
            field=f"{key}_{suffix}",
            primary=SourceLocation(SUMMARY_SHEET, f"{column}{row}"),
            value_type=value_type,
        )

    return BudgetCategoryMapping(
        key=key,
        label=cell("C", "category", ValueType.TEXT),
        budget=cell("D", "budget", ValueType.CURRENCY),
        amendments=cell("E", "amendments", ValueType.CURRENCY),
    )


def build_default_tables() -> MappingTables:
    """Assemble the built-in PFMT v3.0 mapping tables."""
    return MappingTables(
        tables={
            "sp_fields": tuple(_field_mapping(f, ref) for ref, f in SP_FIELDS_MAPPING.items()),
            "project_info": tuple(_field_mapping(f, ref) for ref, f in PROJECT_INFO_MAPPING.items()),
        },
        budget_categories=tuple(_budget_category(k, row) for k, row in BUDGET_CATEGORY_ROWS),
        identity_fallbacks={
            f: tuple(SourceLocation.parse(ref, DEFAULT_SHEET) for ref in refs)
            for f, refs in ALTERNATIVE_MAPPINGS.items()
        },
        defaults=DEFAULT_VALUES,
        entity_aliases=ENTITY_ALIASES,
        blank_sentinels=BLANK_SENTINELS,
        required_sheets=REQUIRED_SHEETS,
        funding_sources=FUNDING_SOURCES,
    )
