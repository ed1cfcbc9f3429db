from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .utils import percent_of


Category = Literal["materials", "labour", "equipment"]
ScheduleType = Literal["material", "labour", "equipment", "all"]
ExportFormat = Literal["csv", "excel", "pdf", "html"]
ConflictResolution = Literal["skip", "merge", "overwrite"]
RateSource = Literal["project", "catalog", "default"]

CATEGORIES: tuple[str, ...] = ("materials", "labour", "equipment")


# --- Configuration -----------------------------------------------------------


class Settings(BaseModel):
    currency_symbol: str = "$"
    hours_per_day: float = 8.0
    default_cache_ttl_seconds: float = 300.0
    schedule_cache_ttl_seconds: float = 180.0
    default_productivity_factor: float = 1.0
    default_utilization_factor: float = 0.75
    source_label_length: int = 50


# --- Library hierarchy and catalogues ----------------------------------------


class Division(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None


class Section(BaseModel):
    id: str
    code: str
    name: str
    division_id: str
    description: Optional[str] = None


class Assembly(BaseModel):
    id: str
    code: str
    name: str
    section_id: str
    description: Optional[str] = None


class LibraryItem(BaseModel):
    id: str
    code: str
    name: str
    unit: str = ""
    assembly_id: Optional[str] = None
    description: Optional[str] = None
    specifications: Optional[str] = None
    wastage_percentage: Optional[float] = None
    status: Literal["draft", "complete", "confirmed", "actual"] = "confirmed"
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None
    confirmation_notes: Optional[str] = None


class LibraryItemPath(BaseModel):
    """A library item with its full division/section/assembly ancestry."""

    item: LibraryItem
    assembly: Assembly
    section: Section
    division: Division

    @property
    def path(self) -> str:
        return f"{self.division.code}.{self.section.code}.{self.assembly.code}.{self.item.code}"


class MaterialCatalogueEntry(BaseModel):
    id: str
    code: str
    name: str
    unit: str = ""
    category: Optional[str] = None
    rate: float = 0.0


class LabourCatalogueEntry(BaseModel):
    id: str
    code: str
    name: str
    trade: Optional[str] = None
    skill_level: Optional[str] = None
    rate: float = 0.0  # per hour


class EquipmentCatalogueEntry(BaseModel):
    id: str
    code: str
    name: str
    category: Optional[str] = None
    capacity: Optional[str] = None
    rate: float = 0.0  # per hour


class MaterialFactor(BaseModel):
    id: Optional[str] = None
    library_item_id: str
    material_catalogue_id: str
    quantity_per_unit: float = 0.0
    wastage_percentage: Optional[float] = None
    unit: Optional[str] = None


class LabourFactor(BaseModel):
    id: Optional[str] = None
    library_item_id: str
    labour_catalogue_id: str
    hours_per_unit: float = 0.0
    productivity_factor: Optional[float] = None


class EquipmentFactor(BaseModel):
    id: Optional[str] = None
    library_item_id: str
    equipment_catalogue_id: str
    hours_per_unit: float = 0.0
    utilization_factor: Optional[float] = None


# --- Projects and rates ------------------------------------------------------


class Project(BaseModel):
    id: str
    name: str


class ProjectRates(BaseModel):
    id: Optional[str] = None
    project_id: str
    materials: Dict[str, float] = Field(default_factory=dict)
    labour: Dict[str, float] = Field(default_factory=dict)
    equipment: Dict[str, float] = Field(default_factory=dict)
    effective_date: date = Field(default_factory=date.today)
    expiry_date: Optional[date] = None
    created_by: Optional[str] = None

    def for_category(self, category: str) -> Dict[str, float]:
        return getattr(self, category)


class EffectiveRate(BaseModel):
    item_code: str
    category: Category
    rate: float
    source: RateSource
    effective_date: date
    project_rate: Optional[float] = None
    catalog_rate: Optional[float] = None


class RateValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class RateImportResult(BaseModel):
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    details: Dict[str, int] = Field(default_factory=lambda: {c: 0 for c in CATEGORIES})
    warnings: List[str] = Field(default_factory=list)


class RateComparison(BaseModel):
    item_code: str
    item_name: str
    category: Category
    source_rate: float
    target_rate: float
    difference: float
    percentage_change: float
    action: Literal["add", "update", "remove", "unchanged"]


class RateStatistics(BaseModel):
    project_id: str
    total_rates: int
    category_breakdown: Dict[str, int]
    average_rates: Dict[str, float]
    last_updated: Optional[date] = None


class RateUpdate(BaseModel):
    category: Category
    item_code: str
    rate: float


# --- Factor calculation results ----------------------------------------------


class FactorCalculationOptions(BaseModel):
    use_project_rates: bool = True
    include_wastage: bool = True
    include_productivity: bool = False
    include_utilization: bool = False
    round_to_decimals: Optional[int] = None


class MaterialFactorLine(BaseModel):
    material_id: str
    material_code: str
    material_name: str
    quantity: float  # per unit of the library item
    wastage_percentage: float
    effective_quantity: float
    rate: float
    rate_source: RateSource
    cost: float
    unit: str = ""


class LabourFactorLine(BaseModel):
    labour_id: str
    labour_code: str
    labour_name: str
    hours: float  # per unit of the library item
    productivity_factor: float
    effective_hours: float
    rate: float
    rate_source: RateSource
    cost: float
    unit: str = "hour"


class EquipmentFactorLine(BaseModel):
    equipment_id: str
    equipment_code: str
    equipment_name: str
    hours: float  # per unit of the library item
    utilization_factor: float
    effective_hours: float
    rate: float
    rate_source: RateSource
    cost: float
    unit: str = "hour"


class MaterialCost(BaseModel):
    total: float = 0.0
    factors: List[MaterialFactorLine] = Field(default_factory=list)


class LabourCost(BaseModel):
    total: float = 0.0
    factors: List[LabourFactorLine] = Field(default_factory=list)


class EquipmentCost(BaseModel):
    total: float = 0.0
    factors: List[EquipmentFactorLine] = Field(default_factory=list)


class CostSummary(BaseModel):
    material_cost: float
    material_percentage: float
    labour_cost: float
    labour_percentage: float
    equipment_cost: float
    equipment_percentage: float
    total_cost: float


class FactorCalculationResult(BaseModel):
    library_item_id: str
    library_item_code: str
    library_item_name: str
    quantity: float
    unit: str
    materials: MaterialCost = Field(default_factory=MaterialCost)
    labour: LabourCost = Field(default_factory=LabourCost)
    equipment: EquipmentCost = Field(default_factory=EquipmentCost)
    total_cost: float = 0.0
    rate_per_unit: float = 0.0

    @property
    def breakdown(self) -> Dict[str, List[Dict[str, Any]]]:
        return {
            "materials": [f.model_dump() for f in self.materials.factors],
            "labour": [f.model_dump() for f in self.labour.factors],
            "equipment": [f.model_dump() for f in self.equipment.factors],
        }

    def summary(self) -> CostSummary:
        return CostSummary(
            material_cost=self.materials.total,
            material_percentage=percent_of(self.materials.total, self.total_cost),
            labour_cost=self.labour.total,
            labour_percentage=percent_of(self.labour.total, self.total_cost),
            equipment_cost=self.equipment.total,
            equipment_percentage=percent_of(self.equipment.total, self.total_cost),
            total_cost=self.total_cost,
        )


class BulkItemRequest(BaseModel):
    library_item_id: str
    quantity: float = 1.0


# --- Schedules ----------------------------------------------------------------


class _ScheduleRow(BaseModel):
    project_id: str
    project_name: str = ""
    source_items: List[str] = Field(default_factory=list)
    source_item_count: int = 0
    calculated_at: datetime = Field(default_factory=datetime.now)


class MaterialScheduleItem(_ScheduleRow):
    material_id: str
    material_code: str
    material_name: str
    material_unit: str = ""
    material_category: Optional[str] = None
    base_quantity: float = 0.0
    wastage_factor: float = 1.0
    total_quantity_with_wastage: float = 0.0
    unit_rate_market: float = 0.0
    total_amount_market: float = 0.0


class LabourScheduleItem(_ScheduleRow):
    labour_id: str
    labour_code: str
    labour_name: str
    labour_trade: Optional[str] = None
    skill_level: Optional[str] = None
    total_hours_raw: float = 0.0
    productivity_factor: float = 1.0
    adjusted_hours: float = 0.0
    rate_standard: float = 0.0
    total_amount_standard: float = 0.0
    total_days: int = 0


class EquipmentScheduleItem(_ScheduleRow):
    equipment_id: str
    equipment_code: str
    equipment_name: str
    equipment_category: Optional[str] = None
    capacity: Optional[str] = None
    base_hours: float = 0.0
    utilization_factor: float = 0.75
    billable_hours: float = 0.0
    rate_rental: float = 0.0
    total_amount_rental: float = 0.0
    total_days: int = 0


class MaterialCategoryTotal(BaseModel):
    items: int = 0
    cost: float = 0.0


class TradeTotal(BaseModel):
    hours: float = 0.0
    cost: float = 0.0
    workers: int = 0


class EquipmentCategoryTotal(BaseModel):
    hours: float = 0.0
    cost: float = 0.0
    units: int = 0


class MaterialSummary(BaseModel):
    total_items: int = 0
    total_cost: float = 0.0
    by_category: Dict[str, MaterialCategoryTotal] = Field(default_factory=dict)


class LabourSummary(BaseModel):
    total_hours: float = 0.0
    total_days: int = 0
    total_cost: float = 0.0
    by_trade: Dict[str, TradeTotal] = Field(default_factory=dict)


class EquipmentSummary(BaseModel):
    total_hours: float = 0.0
    total_days: int = 0
    total_cost: float = 0.0
    by_category: Dict[str, EquipmentCategoryTotal] = Field(default_factory=dict)


class ScheduleSummary(BaseModel):
    materials: MaterialSummary = Field(default_factory=MaterialSummary)
    labour: LabourSummary = Field(default_factory=LabourSummary)
    equipment: EquipmentSummary = Field(default_factory=EquipmentSummary)
    grand_total: float = 0.0
    last_updated: datetime = Field(default_factory=datetime.now)


# --- Estimates ------------------------------------------------------------------


class EstimateStructure(BaseModel):
    id: str
    project_id: str
    name: str


class EstimateElement(BaseModel):
    id: str
    project_id: str
    structure_id: str
    name: str
    code: str
    hierarchy_level: int
    parent_element_id: Optional[str] = None
    description: Optional[str] = None
    library_division_id: Optional[str] = None
    library_section_id: Optional[str] = None
    library_assembly_id: Optional[str] = None
    library_code: Optional[str] = None
    library_path: Optional[str] = None
    is_from_library: bool = False
    created_by: Optional[str] = None


class EstimateDetailItem(BaseModel):
    id: str
    project_id: str
    element_id: str
    name: str
    unit: str = ""
    quantity: float = 0.0
    rate: float = 0.0
    amount: float = 0.0
    library_item_id: Optional[str] = None
    library_division_id: Optional[str] = None
    library_section_id: Optional[str] = None
    library_assembly_id: Optional[str] = None
    library_code: Optional[str] = None
    library_path: Optional[str] = None
    is_from_library: bool = False
    rate_calculated: Optional[float] = None
    factor_breakdown: Optional[Dict[str, Any]] = None
    order_index: int = 1


class LibraryUsageRecord(BaseModel):
    id: Optional[str] = None
    project_id: str
    library_item_id: str
    user_id: Optional[str] = None
    usage_type: str = "estimate_creation"
    quantity: float = 1.0
    created_at: datetime = Field(default_factory=datetime.now)


class LibraryItemSelection(BaseModel):
    library_item_id: str
    quantity: float = 1.0
    notes: Optional[str] = None


class EstimateCreationError(BaseModel):
    item_id: str
    item_code: str = ""
    item_name: str = ""
    error: str


class EstimateCreationResult(BaseModel):
    elements: List[EstimateElement] = Field(default_factory=list)
    detail_items: List[EstimateDetailItem] = Field(default_factory=list)
    usage_records: List[LibraryUsageRecord] = Field(default_factory=list)
    errors: List[EstimateCreationError] = Field(default_factory=list)


class DetailItemLink(BaseModel):
    detail_item_id: str
    library_item_id: str


class LibraryImportRowError(BaseModel):
    row: int
    message: str


class LibraryImportSkip(BaseModel):
    row: int
    reason: str
    code: str


class LibraryImportResult(BaseModel):
    success: bool = False
    created: Dict[str, int] = Field(
        default_factory=lambda: {"divisions": 0, "sections": 0, "assemblies": 0, "items": 0}
    )
    errors: List[LibraryImportRowError] = Field(default_factory=list)
    skipped: List[LibraryImportSkip] = Field(default_factory=list)
