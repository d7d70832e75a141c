"""Data models for the sheetkit analysis engine.

Enumerations, the decoded workbook handed from the parser chain to the
sheet analyzer, per-sheet/per-column profiles, statistics-engine outputs,
and the top-level :class:`AnalysisResult`.  Result-side models are
Pydantic so they serialize to JSON for caching and for callers; the raw
decoded grid is a plain dataclass because it can hold millions of rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field

from sheetkit.errors import AnalysisIssue

CellValue = Union[str, int, float, bool, None]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AnalysisStrategy(str, Enum):
    """Ingestion strategy chosen by the strategy selector."""

    TRADITIONAL = "traditional"
    STREAMING = "streaming"
    PARALLEL = "parallel"


class ExtractionMethod(str, Enum):
    """Which decoder produced the workbook grid."""

    OPENPYXL = "openpyxl"
    OPENPYXL_STREAMING = "openpyxl_streaming"
    XLRD = "xlrd"
    PANDAS = "pandas"
    ZIP_XML = "zip_xml"
    BINARY_SCAN = "binary_scan"
    PLACEHOLDER = "placeholder"


class ColumnType(str, Enum):
    """Inferred column type."""

    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"
    TEXT = "text"
    MIXED = "mixed"
    EMPTY = "empty"


class SamplingMethod(str, Enum):
    FULL = "full"
    STRATIFIED = "stratified"


class Severity(str, Enum):
    """Anomaly severity tier, escalating with |z|."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Strategy
# ---------------------------------------------------------------------------


class StrategyDecision(BaseModel):
    """Chosen strategy plus a rough memory estimate used for telemetry only."""

    strategy: AnalysisStrategy
    method: str
    reason: str
    file_size: int
    estimated_memory_bytes: int


# ---------------------------------------------------------------------------
# Decoded workbook (parser chain output)
# ---------------------------------------------------------------------------


class WorkbookMetadata(BaseModel):
    """Workbook-level properties and container feature flags."""

    title: str | None = None
    author: str | None = None
    subject: str | None = None
    created: str | None = None
    modified: str | None = None
    sheet_names: list[str] = []
    has_formulas: bool = False
    has_charts: bool = False
    has_images: bool = False
    has_macros: bool = False


@dataclass
class RawSheet:
    """A decoded sheet grid before analysis.

    ``total_rows``, ``total_cells`` and ``total_columns`` describe the sheet
    as stored in the file.  ``total_rows`` can be larger than ``len(rows)``
    when the decoder already sampled the rows (streaming ingestion), in
    which case ``presampled`` is set.
    """

    name: str
    rows: list[list[CellValue]]
    total_rows: int = 0
    total_cells: int = 0
    total_columns: int = 0
    hidden: bool = False
    merged_cell_count: int = 0
    hidden_row_count: int = 0
    presampled: bool = False

    def __post_init__(self) -> None:
        if not self.total_rows:
            self.total_rows = len(self.rows)
        if not self.total_cells:
            self.total_cells = sum(len(r) for r in self.rows)
        if not self.total_columns:
            self.total_columns = max((len(r) for r in self.rows), default=0)


@dataclass
class ParsedWorkbook:
    """Shared output shape of every parser tier."""

    sheets: list[RawSheet]
    metadata: WorkbookMetadata
    confidence: float
    extraction_method: ExtractionMethod
    content: str = ""
    sheet_count: int = 0
    issues: list[AnalysisIssue] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.sheet_count:
            self.sheet_count = len(self.sheets)


# ---------------------------------------------------------------------------
# Statistics engine outputs
# ---------------------------------------------------------------------------


class AnomalyRecord(BaseModel):
    """A value flagged by at least two outlier detectors."""

    index: int
    value: float
    methods: list[str]
    severity: Severity
    z_score: float


class OutlierReport(BaseModel):
    method_counts: dict[str, int]
    lower_fence: float
    upper_fence: float
    anomalies: list[AnomalyRecord] = []


class ConfidenceInterval(BaseModel):
    lower: float
    upper: float
    level: float = 0.95


class NormalityTest(BaseModel):
    """Jarque-Bera test result."""

    statistic: float
    p_value: float
    is_normal: bool


class AdvancedStats(BaseModel):
    count: int
    mean: float
    median: float
    mode: list[float]
    variance: float
    std: float
    skewness: float
    kurtosis: float
    range: float
    coefficient_of_variation: float | None
    percentiles: dict[str, float]
    confidence_interval: ConfidenceInterval
    normality: NormalityTest | None = None


class ValueCount(BaseModel):
    value: str
    count: int


class CategoricalStats(BaseModel):
    unique_count: int
    top_values: list[ValueCount]
    entropy: float
    rare_values: list[str] = []


class CorrelationEdge(BaseModel):
    source: str
    target: str
    method: str
    coefficient: float
    strength: str
    p_value: float | None = None


class CorrelationNetwork(BaseModel):
    nodes: list[str] = []
    edges: list[CorrelationEdge] = []


class CorrelationReport(BaseModel):
    pearson: dict[str, dict[str, float]] = {}
    spearman: dict[str, dict[str, float]] = {}
    kendall: dict[str, dict[str, float]] = {}
    categorical: list[CorrelationEdge] = []
    point_biserial: list[CorrelationEdge] = []
    strong_correlations: list[CorrelationEdge] = []
    network: CorrelationNetwork = Field(default_factory=CorrelationNetwork)


class ClusterResult(BaseModel):
    method: str
    n_clusters: int
    labels: list[int]
    sizes: list[int]
    centroids: list[list[float]] = []
    silhouette: float | None = None
    davies_bouldin: float | None = None
    calinski_harabasz: float | None = None
    noise_points: int = 0
    parameters: dict[str, Any] = {}


class ClusteringReport(BaseModel):
    features: list[str]
    optimal_k: int | None = None
    scores_by_k: dict[int, float] = {}
    kmeans: ClusterResult | None = None
    dbscan: ClusterResult | None = None
    hierarchical: ClusterResult | None = None


class PCAResult(BaseModel):
    features: list[str]
    eigenvalues: list[float]
    components: list[list[float]]
    explained_variance_ratio: list[float]
    cumulative_variance: list[float]
    components_for_90: int
    components_for_95: int


class TimeSeriesDecomposition(BaseModel):
    period: int
    trend: list[float | None]
    seasonal: list[float]
    residual: list[float | None]


class SeasonalityInfo(BaseModel):
    detected: bool
    period: int | None = None
    peaks: list[int] = []
    strength: float = 0.0


class StationarityInfo(BaseModel):
    is_stationary: bool
    mean_shift: float
    variance_ratio: float


class Forecast(BaseModel):
    method: str
    horizon: int
    values: list[float]
    confidence: float
    slope: float | None = None
    intercept: float | None = None
    r_squared: float | None = None
    trend: str | None = None


class TimeSeriesReport(BaseModel):
    date_column: str
    value_column: str
    length: int
    decomposition: TimeSeriesDecomposition
    seasonality: SeasonalityInfo
    stationarity: StationarityInfo
    changepoints: list[int] = []
    forecast: Forecast | None = None


class FrequentItem(BaseModel):
    item: str
    count: int
    support: float


class AssociationRule(BaseModel):
    antecedent: str
    consequent: str
    support: float
    confidence: float
    lift: float


class SequentialPattern(BaseModel):
    column: str
    source: str
    target: str
    count: int
    probability: float


class ContrastPattern(BaseModel):
    class_column: str
    class_a: str
    class_b: str
    feature: str
    mean_a: float
    mean_b: float
    difference: float


class PatternReport(BaseModel):
    frequent_items: list[FrequentItem] = []
    association_rules: list[AssociationRule] = []
    sequential_patterns: list[SequentialPattern] = []
    contrast_patterns: list[ContrastPattern] = []


class DataQualityReport(BaseModel):
    completeness: float
    consistency: float
    accuracy: float
    uniqueness: float
    validity: float
    timeliness: float
    overall: float
    issues: list[str] = []


class FeatureImportance(BaseModel):
    feature: str
    importance: float
    method: str


class Recommendation(BaseModel):
    type: str
    priority: str
    message: str
    sheet: str | None = None


class SheetAdvancedAnalysis(BaseModel):
    """Statistics-engine output for one sheet."""

    success: bool = True
    error: str | None = None
    numeric_columns: list[str] = []
    categorical_columns: list[str] = []
    descriptive: dict[str, AdvancedStats] = {}
    categorical: dict[str, CategoricalStats] = {}
    outliers: dict[str, OutlierReport] = {}
    correlations: CorrelationReport | None = None
    clustering: ClusteringReport | None = None
    pca: PCAResult | None = None
    time_series: list[TimeSeriesReport] = []
    patterns: PatternReport | None = None
    data_quality: DataQualityReport | None = None
    feature_importance: list[FeatureImportance] = []
    forecasts: dict[str, Forecast] = {}
    insights: list[str] = []
    recommendations: list[Recommendation] = []


class AdvancedSummary(BaseModel):
    total_sheets: int = 0
    successful_analyses: int = 0
    failed_analyses: int = 0
    insights: list[str] = []
    recommendations: list[Recommendation] = []


class AdvancedAnalysis(BaseModel):
    sheets: dict[str, SheetAdvancedAnalysis] = {}
    summary: AdvancedSummary = Field(default_factory=AdvancedSummary)


# ---------------------------------------------------------------------------
# Sheet / column profiles
# ---------------------------------------------------------------------------


class SamplingInfo(BaseModel):
    method: SamplingMethod
    original_rows: int
    sampled_rows: int
    coverage: float = Field(ge=0.0, le=100.0)  # percent


class NumericStats(BaseModel):
    count: int
    sum: float
    avg: float
    min: float
    max: float
    stddev: float
    q1: float
    median: float
    q3: float
    iqr: float


class HistogramBin(BaseModel):
    start: float
    end: float
    count: int


class Distribution(BaseModel):
    histogram: list[HistogramBin] | None = None
    years: dict[str, int] | None = None
    months: dict[str, int] | None = None
    days: dict[str, int] | None = None
    weekdays: dict[str, int] | None = None


class ColumnProfile(BaseModel):
    index: int
    name: str
    type: ColumnType
    type_counts: dict[str, int] = {}
    non_empty: int = 0
    unique_count: int = 0
    top_values: list[ValueCount] = []
    stats: NumericStats | None = None
    distribution: Distribution | None = None
    advanced_stats: AdvancedStats | None = None
    anomalies: list[AnomalyRecord] = []
    forecast: Forecast | None = None


class SheetStatistics(BaseModel):
    total_cells: int = 0
    filled_cells: int = 0
    empty_cells: int = 0
    avg_row_length: float = 0.0
    max_row_length: int = 0
    min_row_length: int = 0


class SheetPatterns(BaseModel):
    sequential: bool = False
    categorical: bool = False
    temporal: bool = False
    numerical: bool = False


class SheetProfile(BaseModel):
    """Analyzed sheet.

    ``rows`` is always the original row count; ``data`` holds the retained
    preview of the (possibly sampled) rows.
    """

    name: str
    rows: int = 0
    columns: int = 0
    cells: int = 0
    has_headers: bool = False
    headers: list[str] = []
    data: list[list[CellValue]] = []
    data_types: dict[str, int] = {}
    column_details: list[ColumnProfile] = []
    statistics: SheetStatistics = Field(default_factory=SheetStatistics)
    patterns: SheetPatterns = Field(default_factory=SheetPatterns)
    sampling_info: SamplingInfo | None = None
    is_large_sheet: bool = False
    hidden: bool = False
    merged_cell_count: int = 0
    error: str | None = None


# ---------------------------------------------------------------------------
# Aggregated report
# ---------------------------------------------------------------------------


class BasicInfo(BaseModel):
    file_name: str
    file_path: str
    extension: str
    file_size: int
    file_size_formatted: str
    modified: str | None = None
    created: str | None = None


class StructureSummary(BaseModel):
    sheets: int = 0
    total_rows: int = 0
    total_columns: int = 0
    total_cells: int = 0
    sheet_details: list[SheetProfile] = []
    partial_failure: bool = False
    processed_chunks: int | None = None
    total_chunks: int | None = None


class OverallStats(BaseModel):
    total_rows: int = 0
    total_columns: int = 0
    total_cells: int = 0
    total_sheets: int = 0
    avg_rows_per_sheet: float = 0.0


class DataQualityScore(BaseModel):
    completeness: float = 0.0
    consistency: float = 0.0
    accuracy: float = 0.0
    overall: float = 0.0


class Trends(BaseModel):
    increasing: list[str] = []
    decreasing: list[str] = []
    stable: list[str] = []


class Opportunities(BaseModel):
    data_gaps: list[str] = []
    optimization_areas: list[str] = []
    automation_potential: list[str] = []


class Risks(BaseModel):
    data_loss: list[str] = []
    inconsistency: list[str] = []
    quality: list[str] = []


class BusinessInsights(BaseModel):
    data_quality: DataQualityScore = Field(default_factory=DataQualityScore)
    trends: Trends = Field(default_factory=Trends)
    opportunities: Opportunities = Field(default_factory=Opportunities)
    risks: Risks = Field(default_factory=Risks)
    recommendations: list[str] = []


class OptimizationReport(BaseModel):
    total_sheets: int
    large_sheets: int
    total_rows: int
    sampled_rows: int
    estimated_memory_bytes: int
    memory_efficiency: str
    estimated_seconds: float
    time_efficiency: str


class ContentAnalysis(BaseModel):
    language: str = "unknown"
    data_types: dict[str, int] = {}
    patterns: dict[str, bool] = {}
    statistics: OverallStats = Field(default_factory=OverallStats)
    business_insights: BusinessInsights = Field(default_factory=BusinessInsights)
    optimization: OptimizationReport | None = None
    confidence: float = 0.0
    extraction_method: ExtractionMethod = ExtractionMethod.PLACEHOLDER


class ValidationStatistics(BaseModel):
    total_data_cells: int = 0
    empty_data_cells: int = 0
    numeric_cells: int = 0
    amount_cells: int = 0
    verified_cells: int = 0


class ValidationReport(BaseModel):
    is_complete: bool = True
    completeness_rate: float | None = None  # percent
    financial_document: bool = False
    issues: list[str] = []
    statistics: ValidationStatistics = Field(default_factory=ValidationStatistics)


class PerformanceInfo(BaseModel):
    duration_ms: float = 0.0
    duration_formatted: str = "0ms"
    memory: dict[str, Any] = {}
    cache_hit: bool = False
    cache_size: int = 0
    active_workers: int = 0


class AnalysisResult(BaseModel):
    """Final report returned by :meth:`AnalysisEngine.analyze`.

    On failure only ``success``, ``path``, ``error``, ``error_type`` and
    ``issues`` are populated.
    """

    success: bool
    path: str
    error: str | None = None
    error_type: str | None = None
    aborted: bool = False
    basic_info: BasicInfo | None = None
    analysis_strategy: StrategyDecision | None = None
    content: str = ""
    structure: StructureSummary | None = None
    metadata: WorkbookMetadata | None = None
    analysis: ContentAnalysis | None = None
    advanced_analysis: AdvancedAnalysis | None = None
    data_validation: ValidationReport | None = None
    performance: PerformanceInfo = Field(default_factory=PerformanceInfo)
    issues: list[AnalysisIssue] = []
    cache_hit: bool = False
    cached_at: float | None = None


@dataclass
class WorkbookAnalysis:
    """Analyzed output of one adapter run or one parallel chunk.

    Chunks merge commutatively in the aggregator; a failed chunk is an
    empty instance with ``failed`` set.
    """

    sheets: list[SheetProfile] = field(default_factory=list)
    advanced: dict[str, SheetAdvancedAnalysis] = field(default_factory=dict)
    metadata: WorkbookMetadata = field(default_factory=WorkbookMetadata)
    confidence: float = 0.0
    extraction_method: ExtractionMethod = ExtractionMethod.PLACEHOLDER
    content: str = ""
    sheet_count: int = 0
    issues: list[AnalysisIssue] = field(default_factory=list)
    failed: bool = False


class BatchResult(BaseModel):
    total: int
    successful: int
    failed: int
    results: list[AnalysisResult]
