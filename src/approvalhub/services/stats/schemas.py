"""Usage statistics schemas."""

from datetime import datetime

from pydantic import Field

from approvalhub.core.schemas import CamelModel


class DeliveryStats(CamelModel):
    """Webhook delivery counters over a window."""

    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0
    pending_deliveries: int = 0
    success_rate: float = 0.0


class StatsOverview(CamelModel):
    """Counts by status."""

    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    cancelled: int = 0
    approval_rate: float = Field(0.0, description="approved / (approved + rejected), percent")


class PriorityCounts(CamelModel):
    high: int = 0
    normal: int = 0
    low: int = 0


class UrgencyCounts(CamelModel):
    urgent: int = 0
    normal: int = 0
    low: int = 0


class PerformanceStats(CamelModel):
    """Throughput indicators."""

    overdue: int = Field(0, description="Pending approvals past their due date")
    average_approval_time: float = Field(0.0, description="Days from creation to decision")
    average_levels: float = 0.0


class DistributionEntry(CamelModel):
    """Share of one bucket in a distribution."""

    key: str
    count: int
    percentage: float


class StatsDistribution(CamelModel):
    by_type: list[DistributionEntry] = Field(default_factory=list)
    by_priority: list[DistributionEntry] = Field(default_factory=list)
    by_urgency: list[DistributionEntry] = Field(default_factory=list)
    by_levels: list[DistributionEntry] = Field(default_factory=list)


class RecentApproval(CamelModel):
    id: str
    title: str
    status: str
    priority: str
    urgency: str
    progress: str = Field(..., description="current_level/total_levels")
    created_at: datetime


class TimeRange(CamelModel):
    start_date: datetime | None = None
    end_date: datetime | None = None


class ApprovalStats(CamelModel):
    """Per-service approval statistics."""

    overview: StatsOverview
    priority: PriorityCounts
    urgency: UrgencyCounts
    performance: PerformanceStats
    distribution: StatsDistribution
    recent: list[RecentApproval]
    time_range: TimeRange
