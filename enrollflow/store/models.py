from dataclasses import dataclass, field, asdict, fields as dc_fields
from datetime import datetime
from typing import Any, Dict, List, Optional

# Field names mirror the persisted JSON keys.

@dataclass
class PricingPlan:
    id: str
    duration: str  # "1-month" / "3-month" / "6-month" / "12-month"
    price: int
    originalPrice: int
    totalPrice: int
    sessions: int
    features: List[str] = field(default_factory=list)
    popular: bool = False
    discount: Optional[str] = None

@dataclass
class EnrollmentRecord:
    id: Optional[str] = None
    phoneNumber: str = ""
    sport: str = "football"
    planId: str = ""
    paymentId: Optional[str] = None
    status: str = "pending"  # active/pending/cancelled
    # Epoch ms so records round-trip through JSON unchanged
    enrollmentDate: Optional[int] = None
    sessionStartDate: Optional[int] = None
    courtLocation: Optional[str] = None
    secondaryPlatformId: Optional[str] = None

@dataclass
class WorkflowState:
    currentStep: str = "auth"  # auth/facility/pricing/payment/confirmation
    phoneNumber: str = ""
    isAuthenticated: bool = False
    selectedPlan: Optional[PricingPlan] = None
    paymentStatus: str = "pending"  # pending/processing/success/failed
    enrollmentRecord: EnrollmentRecord = field(default_factory=EnrollmentRecord)
    # step -> user-facing message; never persisted
    errorsByStep: Dict[str, str] = field(default_factory=dict)

@dataclass
class PersistedEnvelope:
    state: Dict[str, Any]
    createdAt: int
    expiresAt: int
    schemaVersion: str
    sessionId: str

@dataclass(frozen=True)
class PaymentRecord:
    id: str
    enrollmentId: str
    gatewayOrderId: str
    gatewayPaymentId: str
    amount: int
    currency: str
    status: str  # created/authorized/captured/failed
    createdAt: int
    updatedAt: int

@dataclass
class SessionScheduleEntry:
    id: str
    enrollmentId: str
    date: datetime
    startTime: str
    endTime: str
    courtId: str
    coachId: str
    status: str = "scheduled"  # scheduled/completed/cancelled

@dataclass
class CoachDetails:
    name: str
    contact: str

@dataclass
class ConfirmationData:
    """Read-only display projection; always recomputed from WorkflowState + PaymentRecord."""
    enrollmentId: str
    sessionStartDate: datetime
    courtLocation: str
    coachDetails: CoachDetails
    schedule: List[SessionScheduleEntry]
    paymentReference: str

@dataclass
class Credentials:
    username: str
    temporaryPassword: str
    enrollmentId: str = ""
    accessInstructions: str = ""

@dataclass
class AccountLink:
    primaryEnrollmentId: str
    secondaryEnrollmentId: str
    phoneNumber: str
    linkedAt: int

@dataclass
class RegistrationResult:
    success: bool
    enrollmentId: Optional[str] = None
    credentials: Optional[Credentials] = None
    error: Optional[str] = None
    retryable: bool = False
    # True once every allowed attempt is spent: the UI should offer support, not a retry button
    terminal: bool = False
    attempts: int = 0
    # error of the last real attempt, kept when a later call is refused
    lastError: Optional[str] = None


def _filter_kwargs(cls, data: dict) -> dict:
    """
    Drop unknown fields so cls(**kwargs) never explodes on stale payloads
    """
    allowed = {f.name for f in dc_fields(cls)}
    return {k: v for k, v in data.items() if k in allowed}


def plan_from_dict(data: Optional[dict]) -> Optional[PricingPlan]:
    if data is None:
        return None
    if isinstance(data, PricingPlan):
        return data
    return PricingPlan(**_filter_kwargs(PricingPlan, data))


def enrollment_from_dict(data: Optional[dict]) -> EnrollmentRecord:
    if data is None:
        return EnrollmentRecord()
    if isinstance(data, EnrollmentRecord):
        return data
    return EnrollmentRecord(**_filter_kwargs(EnrollmentRecord, data))


def payment_record_from_dict(data: dict) -> PaymentRecord:
    return PaymentRecord(**_filter_kwargs(PaymentRecord, data))


def state_to_dict(state: WorkflowState) -> dict:
    return asdict(state)


def state_from_dict(data: dict) -> WorkflowState:
    data = _filter_kwargs(WorkflowState, dict(data or {}))
    if "selectedPlan" in data:
        data["selectedPlan"] = plan_from_dict(data["selectedPlan"])
    if "enrollmentRecord" in data:
        data["enrollmentRecord"] = enrollment_from_dict(data["enrollmentRecord"])
    if "errorsByStep" in data and not isinstance(data["errorsByStep"], dict):
        data["errorsByStep"] = {}
    return WorkflowState(**data)
