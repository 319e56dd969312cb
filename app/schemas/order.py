"""
Pydantic schemas for Order operations
"""

from pydantic import BaseModel, Field, validator, EmailStr
from typing import Optional, List
from datetime import datetime
import re

from app.models.order import ORDER_STATUSES, PAYMENT_METHODS, normalize_status

DATE_PATTERN = r'^\d{4}-\d{2}-\d{2}$'
WINDOW_PATTERN = r'^([01]\d|2[0-3]):[0-5]\d-([01]\d|2[0-3]):[0-5]\d$'


class PatientInfo(BaseModel):
    """Who the sample is collected from"""
    name: str = Field(..., min_length=1, max_length=100, description="Patient's full name")
    email: Optional[EmailStr] = Field(None, description="Patient contact email (defaults to the account email)")
    phone: Optional[str] = Field(None, max_length=20, description="Patient phone number")
    dob: Optional[str] = Field(None, description="Date of birth (YYYY-MM-DD or MM/DD/YYYY)")
    age: Optional[int] = Field(None, ge=0, le=130)
    gender: Optional[str] = Field(None, max_length=20)
    relation: str = Field("self", min_length=1, max_length=50, description="'self' or a family-member label")
    member_id: Optional[str] = Field(None, max_length=64, description="Stable key grouping a family member's orders")
    address: Optional[str] = Field(None, max_length=255, description="Home collection address")
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    pincode: Optional[str] = Field(None, max_length=20)

    @validator('dob')
    def validate_dob(cls, v):
        if v is None:
            return v

        date_patterns = [
            r'^\d{4}-\d{2}-\d{2}$',  # YYYY-MM-DD
            r'^\d{2}/\d{2}/\d{4}$',  # MM/DD/YYYY
            r'^\d{1,2}/\d{1,2}/\d{4}$',  # M/D/YYYY
        ]

        if not any(re.match(pattern, v) for pattern in date_patterns):
            raise ValueError('Date of birth must be in format YYYY-MM-DD or MM/DD/YYYY')

        return v

    @validator('relation')
    def validate_relation(cls, v):
        return v.strip().lower()

    @validator('phone')
    def validate_phone(cls, v):
        if v is None:
            return v
        digits_only = re.sub(r'\D', '', v)
        if len(digits_only) < 10 or len(digits_only) > 15:
            raise ValueError('Phone number must be between 10-15 digits')
        return v


class AppointmentSlot(BaseModel):
    """The (date, time window, service area) triple requested for collection"""
    date: str = Field(..., description="Collection date (YYYY-MM-DD)")
    time_window: str = Field(..., description="Collection window, e.g. 08:00-09:00")
    service_area: str = Field(..., min_length=3, max_length=20, description="Postal code of the collection area")

    @validator('date')
    def validate_date(cls, v):
        if not re.match(DATE_PATTERN, v):
            raise ValueError('Appointment date must be in format YYYY-MM-DD')
        try:
            datetime.strptime(v, "%Y-%m-%d")
        except ValueError:
            raise ValueError('Appointment date is not a valid calendar date')
        return v

    @validator('time_window')
    def validate_time_window(cls, v):
        v = v.replace(" ", "")
        if not re.match(WINDOW_PATTERN, v):
            raise ValueError('Time window must look like HH:MM-HH:MM')
        start, end = v.split("-")
        if start >= end:
            raise ValueError('Time window must end after it starts')
        return v

    @validator('service_area')
    def validate_service_area(cls, v):
        return v.strip().upper()


class CheckoutRequest(BaseModel):
    """Schema for converting the caller's cart into an order"""
    patient_info: PatientInfo
    appointment: AppointmentSlot
    payment_method: str = Field("COD", description="COD, Online or Wallet")

    @validator('payment_method')
    def validate_payment_method(cls, v):
        if v not in PAYMENT_METHODS:
            raise ValueError(f'Payment method must be one of: {", ".join(PAYMENT_METHODS)}')
        return v


class StatusUpdate(BaseModel):
    """Schema for a staff-driven status change"""
    status: str = Field(..., description="Target status")
    notes: Optional[str] = Field(None, max_length=2000, description="Technician notes (replaces previous notes)")

    @validator('status')
    def validate_status(cls, v):
        v = normalize_status(v)
        if v not in ORDER_STATUSES:
            raise ValueError(f'Status must be one of: {", ".join(ORDER_STATUSES)}')
        return v


class TransitionNotes(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class OrderItemResponse(BaseModel):
    test_id: int
    test_name: str
    lab: str
    price: float
    quantity: int

    class Config:
        from_attributes = True


class PatientInfoResponse(BaseModel):
    name: str
    email: Optional[str]
    phone: Optional[str]
    dob: Optional[str]
    age: Optional[int]
    gender: Optional[str]
    relation: str
    member_id: Optional[str]
    user_id: str
    user_email: Optional[str]
    address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    pincode: Optional[str]


class AppointmentResponse(BaseModel):
    date: str
    time_window: str
    service_area: str


class PricingResponse(BaseModel):
    subtotal: float
    home_collection_charge: float
    total_price: float


class ReportReference(BaseModel):
    url: str
    filename: str


class OrderResponse(BaseModel):
    """Schema for order responses"""
    id: int
    order_number: str
    status: str
    patient_info: PatientInfoResponse
    appointment: AppointmentResponse
    items: List[OrderItemResponse]
    pricing: PricingResponse
    total_price: float
    payment_method: str
    payment_status: str
    report: Optional[ReportReference]
    technician_notes: Optional[str]
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    denied_by: Optional[str]
    denied_at: Optional[datetime]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        """Build the nested response from a flat Order row"""
        report = None
        if order.report_url:
            report = ReportReference(url=order.report_url, filename=order.report_filename or "")
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            patient_info=PatientInfoResponse(
                name=order.patient_name,
                email=order.patient_email,
                phone=order.patient_phone,
                dob=order.patient_dob,
                age=order.patient_age,
                gender=order.patient_gender,
                relation=order.relation,
                member_id=order.member_id,
                user_id=order.owner_user_id,
                user_email=order.owner_email,
                address=order.address,
                city=order.city,
                state=order.state,
                pincode=order.pincode,
            ),
            appointment=AppointmentResponse(
                date=order.appointment_date,
                time_window=order.appointment_window,
                service_area=order.service_area,
            ),
            items=[OrderItemResponse.from_orm(item) for item in order.items],
            pricing=PricingResponse(
                subtotal=order.subtotal,
                home_collection_charge=order.home_collection_charge,
                total_price=order.total_price,
            ),
            total_price=order.total_price,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            report=report,
            technician_notes=order.technician_notes,
            approved_by=order.approved_by,
            approved_at=order.approved_at,
            denied_by=order.denied_by,
            denied_at=order.denied_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderListResponse(BaseModel):
    """Schema for paginated order list responses"""
    orders: List[OrderResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class ReportUploadResponse(BaseModel):
    success: bool
    message: str
    report: ReportReference
    order: OrderResponse


class SlotAvailability(BaseModel):
    time_window: str
    available: bool


class SlotAvailabilityResponse(BaseModel):
    date: str
    service_area: str
    slots: List[SlotAvailability]


class FamilyTestSummary(BaseModel):
    order_id: int
    name: str
    lab: str
    date: str
    status: str
    total_price: float


class FamilyMember(BaseModel):
    """A dependent derived from orders placed for someone other than the account holder"""
    id: str
    member_id: Optional[str]
    name: str
    relation: str
    age: str
    gender: str
    email: str
    phone: str
    order_count: int
    last_checkup: str
    tests: List[FamilyTestSummary]


class FamilyMemberListResponse(BaseModel):
    success: bool = True
    members: List[FamilyMember]


class StatusStats(BaseModel):
    status: str
    count: int
    revenue: float


class DailyTrend(BaseModel):
    date: str
    orders: int
    revenue: float


class OrderStatsResponse(BaseModel):
    """Order counts and revenue for the staff dashboard"""
    total_orders: int
    total_revenue: float
    by_status: List[StatusStats]
    daily_trends: List[DailyTrend]
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
