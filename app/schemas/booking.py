from decimal import Decimal
from pydantic import BaseModel, Field
from typing import List, Literal, Optional


class ParticipantIn(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    age: Optional[int] = Field(default=None, ge=0, le=120)
    gender: Optional[str] = ""
    contactNumber: Optional[str] = ""
    medicalConditions: Optional[str] = ""
    specialRequests: Optional[str] = ""


class ContactInfo(BaseModel):
    name: str
    email: str  # plain str to allow .local and other dev domains
    phone: str = ""


class CreateBookingCommand(BaseModel):
    trekId: str
    batchId: str
    participants: int
    contactInfo: ContactInfo
    participantDetails: List[ParticipantIn]
    paymentMode: Literal["full", "partial"] = "full"
    addOnIds: List[str] = []
    promoCode: Optional[str] = None


class ConfirmPaymentCommand(BaseModel):
    bookingId: str = ""  # filled from the URL when posted to /bookings/{id}/...
    orderId: str
    paymentId: str
    signature: str


class CancelBookingCommand(BaseModel):
    refund: bool = True
    refundType: Literal["auto", "full", "custom"] = "auto"
    customRefundAmount: Optional[Decimal] = Field(default=None, ge=0)
    participantId: Optional[str] = None
    reason: str = ""


class CustomerCancelRequest(BaseModel):
    reason: str = ""


class ParticipantOut(BaseModel):
    id: str
    position: int
    name: str
    age: Optional[int] = None
    gender: str = ""
    isCancelled: bool = False
    cancelledAt: Optional[str] = None
    refundStatus: str = "not_applicable"
    refundAmount: Decimal = Decimal("0")
    refundDate: Optional[str] = None


class BookingOut(BaseModel):
    id: str
    bookingRef: str
    userId: str
    trekId: str
    batchId: str
    status: str
    numberOfParticipants: int
    contactName: str = ""
    contactEmail: str = ""
    contactPhone: str = ""
    paymentMode: str = "full"
    baseAmount: Decimal
    addOnAmount: Decimal
    discountAmount: Decimal
    taxAmount: Decimal
    gatewayFee: Decimal
    totalPrice: Decimal
    amountPaid: Decimal
    initialAmount: Optional[Decimal] = None
    remainingAmount: Decimal
    dueDate: Optional[str] = None
    paymentOrderId: Optional[str] = None
    paymentId: Optional[str] = None
    sessionId: str
    sessionExpiresAt: Optional[str] = None
    paymentAttempts: int = 0
    refundStatus: str
    refundAmount: Decimal
    refundDate: Optional[str] = None
    cancelledAt: Optional[str] = None
    completedAt: Optional[str] = None
    createdAt: Optional[str] = None
    participants: List[ParticipantOut] = []


class CancelBookingOut(BaseModel):
    booking: BookingOut
    refundAmount: Decimal
    refundStatus: str


class PaymentOrderOut(BaseModel):
    bookingRef: str
    orderId: str
    amount: Decimal
    amountMinor: int
    currency: str
    keyId: str = ""


def _iso(dt) -> Optional[str]:
    return dt.isoformat() if dt else None


def participant_out(p) -> ParticipantOut:
    return ParticipantOut(
        id=p.id,
        position=p.position,
        name=p.name,
        age=p.age,
        gender=p.gender or "",
        isCancelled=bool(p.is_cancelled),
        cancelledAt=_iso(p.cancelled_at),
        refundStatus=p.refund_status,
        refundAmount=p.refund_amount or Decimal("0"),
        refundDate=_iso(p.refund_date),
    )


def booking_out(b, participants=()) -> BookingOut:
    return BookingOut(
        id=b.id,
        bookingRef=b.booking_ref,
        userId=b.user_id,
        trekId=b.trek_id,
        batchId=b.batch_id,
        status=b.status,
        numberOfParticipants=b.number_of_participants,
        contactName=b.contact_name or "",
        contactEmail=b.contact_email or "",
        contactPhone=b.contact_phone or "",
        paymentMode=b.payment_mode,
        baseAmount=b.base_amount,
        addOnAmount=b.add_on_amount,
        discountAmount=b.discount_amount,
        taxAmount=b.tax_amount,
        gatewayFee=b.gateway_fee,
        totalPrice=b.total_price,
        amountPaid=b.amount_paid or Decimal("0"),
        initialAmount=b.initial_amount,
        remainingAmount=b.remaining_amount or Decimal("0"),
        dueDate=_iso(b.due_date),
        paymentOrderId=b.payment_order_id,
        paymentId=b.payment_id,
        sessionId=b.session_id,
        sessionExpiresAt=_iso(b.session_expires_at),
        paymentAttempts=b.payment_attempts or 0,
        refundStatus=b.refund_status,
        refundAmount=b.refund_amount or Decimal("0"),
        refundDate=_iso(b.refund_date),
        cancelledAt=_iso(b.cancelled_at),
        completedAt=_iso(b.completed_at),
        createdAt=_iso(b.created_at),
        participants=[participant_out(p) for p in participants],
    )
