import json
from decimal import Decimal
from pydantic import BaseModel
from typing import Dict, List, Optional


class FailedBookingOut(BaseModel):
    id: str
    originalBookingId: str
    originalBookingRef: str
    userId: str
    trekId: str
    batchId: str
    numberOfParticipants: int
    contactName: str = ""
    contactEmail: str = ""
    contactPhone: str = ""
    participants: List[dict] = []
    paymentMode: str = "full"
    totalPrice: Decimal
    paymentAttempts: int = 0
    failureReason: str
    failureDetails: str = ""
    originalCreatedAt: Optional[str] = None
    originalExpiresAt: Optional[str] = None
    archivedAt: Optional[str] = None
    archivedBy: str = "system"


class FailedBookingStats(BaseModel):
    totalFailed: int
    totalValue: Decimal
    averageValue: Decimal
    byReason: Dict[str, int]


class FailedBookingListOut(BaseModel):
    items: List[FailedBookingOut]
    stats: FailedBookingStats


def failed_booking_out(fb) -> FailedBookingOut:
    return FailedBookingOut(
        id=fb.id,
        originalBookingId=fb.original_booking_id,
        originalBookingRef=fb.original_booking_ref or "",
        userId=fb.user_id,
        trekId=fb.trek_id,
        batchId=fb.batch_id,
        numberOfParticipants=fb.number_of_participants,
        contactName=fb.contact_name or "",
        contactEmail=fb.contact_email or "",
        contactPhone=fb.contact_phone or "",
        participants=json.loads(fb.participants_json or "[]"),
        paymentMode=fb.payment_mode,
        totalPrice=fb.total_price,
        paymentAttempts=fb.payment_attempts or 0,
        failureReason=fb.failure_reason,
        failureDetails=fb.failure_details or "",
        originalCreatedAt=fb.original_created_at.isoformat() if fb.original_created_at else None,
        originalExpiresAt=fb.original_expires_at.isoformat() if fb.original_expires_at else None,
        archivedAt=fb.archived_at.isoformat() if fb.archived_at else None,
        archivedBy=fb.archived_by,
    )
