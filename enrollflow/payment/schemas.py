from typing import Optional
from pydantic import BaseModel, Field

class GatewayCallback(BaseModel):
    """Inbound payload from the checkout widget's success handler."""
    razorpay_order_id: str = Field(min_length=1)
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)

class EnrollmentDraft(BaseModel):
    phoneNumber: str
    sport: str
    planId: str

class VerificationRequest(BaseModel):
    order_id: str
    payment_id: str
    signature: str
    enrollmentData: EnrollmentDraft
    # Rupees; the verifier converts to the gateway's minor unit if it needs to
    amount: Optional[int] = None

class VerificationResponse(BaseModel):
    success: bool
    enrollmentId: Optional[str] = None
    paymentId: Optional[str] = None
    error: Optional[str] = None
