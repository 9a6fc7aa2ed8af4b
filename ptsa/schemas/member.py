"""
Member Schemas
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class MemberRegister(BaseModel):
    """Membership registration submitted by the signed-in user"""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="userId", min_length=1)
    email: EmailStr | None = None
    first_name: str | None = Field(None, alias="firstName", max_length=100)
    last_name: str | None = Field(None, alias="lastName", max_length=100)
    phone: str | None = Field(None, max_length=32)
    membership_type: str = Field("individual", alias="membershipType", max_length=50)
    student_name: str | None = Field(None, alias="studentName")
    student_grade: str | None = Field(None, alias="studentGrade")
    volunteer_interest: bool = Field(False, alias="volunteerInterest")
    membership_amount: int = Field(0, alias="membershipAmount", ge=0, description="Amount due in cents")


class MemberUpdate(BaseModel):
    """Administrative member update"""

    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=32)
    membership_type: str | None = Field(None, max_length=50)
    membership_status: str | None = Field(None, pattern="^(pending|active|expired)$")
    student_info: dict | None = None


class RoleUpdate(BaseModel):
    """Role change request"""

    role: str
