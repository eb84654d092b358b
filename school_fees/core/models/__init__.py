from school_fees.core.models.school import AcademicYear, GradeLevel, School, Student
from school_fees.core.models.fee_settings import FeeSettings
from school_fees.core.models.fee_category import FeeCategory
from school_fees.core.models.fee_structure import FeeStructure
from school_fees.core.models.sibling_discount_tier import SiblingDiscountTier
from school_fees.core.models.student_fee import StudentFee
from school_fees.core.models.fee_payment import FeePayment
from school_fees.core.models.fee_adjustment import FeeAdjustment
from school_fees.core.models.student_fee_override import StudentFeeOverride

__all__ = [
    "AcademicYear",
    "GradeLevel",
    "School",
    "Student",
    "FeeSettings",
    "FeeCategory",
    "FeeStructure",
    "SiblingDiscountTier",
    "StudentFee",
    "FeePayment",
    "FeeAdjustment",
    "StudentFeeOverride",
]
