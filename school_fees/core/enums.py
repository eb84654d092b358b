from enum import Enum


class PeriodType(str, Enum):
    ONE_TIME = "one_time"
    MONTHLY = "monthly"
    TERM = "term"


class StudentFeeStatus(str, Enum):
    pending = "pending"
    partial = "partial"
    paid = "paid"
    overdue = "overdue"
    waived = "waived"


class LateFeeType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class AdjustmentType(str, Enum):
    REMOVE_LATE_FEE = "remove_late_fee"
    REDUCE_LATE_FEE = "reduce_late_fee"
    CUSTOM_DISCOUNT = "custom_discount"
    WAIVE = "waive"
    RESTORE_DISCOUNT = "restore_discount"
