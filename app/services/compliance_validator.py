"""
FRS commission-rate compliance.

Each partner category may only be offered commission inside a fixed
range (FRS Section 1.2). Offers are checked when they are created or
updated; calculations do not re-check.

Rates are compared as fractions. Anything above 1 is taken to be a
percentage and divided by 100, so 15 and 0.15 are the same rate.
A percentage structure value of 1 or less is therefore read as a
fraction (1 -> 100%).
"""
from decimal import Decimal
from typing import Dict, Tuple, Union

from app.core.exceptions import ComplianceError, ValidationError
from app.core.money import HUNDRED, to_decimal
from app.models.partner import PartnerCategory
from app.schemas.commission import CommissionStructure, StructureType, TierValueType


FRS_RATE_RANGES: Dict[str, Tuple[Decimal, Decimal]] = {
    PartnerCategory.TOUR_OPERATOR.value: (Decimal("0.15"), Decimal("0.20")),
    PartnerCategory.ACTIVITY_PROVIDER.value: (Decimal("0.15"), Decimal("0.20")),
    PartnerCategory.RESTAURANT.value: (Decimal("0.10"), Decimal("0.10")),
    PartnerCategory.TRANSPORTATION.value: (Decimal("0.08"), Decimal("0.12")),
    PartnerCategory.ECOMMERCE.value: (Decimal("0.08"), Decimal("0.12")),
}


def _format_percent(rate: Decimal) -> str:
    return format((rate * HUNDRED).normalize(), "f")


class ComplianceValidator:
    """Checks offer commission rates against the FRS category ranges."""

    def get_rate_range(self, category: Union[str, PartnerCategory]) -> Tuple[Decimal, Decimal]:
        key = category.value if isinstance(category, PartnerCategory) else category
        if key not in FRS_RATE_RANGES:
            raise ValidationError(f"Unknown partner category: {key}", {"category": key})
        return FRS_RATE_RANGES[key]

    def normalize_rate(self, rate) -> Decimal:
        rate = to_decimal(rate)
        if rate > 1:
            return rate / HUNDRED
        return rate

    def is_rate_compliant(self, rate, category: Union[str, PartnerCategory]) -> bool:
        minimum, maximum = self.get_rate_range(category)
        normalized = self.normalize_rate(rate)
        return minimum <= normalized <= maximum

    def validate_rate(self, rate, category: Union[str, PartnerCategory]) -> None:
        if self.is_rate_compliant(rate, category):
            return

        key = category.value if isinstance(category, PartnerCategory) else category
        minimum, maximum = self.get_rate_range(key)
        normalized = self.normalize_rate(rate)
        raise ComplianceError(
            f"Commission rate {_format_percent(normalized)}% is not compliant with "
            f"FRS Section 1.2 for category {key}. "
            f"Valid range: {_format_percent(minimum)}%-{_format_percent(maximum)}%",
            {
                "rate": str(normalized),
                "category": key,
                "min_rate": str(minimum),
                "max_rate": str(maximum),
            },
        )

    def validate_structure(self, structure: CommissionStructure, category: Union[str, PartnerCategory]) -> None:
        """
        Raise ComplianceError if a percentage rate in the structure is out
        of range. Fixed amounts are not checked.
        """
        if structure.type == StructureType.PERCENTAGE.value:
            if structure.value is not None:
                self.validate_rate(structure.value, category)

        elif structure.type == StructureType.TIERED.value:
            for tier in structure.tiers or []:
                if tier.value_type == TierValueType.PERCENTAGE.value:
                    self.validate_rate(tier.value, category)
