# services/split.py
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

Number = Union[int, float, Decimal, str]


@dataclass(frozen=True)
class RevenueSplit:
    gross_kobo: int
    developer_share_kobo: int
    school_net_kobo: int

    @property
    def school_net_amount(self) -> float:
        """School net in major units, rounded to 2 dp (ledger amount)."""
        return kobo_to_naira(self.school_net_kobo, places=2)


def kobo_to_naira(kobo: int, places: Optional[int] = None) -> float:
    value = Decimal(int(kobo)) / Decimal(100)
    if places is not None:
        value = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return float(value)


def split_revenue(gross_kobo: int, platform_share_percent: Number) -> RevenueSplit:
    """
    Split a gross charge into the platform share and the school's net.

    The platform share is rounded half-up to whole kobo (2.5 -> 3), which is
    what the portal has always done for positive amounts. School net is
    clamped at zero, so percentages above 100 never produce a negative net.
    """
    gross = int(gross_kobo)
    if gross < 0:
        raise ValueError("gross amount cannot be negative")

    percent = Decimal(str(platform_share_percent))
    if percent < 0:
        raise ValueError("platform share percentage cannot be negative")

    developer_share = (Decimal(gross) * percent / Decimal(100)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    developer_share_kobo = int(developer_share)
    school_net_kobo = max(gross - developer_share_kobo, 0)

    return RevenueSplit(
        gross_kobo=gross,
        developer_share_kobo=developer_share_kobo,
        school_net_kobo=school_net_kobo,
    )
