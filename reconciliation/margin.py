"""
Margin calculation for the Impact → Bradford → JD routing.

Exactly one of three business rules applies, selected by the job's routing
flags (checked in this order):

  jd_supplies_paper             Impact keeps 10% of the customer total;
                                Bradford keeps the full spread it was paid
                                over what it pays JD (it buys no paper).
  bradford_waives_paper_margin  The margin left after JD and paper is split
                                50/50.  Bradford forgoes its paper markup.
  default                       Margin after JD and paper is split 50/50,
                                and Bradford also keeps the paper markup
                                (paper charged - paper cost).

All arithmetic is Decimal; results are rounded to cents half-up.
"""
from dataclasses import dataclass
from decimal import Decimal

from models.money import ZERO, to_decimal, to_money

JD_SUPPLIES_PAPER_IMPACT_RATE = Decimal("0.10")

BRANCH_JD_SUPPLIES_PAPER = "jd_supplies_paper"
BRANCH_PAPER_MARGIN_WAIVED = "bradford_waives_paper_margin"
BRANCH_DEFAULT = "default"


@dataclass(frozen=True)
class Margins:
    impact_margin: Decimal
    bradford_total_margin: Decimal
    bradford_paper_margin: Decimal    # paper markup Bradford keeps
    bradford_print_margin: Decimal    # bradford_total_margin - bradford_paper_margin
    branch: str


def calculate_margins(
    customer_total,
    jd_total,
    paper_cost_total,
    paper_charged_total,
    jd_supplies_paper: bool,
    bradford_waives_paper_margin: bool,
    bradford_total,
) -> Margins:
    """Pure computation; no I/O and no validation of the sign of the result."""
    customer_total = to_decimal(customer_total) or ZERO
    jd_total = to_decimal(jd_total) or ZERO
    paper_cost_total = to_decimal(paper_cost_total) or ZERO
    paper_charged_total = to_decimal(paper_charged_total) or ZERO
    bradford_total = to_decimal(bradford_total) or ZERO

    if jd_supplies_paper:
        impact = to_money(customer_total * JD_SUPPLIES_PAPER_IMPACT_RATE)
        bradford = to_money(bradford_total - jd_total)
        return Margins(impact, bradford, ZERO, bradford, BRANCH_JD_SUPPLIES_PAPER)

    total_margin = customer_total - jd_total - paper_charged_total
    half = total_margin / 2

    if bradford_waives_paper_margin:
        share = to_money(half)
        return Margins(share, share, ZERO, share, BRANCH_PAPER_MARGIN_WAIVED)

    impact = to_money(half)
    bradford = to_money(customer_total - jd_total - paper_cost_total - half)
    paper = to_money(paper_charged_total - paper_cost_total)
    return Margins(impact, bradford, paper, bradford - paper, BRANCH_DEFAULT)
