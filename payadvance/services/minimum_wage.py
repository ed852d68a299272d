"""
PayAdvance - Statutory Minimum Wage Table

Monthly minimum net wage per country (SMIG), used by the wage-floor rule:
an employee's net pay after the monthly advance deduction must not fall
below it. Countries without an entry have no floor.
"""

from decimal import Decimal
from typing import Dict, Mapping, Optional


COUNTRY_MINIMUM_WAGES: Dict[str, Decimal] = {
    "CI": Decimal("75000"),   # Côte d'Ivoire
    "SN": Decimal("52500"),   # Sénégal
    "BF": Decimal("34664"),   # Burkina Faso
}


class MinimumWageTable:
    """Country code -> minimum monthly net wage."""
    
    def __init__(self, overrides: Optional[Mapping[str, Decimal]] = None):
        self._wages = dict(COUNTRY_MINIMUM_WAGES)
        for country_code, amount in (overrides or {}).items():
            self._wages[country_code.upper()] = Decimal(amount)
    
    def get(self, country_code: Optional[str]) -> Decimal:
        """Minimum wage for the country, zero when none is configured."""
        if not country_code:
            return Decimal("0")
        return self._wages.get(country_code.upper(), Decimal("0"))
    
    def has_floor(self, country_code: Optional[str]) -> bool:
        return self.get(country_code) > 0
