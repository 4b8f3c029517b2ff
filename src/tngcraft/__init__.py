from pint import UnitRegistry

__version__ = "0.1.0"

ureg = UnitRegistry()
Q_ = ureg.Quantity
U_ = ureg.Unit
