"""
MedRide Dispatch - ядро жизненного цикла поездок медицинского транспорта.
"""

__version__ = "1.0.0"
