"""Payroll sync: biweekly payroll reconciled against a workforce platform."""
